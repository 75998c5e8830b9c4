"""Helpers for writing tests: build fonts, patch maps and patches in memory.

These are the server side counterparts of the decoders, kept minimal:
table deltas only share a common prefix and suffix with their source.
"""

from fontTools.misc import sstruct
from fontTools.misc.textTools import tobytes
from iftTools.sfnt import Font, calcChecksum
from iftTools.patch import (
	tableKeyedHeaderFormat, tablePatchFormat, glyphKeyedHeaderFormat,
	tableKeyedHeaderSize, DELTA, REPLACE, DROP, OP_COPY, OP_INSERT)
from iftTools.glyphKeyed import compileLoca
import struct
import brotli


def makeHead(indexToLocFormat=0):
	"""Return a 54 byte 'head' table."""
	return struct.pack(">LLLLHHqqhhhhHHhhh",
		0x00010000,   # version
		0x00010000,   # fontRevision
		0,            # checkSumAdjustment
		0x5F0F3CF5,   # magicNumber
		0,            # flags
		1000,         # unitsPerEm
		0, 0,         # created, modified
		0, 0, 0, 0,   # xMin, yMin, xMax, yMax
		0,            # macStyle
		8,            # lowestRecPPEM
		2,            # fontDirectionHint
		indexToLocFormat,
		0)            # glyphDataFormat


def makeGlyfLoca(glyphs, indexFormat=0):
	"""Return (glyf, loca) data holding the list of glyph data 'glyphs'."""
	locations = [0]
	chunks = []
	for data in glyphs:
		if indexFormat == 0 and len(data) % 2:
			data += b"\0"
		chunks.append(data)
		locations.append(locations[-1] + len(data))
	return b"".join(chunks), compileLoca(locations, indexFormat)


def buildFont(tables, patchMaps=()):
	"""Compile a font from {tag: data} plus PatchMap objects."""
	font = Font(tables)
	for patchMap in patchMaps:
		font[patchMap.tag] = patchMap.compile()
	return font.compile()


def encodeDelta(source, target):
	"""Return brotli compressed instructions rebuilding 'target' from 'source'."""
	prefix = 0
	limit = min(len(source), len(target))
	while prefix < limit and source[prefix] == target[prefix]:
		prefix += 1
	suffix = 0
	while (suffix < limit - prefix
			and source[len(source) - 1 - suffix] == target[len(target) - 1 - suffix]):
		suffix += 1
	instructions = b""
	if prefix:
		instructions += struct.pack(">BLL", OP_COPY, 0, prefix)
	middle = target[prefix:len(target) - suffix]
	if middle:
		instructions += struct.pack(">BL", OP_INSERT, len(middle)) + middle
	if suffix:
		instructions += struct.pack(">BLL", OP_COPY, len(source) - suffix, suffix)
	return brotli.compress(instructions)


def _compatHeader(header, compatibilityId):
	for i, value in enumerate(compatibilityId):
		header["compatId%d" % i] = value
	return header


def buildTableKeyedPatch(compatibilityId, operations):
	"""Build a table-keyed patch.

	'operations' is a list of (tag, kind, data, source) tuples: REPLACE
	takes the new table 'data'; DELTA the new table 'data' and the
	'source' table it is made against; DROP ignores both.
	"""
	records = []
	for tag, kind, data, source in operations:
		record = {
			"tag": tag,
			"flags": kind,
			"sourceLength": 0,
			"sourceChecksum": 0,
			"uncompressedLength": 0,
			"uncompressedChecksum": 0,
		}
		stream = b""
		if kind == REPLACE:
			stream = brotli.compress(data)
		elif kind == DELTA:
			record["sourceLength"] = len(source)
			record["sourceChecksum"] = calcChecksum(source)
			stream = encodeDelta(source, data)
		if kind != DROP:
			record["uncompressedLength"] = len(data)
			record["uncompressedChecksum"] = calcChecksum(data)
		records.append(sstruct.pack(tablePatchFormat, record) + stream)

	header = _compatHeader({
		"format": "iftk",
		"reserved": 0,
		"patchCount": len(records),
	}, compatibilityId)
	offset = tableKeyedHeaderSize + 4 * (len(records) + 1)
	offsets = []
	for record in records:
		offsets.append(offset)
		offset += len(record)
	offsets.append(offset)
	return (sstruct.pack(tableKeyedHeaderFormat, header)
		+ struct.pack(">%dL" % len(offsets), *offsets)
		+ b"".join(records))


def buildGlyphKeyedPayload(glyphs):
	"""Uncompressed glyph-keyed patch data for {tag: {glyphID: data}}."""
	tags = list(glyphs)
	glyphIDs = sorted(set(gid for table in glyphs.values() for gid in table))
	data = struct.pack(">LB", len(glyphIDs), len(tags))
	data += struct.pack(">%dH" % len(glyphIDs), *glyphIDs)
	for tag in tags:
		data += tobytes(tag, encoding="latin1")
	offset = len(data) + 4 * (len(glyphIDs) * len(tags) + 1)
	offsets = [offset]
	chunks = []
	for tag in tags:
		for gid in glyphIDs:
			chunk = glyphs[tag].get(gid, b"")
			chunks.append(chunk)
			offsets.append(offsets[-1] + len(chunk))
	return data + struct.pack(">%dL" % len(offsets), *offsets) + b"".join(chunks)


def buildGlyphKeyedPatch(compatibilityId, glyphs):
	payload = buildGlyphKeyedPayload(glyphs)
	header = _compatHeader({
		"format": "ifgk",
		"reserved": 0,
		"uncompressedLength": len(payload),
		"uncompressedChecksum": calcChecksum(payload),
	}, compatibilityId)
	return sstruct.pack(glyphKeyedHeaderFormat, header) + brotli.compress(payload)


class FakeFetcher(object):
	"""A 'fetch' callable serving patches from a {uri: data} mapping."""

	def __init__(self, patches):
		self.patches = dict(patches)
		self.requests = []

	def __call__(self, uri):
		self.requests.append(uri)
		if uri not in self.patches:
			raise IOError("404 Not Found: %s" % uri)
		return self.patches[uri]
