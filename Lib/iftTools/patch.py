"""iftTools.patch -- decode the two patch formats.

A table-keyed patch ('iftk') replaces, deltas or drops whole tables; a
glyph-keyed patch ('ifgk') carries new data for individual glyphs.
Payloads are brotli compressed; every decompressed payload carries its
length and checksum, which must match.
"""

from fontTools.misc import sstruct
from fontTools.misc.textTools import Tag
from iftTools import DecodeError
from iftTools.sfnt import calcChecksum
from iftTools.patchMap import TABLE_KEYED, GLYPH_KEYED, patchFormats
from collections import namedtuple, OrderedDict
import struct
import brotli
import logging


log = logging.getLogger(__name__)


TABLE_KEYED_MAGIC = b"iftk"
GLYPH_KEYED_MAGIC = b"ifgk"

patchMagics = {TABLE_KEYED: TABLE_KEYED_MAGIC, GLYPH_KEYED: GLYPH_KEYED_MAGIC}

# table patch flags
DELTA = 0
REPLACE = 1
DROP = 2

# delta instruction opcodes
OP_COPY = 0x01
OP_INSERT = 0x02

tableKeyedHeaderFormat = """
		> # big endian
		format:       4s   # 'iftk'
		reserved:     L    # set to 0
		compatId0:    L
		compatId1:    L
		compatId2:    L
		compatId3:    L
		patchCount:   H
"""

tableKeyedHeaderSize = sstruct.calcsize(tableKeyedHeaderFormat)

tablePatchFormat = """
		> # big endian
		tag:                   4s
		flags:                 B    # 0 delta, 1 replace, 2 drop
		sourceLength:          L    # delta only: length of the table patched
		sourceChecksum:        L    # delta only: checksum of the table patched
		uncompressedLength:    L
		uncompressedChecksum:  L
"""

tablePatchSize = sstruct.calcsize(tablePatchFormat)

glyphKeyedHeaderFormat = """
		> # big endian
		format:                4s   # 'ifgk'
		reserved:              L    # set to 0
		compatId0:             L
		compatId1:             L
		compatId2:             L
		compatId3:             L
		uncompressedLength:    L
		uncompressedChecksum:  L
"""

glyphKeyedHeaderSize = sstruct.calcsize(glyphKeyedHeaderFormat)


TableOperation = namedtuple("TableOperation", [
	"tag", "kind", "data", "sourceLength", "sourceChecksum",
	"uncompressedLength", "uncompressedChecksum"])
TableOperation.__doc__ = """One table of a table-keyed patch.

'data' holds the new table for REPLACE, the still compressed diff for
DELTA, and is empty for DROP."""


class TableKeyedPatch(object):

	format = TABLE_KEYED

	def __init__(self, compatibilityId, operations):
		self.compatibilityId = tuple(compatibilityId)
		self.operations = list(operations)

	def __repr__(self):
		return "<%s %s>" % (self.__class__.__name__,
			" ".join("%s:%s" % (op.tag, op.kind) for op in self.operations))


class GlyphKeyedPatch(object):

	format = GLYPH_KEYED

	def __init__(self, compatibilityId, glyphs):
		self.compatibilityId = tuple(compatibilityId)
		# {tableTag: {glyphID: data}}
		self.glyphs = glyphs

	@property
	def tables(self):
		return list(self.glyphs.keys())

	def __repr__(self):
		return "<%s %s>" % (self.__class__.__name__,
			" ".join("%s:%d" % (tag, len(g)) for tag, g in self.glyphs.items()))


def brotliDecompress(data, dictionary=None):
	"""Default decompressor: brotli, optionally seeded with 'dictionary'.

	The brotli binding has no shared dictionary support, so a dictionary
	seeded stream decompresses to copy/insert instructions which are
	resolved against 'dictionary'.
	"""
	try:
		payload = brotli.decompress(data)
	except brotli.error as e:
		raise DecodeError("corrupt brotli stream: %s" % e)
	if dictionary is None:
		return payload
	return applyInstructions(payload, dictionary)


def applyInstructions(instructions, dictionary):
	out = bytearray()
	pos = 0
	end = len(instructions)
	while pos < end:
		op = instructions[pos]
		pos += 1
		if op == OP_COPY:
			if pos + 8 > end:
				raise DecodeError("truncated copy instruction")
			offset, length = struct.unpack(">LL", instructions[pos:pos + 8])
			pos += 8
			if offset + length > len(dictionary):
				raise DecodeError("copy of %d bytes at %d is outside of the %d byte dictionary"
					% (length, offset, len(dictionary)))
			out += dictionary[offset:offset + length]
		elif op == OP_INSERT:
			if pos + 4 > end:
				raise DecodeError("truncated insert instruction")
			length, = struct.unpack(">L", instructions[pos:pos + 4])
			pos += 4
			if pos + length > end:
				raise DecodeError("truncated insert data")
			out += instructions[pos:pos + length]
			pos += length
		else:
			raise DecodeError("unknown delta instruction 0x%02x" % op)
	return bytes(out)


def _decompress(decompress, data, dictionary, what):
	try:
		return decompress(data, dictionary)
	except DecodeError:
		raise
	except Exception as e:
		raise DecodeError("failed to decompress %s: %s" % (what, e)) from e


def _checkPayload(what, data, length, checksum):
	if len(data) != length:
		raise DecodeError("%s: expected %d bytes, found %d" % (what, length, len(data)))
	if calcChecksum(data) != checksum:
		raise DecodeError("%s: checksum mismatch" % what)


def _compatibilityId(header):
	return tuple(header["compatId%d" % i] for i in range(4))


def decodePatch(format, data, decompress=None):
	"""Decode the patch 'data' of a map entry with patch 'format'.

	'decompress' is the black-box decoder, called as
	decompress(data, dictionary=None); it defaults to brotliDecompress.
	"""
	if decompress is None:
		decompress = brotliDecompress
	if format not in patchMagics:
		raise DecodeError("unknown patch format %r" % format)
	magic = data[:4]
	if magic != patchMagics[format]:
		raise DecodeError("not a %s patch (bad format marker %r)" % (patchFormats[format], magic))
	if format == TABLE_KEYED:
		return _decodeTableKeyed(data, decompress)
	else:
		return _decodeGlyphKeyed(data, decompress)


def _decodeTableKeyed(data, decompress):
	if len(data) < tableKeyedHeaderSize:
		raise DecodeError("table-keyed patch is too short (%d bytes)" % len(data))
	header = sstruct.unpack(tableKeyedHeaderFormat, data[:tableKeyedHeaderSize])
	count = header["patchCount"]
	offsetsEnd = tableKeyedHeaderSize + 4 * (count + 1)
	if len(data) < offsetsEnd:
		raise DecodeError("table-keyed patch is truncated")
	offsets = struct.unpack(">%dL" % (count + 1), data[tableKeyedHeaderSize:offsetsEnd])
	operations = []
	seen = set()
	for i in range(count):
		start, end = offsets[i], offsets[i + 1]
		if not offsetsEnd <= start <= end <= len(data) or end - start < tablePatchSize:
			raise DecodeError("bad offsets %d-%d for table patch %d" % (start, end, i))
		record = sstruct.unpack(tablePatchFormat, data[start:start + tablePatchSize])
		tag = Tag(record["tag"])
		if tag in seen:
			raise DecodeError("'%s' table is patched more than once" % tag)
		seen.add(tag)
		stream = data[start + tablePatchSize:end]
		kind = record["flags"]
		if kind == REPLACE:
			payload = _decompress(decompress, stream, None, "replacement '%s' table" % tag)
			_checkPayload("replacement '%s' table" % tag, payload,
				record["uncompressedLength"], record["uncompressedChecksum"])
		elif kind == DELTA:
			payload = stream
		elif kind == DROP:
			payload = b""
		else:
			raise DecodeError("unknown flags 0x%02x for '%s' table patch" % (kind, tag))
		operations.append(TableOperation(tag, kind, payload,
			record["sourceLength"], record["sourceChecksum"],
			record["uncompressedLength"], record["uncompressedChecksum"]))
	log.debug("decoded table-keyed patch for tables %s", ", ".join(op.tag for op in operations))
	return TableKeyedPatch(_compatibilityId(header), operations)


def decodeTableDelta(operation, dictionary, decompress=None):
	"""Decode a DELTA table operation against 'dictionary', the current
	bytes of the table it was authored for.
	"""
	if decompress is None:
		decompress = brotliDecompress
	if len(dictionary) != operation.sourceLength or calcChecksum(dictionary) != operation.sourceChecksum:
		raise DecodeError("delta for '%s' table was not made for its current data" % operation.tag)
	payload = _decompress(decompress, operation.data, dictionary, "delta for '%s' table" % operation.tag)
	_checkPayload("patched '%s' table" % operation.tag, payload,
		operation.uncompressedLength, operation.uncompressedChecksum)
	return payload


def _decodeGlyphKeyed(data, decompress):
	if len(data) < glyphKeyedHeaderSize:
		raise DecodeError("glyph-keyed patch is too short (%d bytes)" % len(data))
	header = sstruct.unpack(glyphKeyedHeaderFormat, data[:glyphKeyedHeaderSize])
	payload = _decompress(decompress, data[glyphKeyedHeaderSize:], None, "glyph-keyed patch")
	_checkPayload("glyph-keyed patch", payload,
		header["uncompressedLength"], header["uncompressedChecksum"])

	if len(payload) < 5:
		raise DecodeError("glyph-keyed patch payload is too short")
	glyphCount, tableCount = struct.unpack(">LB", payload[:5])
	pos = 5
	idsEnd = pos + 2 * glyphCount
	tagsEnd = idsEnd + 4 * tableCount
	offsetCount = glyphCount * tableCount + 1
	offsetsEnd = tagsEnd + 4 * offsetCount
	if len(payload) < offsetsEnd:
		raise DecodeError("glyph-keyed patch payload is truncated")
	glyphIDs = struct.unpack(">%dH" % glyphCount, payload[pos:idsEnd])
	for a, b in zip(glyphIDs, glyphIDs[1:]):
		if a >= b:
			raise DecodeError("glyph ids are not in strictly ascending order")
	tags = [Tag(payload[i:i + 4]) for i in range(idsEnd, tagsEnd, 4)]
	if len(set(tags)) != len(tags):
		raise DecodeError("duplicate table tag in glyph-keyed patch")
	offsets = struct.unpack(">%dL" % offsetCount, payload[tagsEnd:offsetsEnd])
	if offsets[0] < offsetsEnd or offsets[-1] > len(payload):
		raise DecodeError("glyph data offsets are outside of the patch")

	glyphs = OrderedDict()
	index = 0
	for tag in tags:
		tableGlyphs = OrderedDict()
		for glyphID in glyphIDs:
			start, end = offsets[index], offsets[index + 1]
			if start > end:
				raise DecodeError("glyph data offsets are not in ascending order")
			tableGlyphs[glyphID] = payload[start:end]
			index += 1
		glyphs[tag] = tableGlyphs
	log.debug("decoded glyph-keyed patch with %d glyphs in %d tables", glyphCount, tableCount)
	return GlyphKeyedPatch(_compatibilityId(header), glyphs)
