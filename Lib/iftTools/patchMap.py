"""iftTools.patchMap -- read and write the patch map tables ('IFT ' and
'IFTX') which list the patches that can extend a font.

Each map holds a compatibility id, a default URI template, the subset
definition the font already supports, and the entries still available:

	PatchMap.decompile(data, tag)  -> PatchMap
	PatchMap.compile()             -> bytes
	readPatchMaps(font)            -> [PatchMap, ...]
	readPatchMapEntries(font)      -> [PatchMapEntry, ...]
"""

from fontTools.misc import sstruct
from fontTools.misc.textTools import Tag, tobytes
from iftTools import MapParseError
from iftTools.subsetDefinition import SubsetDefinition, AxisRange
import base64
import struct
import logging


log = logging.getLogger(__name__)


IFT_TAG = "IFT "
IFTX_TAG = "IFTX"
patchMapTags = (IFT_TAG, IFTX_TAG)

TABLE_KEYED = 1
GLYPH_KEYED = 2
patchFormats = {TABLE_KEYED: "table-keyed", GLYPH_KEYED: "glyph-keyed"}

# entry flags
ENTRY_HAS_URI_TEMPLATE = 0x01

MAX_CODEPOINT = 0x10FFFF

patchMapHeaderFormat = """
		> # big endian
		format:             H    # 1
		reserved:           H    # set to 0
		compatId0:          L
		compatId1:          L
		compatId2:          L
		compatId3:          L
		entryCount:         H
		uriTemplateLength:  H
"""

patchMapHeaderSize = sstruct.calcsize(patchMapHeaderFormat)

axisRangeFormat = """
		> # big endian
		tag:    4s
		start:  16.16F
		end:    16.16F
"""

axisRangeSize = sstruct.calcsize(axisRangeFormat)


def _unpack(fmt, data, offset, what):
	size = struct.calcsize(fmt)
	if offset + size > len(data):
		raise MapParseError("patch map is truncated while reading %s" % what)
	return struct.unpack(fmt, data[offset:offset + size]), offset + size


def _decodeTemplate(data):
	try:
		return data.decode("utf-8")
	except UnicodeDecodeError:
		raise MapParseError("invalid UTF-8 in URI template")


def decompileSubset(data, offset):
	"""Parse a subset record at 'offset'; return (SubsetDefinition, newOffset)."""
	(rangeCount,), offset = _unpack(">H", data, offset, "codepoint range count")
	ranges, offset = _unpack(">%dL" % (2 * rangeCount), data, offset, "codepoint ranges")
	codepoints = set()
	for i in range(0, len(ranges), 2):
		start, end = ranges[i], ranges[i + 1]
		if start > end or end > MAX_CODEPOINT:
			raise MapParseError("invalid codepoint range %04X-%04X" % (start, end))
		codepoints.update(range(start, end + 1))

	(featureCount,), offset = _unpack(">H", data, offset, "feature count")
	if offset + 4 * featureCount > len(data):
		raise MapParseError("patch map is truncated while reading feature tags")
	featureTags = [Tag(data[offset + 4 * i:offset + 4 * i + 4]) for i in range(featureCount)]
	offset += 4 * featureCount

	(axisCount,), offset = _unpack(">H", data, offset, "axis range count")
	if offset + axisRangeSize * axisCount > len(data):
		raise MapParseError("patch map is truncated while reading axis ranges")
	designSpace = {}
	for i in range(axisCount):
		record = sstruct.unpack(axisRangeFormat, data[offset:offset + axisRangeSize])
		offset += axisRangeSize
		if record["start"] > record["end"]:
			raise MapParseError("invalid range %g:%g for axis '%s'" % (
				record["start"], record["end"], Tag(record["tag"])))
		designSpace.setdefault(Tag(record["tag"]), []).append(
			AxisRange(record["start"], record["end"]))
	return SubsetDefinition(codepoints, featureTags, designSpace), offset


def compileSubset(subset):
	ranges = subset.codepointRanges()
	data = struct.pack(">H", len(ranges))
	for start, end in ranges:
		data += struct.pack(">LL", start, end)
	tags = sorted(subset.featureTags)
	data += struct.pack(">H", len(tags))
	for tag in tags:
		data += tobytes(tag, encoding="latin1")
	axisRanges = [(tag, r) for tag in sorted(subset.designSpace) for r in subset.designSpace[tag]]
	data += struct.pack(">H", len(axisRanges))
	for tag, r in axisRanges:
		data += sstruct.pack(axisRangeFormat, {"tag": tag, "start": r.start, "end": r.end})
	return data


def expandUriTemplate(template, entryId):
	"""Substitute the entry id variables of a URI template.

	{id} is the entry id in unpadded base32hex; {d1}, {d2} and {d3} are
	its last three characters, last first ('_' where missing).

		>>> expandUriTemplate("//foo.bar/{id}", 1)
		'//foo.bar/04'
		>>> expandUriTemplate("{d1}/{d2}/{d3}/{id}.br", 5)
		'K/0/_/0K.br'
	"""
	size = max(1, (entryId.bit_length() + 7) // 8)
	encoded = base64.b32hexencode(entryId.to_bytes(size, "big")).decode("ascii").rstrip("=")
	digits = (encoded[::-1] + "___")[:3]
	uri = template.replace("{id}", encoded)
	for i, digit in enumerate(digits):
		uri = uri.replace("{d%d}" % (i + 1), digit)
	return uri


class PatchMapEntry(object):
	"""One patch listed in a patch map.

	'uriTemplate' is the entry's own template, or None when it uses the
	template of the map it belongs to.
	"""

	def __init__(self, entryId, subset, format, invalidates=(), uriTemplate=None):
		if format not in patchFormats:
			raise MapParseError("unknown patch format %d for entry %d" % (format, entryId))
		self.entryId = entryId
		self.subset = subset
		self.format = format
		self.invalidates = frozenset(invalidates)
		self.uriTemplate = uriTemplate
		self.mapTag = None
		self.compatibilityId = None
		self.defaultUriTemplate = None

	@property
	def isGlyphKeyed(self):
		return self.format == GLYPH_KEYED

	def uri(self):
		template = self.uriTemplate if self.uriTemplate is not None else self.defaultUriTemplate
		if template is None:
			raise MapParseError("entry %d has no URI template" % self.entryId)
		return expandUriTemplate(template, self.entryId)

	@classmethod
	def decompile(cls, data, offset):
		(entryId, format, flags), offset = _unpack(">HBB", data, offset, "entry header")
		uriTemplate = None
		if flags & ENTRY_HAS_URI_TEMPLATE:
			(length,), offset = _unpack(">H", data, offset, "entry URI template length")
			if offset + length > len(data):
				raise MapParseError("patch map is truncated while reading entry URI template")
			uriTemplate = _decodeTemplate(data[offset:offset + length])
			offset += length
		subset, offset = decompileSubset(data, offset)
		(count,), offset = _unpack(">H", data, offset, "invalidation count")
		invalidates, offset = _unpack(">%dH" % count, data, offset, "invalidated entry ids")
		if entryId in invalidates:
			raise MapParseError("entry %d invalidates itself" % entryId)
		return cls(entryId, subset, format, invalidates, uriTemplate), offset

	def compile(self):
		flags = ENTRY_HAS_URI_TEMPLATE if self.uriTemplate is not None else 0
		data = struct.pack(">HBB", self.entryId, self.format, flags)
		if self.uriTemplate is not None:
			template = self.uriTemplate.encode("utf-8")
			data += struct.pack(">H", len(template)) + template
		data += compileSubset(self.subset)
		invalidates = sorted(self.invalidates)
		data += struct.pack(">H%dH" % len(invalidates), len(invalidates), *invalidates)
		return data

	def __repr__(self):
		return "<%s %d %s %r>" % (self.__class__.__name__, self.entryId,
			patchFormats[self.format], self.subset)


class PatchMap(object):

	def __init__(self, compatibilityId=(0, 0, 0, 0), uriTemplate="", supported=None,
			entries=(), tag=IFT_TAG):
		self.tag = Tag(tag)
		self.compatibilityId = tuple(compatibilityId)
		self.uriTemplate = uriTemplate
		self.supported = supported if supported is not None else SubsetDefinition()
		self.entries = []
		for entry in entries:
			self.addEntry(entry)

	def addEntry(self, entry):
		entry.mapTag = self.tag
		entry.compatibilityId = self.compatibilityId
		entry.defaultUriTemplate = self.uriTemplate
		self.entries.append(entry)

	@classmethod
	def decompile(cls, data, tag=IFT_TAG):
		if len(data) < patchMapHeaderSize:
			raise MapParseError("'%s' table is too short (%d bytes)" % (tag, len(data)))
		header = sstruct.unpack(patchMapHeaderFormat, data[:patchMapHeaderSize])
		if header["format"] != 1:
			raise MapParseError("unknown '%s' table format %d" % (tag, header["format"]))
		entryCount = header["entryCount"]
		offsets, pos = _unpack(">%dL" % entryCount, data, patchMapHeaderSize, "entry offsets")
		templateLength = header["uriTemplateLength"]
		if pos + templateLength > len(data):
			raise MapParseError("patch map is truncated while reading URI template")
		uriTemplate = _decodeTemplate(data[pos:pos + templateLength])
		supported, _ = decompileSubset(data, pos + templateLength)

		compatibilityId = tuple(header["compatId%d" % i] for i in range(4))
		patchMap = cls(compatibilityId, uriTemplate, supported, tag=tag)
		seen = set()
		for offset in offsets:
			if not pos <= offset < len(data):
				raise MapParseError("entry offset %d is outside of the '%s' table" % (offset, tag))
			entry, _ = PatchMapEntry.decompile(data, offset)
			if entry.entryId in seen:
				raise MapParseError("duplicate entry id %d" % entry.entryId)
			seen.add(entry.entryId)
			patchMap.addEntry(entry)
		checkInvalidationGraph(patchMap.entries)
		log.debug("read %d entries from '%s' table", len(patchMap.entries), tag)
		return patchMap

	def compile(self):
		template = self.uriTemplate.encode("utf-8")
		header = {
			"format": 1,
			"reserved": 0,
			"entryCount": len(self.entries),
			"uriTemplateLength": len(template),
		}
		for i, value in enumerate(self.compatibilityId):
			header["compatId%d" % i] = value
		body = template + compileSubset(self.supported)
		records = [entry.compile() for entry in self.entries]
		offset = patchMapHeaderSize + 4 * len(records) + len(body)
		offsets = []
		for record in records:
			offsets.append(offset)
			offset += len(record)
		return b"".join([
			sstruct.pack(patchMapHeaderFormat, header),
			struct.pack(">%dL" % len(offsets), *offsets),
			body,
		] + records)

	def __contains__(self, entryId):
		return any(e.entryId == entryId for e in self.entries)

	def getEntry(self, entryId):
		for entry in self.entries:
			if entry.entryId == entryId:
				return entry
		raise KeyError(entryId)

	def markApplied(self, entryId):
		"""Record that the patch of entry 'entryId' has been applied: the
		entry and the entries it invalidates are dropped, and its subset
		becomes part of the supported subset.
		"""
		entry = self.getEntry(entryId)
		removed = entry.invalidates | {entryId}
		self.entries = [e for e in self.entries if e.entryId not in removed]
		self.supported = self.supported | entry.subset

	def __repr__(self):
		return "<%s '%s' %d entries>" % (self.__class__.__name__, self.tag, len(self.entries))


def checkInvalidationGraph(entries):
	"""Raise MapParseError if invalidation edges among 'entries' form a cycle."""
	edges = dict((e.entryId, [i for i in e.invalidates]) for e in entries)
	WHITE, GREY, BLACK = 0, 1, 2
	color = dict.fromkeys(edges, WHITE)
	for root in sorted(edges):
		if color[root] != WHITE:
			continue
		stack = [(root, iter(edges[root]))]
		color[root] = GREY
		while stack:
			node, children = stack[-1]
			for child in children:
				if child not in color:
					continue
				if color[child] == GREY:
					raise MapParseError("entry %d transitively invalidates itself" % child)
				if color[child] == WHITE:
					color[child] = GREY
					stack.append((child, iter(edges[child])))
					break
			else:
				color[node] = BLACK
				stack.pop()


def readPatchMaps(font):
	"""Return the patch maps of 'font': the 'IFT ' table, followed by the
	'IFTX' table when present. Entry ids must be unique across both.
	"""
	if IFT_TAG not in font:
		raise MapParseError("font has no '%s' table" % IFT_TAG)
	maps = [PatchMap.decompile(font[tag], tag) for tag in patchMapTags if tag in font]
	if len(maps) > 1:
		seen = set()
		for patchMap in maps:
			for entry in patchMap.entries:
				if entry.entryId in seen:
					raise MapParseError("duplicate entry id %d" % entry.entryId)
				seen.add(entry.entryId)
		checkInvalidationGraph([e for m in maps for e in m.entries])
	return maps


def readPatchMapEntries(font):
	return [entry for patchMap in readPatchMaps(font) for entry in patchMap.entries]


def supportedSubset(maps):
	supported = SubsetDefinition()
	for patchMap in maps:
		supported = supported | patchMap.supported
	return supported


if __name__ == "__main__":
	import sys
	import doctest
	sys.exit(doctest.testmod().failed)
