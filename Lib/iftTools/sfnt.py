"""iftTools.sfnt -- low-level module to deal with the sfnt file format.

Defines three public classes:
	SFNTReader
	SFNTWriter
	Font

SFNTReader and SFNTWriter parse and serialize the table directory;
Font is the mutable in-memory table model the patch appliers work on.
Whenever a table is added, dropped or changes length the whole file is
rewritten, so Font only ever holds raw table bytes and recomputes all
offsets, lengths and checksums in Font.compile().
"""

from fontTools.misc import sstruct
from fontTools.misc.textTools import Tag
from fontTools.ttLib import getSearchRange
from iftTools import FontFormatError
from io import BytesIO
from collections import OrderedDict
import struct
import logging


log = logging.getLogger(__name__)


# -- sfnt directory helpers and cruft

sfntDirectoryFormat = """
		> # big endian
		sfntVersion:    4s
		numTables:      H    # number of tables
		searchRange:    H    # (max2 <= numTables)*16
		entrySelector:  H    # log2(max2 <= numTables)
		rangeShift:     H    # numTables*16-searchRange
"""

sfntDirectorySize = sstruct.calcsize(sfntDirectoryFormat)

sfntDirectoryEntryFormat = """
		> # big endian
		tag:            4s
		checkSum:       L
		offset:         L
		length:         L
"""

sfntDirectoryEntrySize = sstruct.calcsize(sfntDirectoryEntryFormat)

sfntVersions = ("\x00\x01\x00\x00", "OTTO", "true")

# the head table's checkSumAdjustment field
headChecksumOffset = 8

# "BiboAfba!"
checksumMagic = 0xB1B0AFBA


class SFNTDirectoryEntry(object):

	format = sfntDirectoryEntryFormat
	formatSize = sfntDirectoryEntrySize

	def fromFile(self, file):
		data = file.read(self.formatSize)
		if len(data) != self.formatSize:
			raise FontFormatError("Not a TrueType or OpenType font (truncated table directory)")
		sstruct.unpack(self.format, data, self)
		self.tag = Tag(self.tag)

	def toString(self):
		return sstruct.pack(self.format, self)

	def __repr__(self):
		if hasattr(self, "tag"):
			return "<%s '%s' at %x>" % (self.__class__.__name__, self.tag, id(self))
		else:
			return "<%s at %x>" % (self.__class__.__name__, id(self))

	def loadData(self, file):
		file.seek(self.offset)
		data = file.read(self.length)
		if len(data) != self.length:
			raise FontFormatError("'%s' table is truncated" % self.tag)
		return data

	def saveData(self, file, data):
		self.length = len(data)
		file.seek(self.offset)
		file.write(data)


class SFNTReader(object):

	directoryFormat = sfntDirectoryFormat
	directorySize = sfntDirectorySize
	DirectoryEntry = SFNTDirectoryEntry

	def __init__(self, file, checkChecksums=0):
		self.file = file
		self.checkChecksums = checkChecksums
		self.file.seek(0, 2)
		self.fileSize = self.file.tell()
		self.file.seek(0)
		self._readDirectory()

	def _readDirectory(self):
		data = self.file.read(self.directorySize)
		if len(data) != self.directorySize:
			raise FontFormatError("Not a TrueType or OpenType font (not enough data)")
		sstruct.unpack(self.directoryFormat, data, self)
		self.sfntVersion = Tag(self.sfntVersion)
		if self.sfntVersion not in sfntVersions:
			raise FontFormatError("Not a TrueType or OpenType font (bad sfntVersion)")
		self._readDirectoryEntries()

	def _readDirectoryEntries(self):
		tables = {}
		for i in range(self.numTables):
			entry = self.DirectoryEntry()
			entry.fromFile(self.file)
			if entry.offset + entry.length > self.fileSize:
				raise FontFormatError(
					"'%s' table extends past the end of the font (%d > %d)"
					% (entry.tag, entry.offset + entry.length, self.fileSize))
			if entry.tag in tables:
				raise FontFormatError("duplicate '%s' table record" % entry.tag)
			tables[entry.tag] = entry
		self.tables = OrderedDict(sorted(tables.items(), key=lambda i: i[1].offset))

	def __contains__(self, tag):
		return Tag(tag) in self.tables

	def keys(self):
		return self.tables.keys()

	def __getitem__(self, tag):
		"""Fetch the raw table data."""
		tag = Tag(tag)
		entry = self.tables[tag]
		data = entry.loadData(self.file)
		if self.checkChecksums:
			checksum = calcTableChecksum(tag, data)
			if checksum != entry.checkSum:
				if self.checkChecksums > 1:
					raise FontFormatError("bad checksum for '%s' table" % tag)
				log.warning("bad checksum for '%s' table", tag)
		return data

	def close(self):
		self.file.close()


class SFNTWriter(object):

	directoryFormat = sfntDirectoryFormat
	directorySize = sfntDirectorySize
	DirectoryEntry = SFNTDirectoryEntry

	def __init__(self, file, numTables, sfntVersion="\000\001\000\000"):
		self.file = file
		self.numTables = numTables
		self.sfntVersion = Tag(sfntVersion)
		self.searchRange, self.entrySelector, self.rangeShift = getSearchRange(self.numTables, 16)
		self.tables = OrderedDict()
		self._seekFirstTable()

	def _seekFirstTable(self):
		self.nextTableOffset = self.directorySize + self.numTables * self.DirectoryEntry.formatSize
		# clear out directory area
		self.file.seek(0)
		self.file.write(b'\0' * self.nextTableOffset)

	def __setitem__(self, tag, data):
		"""Write raw table data, padded to a 4-byte boundary."""
		tag = Tag(tag)
		if tag in self.tables:
			raise FontFormatError("cannot rewrite '%s' table" % tag)

		entry = self.DirectoryEntry()
		entry.tag = tag
		entry.checkSum = calcTableChecksum(tag, data)
		entry.offset = self.nextTableOffset
		entry.saveData(self.file, data)

		self.nextTableOffset = self.nextTableOffset + ((entry.length + 3) & ~3)
		self.file.write(b'\0' * (self.nextTableOffset - self.file.tell()))
		assert self.nextTableOffset == self.file.tell()

		self.tables[tag] = entry

	def close(self):
		"""All tables must have been written. Now write the directory and
		the head table's checkSumAdjustment.
		"""
		if len(self.tables) != self.numTables:
			raise FontFormatError("wrong number of tables; expected %d, found %d" % (
				self.numTables, len(self.tables)))
		# SFNT table directory must be sorted alphabetically by tag
		tables = sorted(self.tables.items())
		directory = sstruct.pack(self.directoryFormat, self)
		for tag, entry in tables:
			directory = directory + entry.toString()
		self.file.seek(0)
		self.file.write(directory)
		if "head" in self.tables:
			self._writeMasterChecksum(directory)

	def _writeMasterChecksum(self, directory):
		head = self.tables["head"]
		if head.length < headChecksumOffset + 4:
			raise FontFormatError("'head' table is too short (%d bytes)" % head.length)
		checksumadjustment = self._calcMasterChecksum(directory)
		self.file.seek(head.offset + headChecksumOffset)
		self.file.write(struct.pack(">L", checksumadjustment))

	def _calcMasterChecksum(self, directory):
		checksums = [entry.checkSum for entry in self.tables.values()]
		directory_end = self.directorySize + len(self.tables) * self.DirectoryEntry.formatSize
		assert directory_end == len(directory)
		checksums.append(calcChecksum(directory))
		checksum = sum(checksums) & 0xffffffff
		return (checksumMagic - checksum) & 0xffffffff


class Font(object):
	"""Ordered mapping of table tag to raw table data.

	Tables keep the order in which they were read or added; Font.compile()
	lays them out sorted by tag, as the table directory requires.
	"""

	def __init__(self, tables=None, sfntVersion="\000\001\000\000"):
		self.sfntVersion = Tag(sfntVersion)
		self.tables = OrderedDict()
		if tables:
			for tag, data in tables.items():
				self[tag] = data

	@classmethod
	def fromBytes(cls, data, checkChecksums=0):
		reader = SFNTReader(BytesIO(data), checkChecksums)
		font = cls(sfntVersion=reader.sfntVersion)
		for tag in reader.keys():
			font.tables[tag] = reader[tag]
		return font

	def compile(self):
		file = BytesIO()
		writer = SFNTWriter(file, len(self.tables), self.sfntVersion)
		for tag in sorted(self.tables):
			writer[tag] = self.tables[tag]
		writer.close()
		return file.getvalue()

	def copy(self):
		return self.__class__(self.tables, self.sfntVersion)

	def __contains__(self, tag):
		return Tag(tag) in self.tables

	def keys(self):
		return list(self.tables.keys())

	def __getitem__(self, tag):
		return self.tables[Tag(tag)]

	def __setitem__(self, tag, data):
		tag = Tag(tag)
		if len(tag) != 4:
			raise FontFormatError("table tags must be 4 characters long: %r" % tag)
		self.tables[tag] = bytes(data)

	def __delitem__(self, tag):
		del self.tables[Tag(tag)]

	def __len__(self):
		return len(self.tables)

	@property
	def numTables(self):
		return len(self.tables)

	@property
	def searchRange(self):
		return getSearchRange(self.numTables, 16)[0]

	@property
	def entrySelector(self):
		return getSearchRange(self.numTables, 16)[1]

	@property
	def rangeShift(self):
		return getSearchRange(self.numTables, 16)[2]

	@property
	def checkSumAdjustment(self):
		"""The head table's checkSumAdjustment, as last read or compiled;
		None when the font has no head table.
		"""
		if "head" not in self.tables:
			return None
		head = self.tables["head"]
		return struct.unpack(">L", head[headChecksumOffset:headChecksumOffset + 4])[0]

	def __repr__(self):
		return "<%s %s>" % (self.__class__.__name__, " ".join(repr(t) for t in self.tables))


def calcChecksum(data):
	"""Calculate the checksum for an arbitrary block of data.

	If the data length is not a multiple of four, it assumes
	it is to be padded with null byte.

		>>> print(calcChecksum(b"abcd"))
		1633837924
		>>> print(calcChecksum(b"abcdxyz"))
		3655064932
	"""
	remainder = len(data) % 4
	if remainder:
		data += b"\0" * (4 - remainder)
	value = 0
	blockSize = 4096
	assert blockSize % 4 == 0
	for i in range(0, len(data), blockSize):
		block = data[i:i+blockSize]
		longs = struct.unpack(">%dL" % (len(block) // 4), block)
		value = (value + sum(longs)) & 0xffffffff
	return value


def calcTableChecksum(tag, data):
	if tag == 'head':
		# the head table is summed with its checkSumAdjustment zeroed
		return calcChecksum(data[:8] + b'\0\0\0\0' + data[12:])
	else:
		return calcChecksum(data)


def verifyChecksums(data):
	"""Check every table checksum of the compiled font 'data', and the
	file-level checksum when a head table is present.
	"""
	reader = SFNTReader(BytesIO(data), checkChecksums=2)
	for tag in reader.keys():
		reader[tag]
	if "head" in reader and calcChecksum(data) != checksumMagic:
		raise FontFormatError("bad checkSumAdjustment in 'head' table")


if __name__ == "__main__":
	import sys
	import doctest
	sys.exit(doctest.testmod().failed)
