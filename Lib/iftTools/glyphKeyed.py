"""Apply glyph-keyed patches to the 'glyf' table and its 'loca' index."""

from iftTools import PatchApplyError
import array
import struct
import sys
import logging


log = logging.getLogger(__name__)


# tables a glyph-keyed patch may splice into
supportedTables = ("glyf",)


def getIndexFormat(font):
	if "head" not in font:
		raise PatchApplyError("font has no 'head' table")
	head = font["head"]
	if len(head) < 54:
		raise PatchApplyError("'head' table is too short (%d bytes)" % len(head))
	indexFormat, = struct.unpack(">h", head[50:52])
	if indexFormat not in (0, 1):
		raise PatchApplyError("unknown indexToLocFormat %d" % indexFormat)
	return indexFormat


def decompileLoca(data, indexFormat):
	if indexFormat == 0:
		locations = array.array("H")
	else:
		locations = array.array("I")
	if len(data) % locations.itemsize:
		raise PatchApplyError("'loca' table length %d is not a multiple of %d"
			% (len(data), locations.itemsize))
	locations.frombytes(data)
	if sys.byteorder != "big":
		locations.byteswap()
	if indexFormat == 0:
		return [l * 2 for l in locations]
	return list(locations)


def compileLoca(locations, indexFormat):
	if indexFormat == 0:
		if max(locations) >= 0x20000:
			raise PatchApplyError("indexFormat is 0 but local offsets > 0x20000")
		if not all(l % 2 == 0 for l in locations):
			raise PatchApplyError("indexFormat is 0 but local offsets not multiples of 2")
		offsetArray = array.array("H", [l // 2 for l in locations])
	else:
		if max(locations) > 0xFFFFFFFF:
			raise PatchApplyError("'glyf' table is too large for 'loca' offsets")
		offsetArray = array.array("I", locations)
	if sys.byteorder != "big":
		offsetArray.byteswap()
	return offsetArray.tobytes()


def checkLocations(locations, glyfLength):
	"""'loca' offsets must never decrease and must end inside 'glyf'."""
	if not locations:
		raise PatchApplyError("'loca' table is empty")
	for i in range(len(locations) - 1):
		if locations[i] > locations[i + 1]:
			raise PatchApplyError("'loca' offsets decrease at glyph %d (%d > %d)"
				% (i, locations[i], locations[i + 1]))
	if locations[-1] > glyfLength:
		raise PatchApplyError("'loca' offset %d is past the end of the %d byte 'glyf' table"
			% (locations[-1], glyfLength))


def spliceGlyphs(glyf, locations, newGlyphs, indexFormat):
	"""Rebuild 'glyf' with the glyph data of 'newGlyphs' ({glyphID: data})
	in place of the old; return (glyfData, locations).
	"""
	numGlyphs = len(locations) - 1
	for glyphID in newGlyphs:
		if glyphID >= numGlyphs:
			raise PatchApplyError("glyph id %d is out of range (font has %d glyphs)"
				% (glyphID, numGlyphs))
	chunks = []
	newLocations = [0]
	for glyphID in range(numGlyphs):
		if glyphID in newGlyphs:
			data = newGlyphs[glyphID]
			if indexFormat == 0 and len(data) % 2:
				data += b"\0"
		else:
			data = glyf[locations[glyphID]:locations[glyphID + 1]]
		chunks.append(data)
		newLocations.append(newLocations[-1] + len(data))
	glyfData = b"".join(chunks)
	checkLocations(newLocations, len(glyfData))
	return glyfData, newLocations


def applyGlyphKeyedPatch(font, patch, compatibilityId=None):
	"""Return a copy of 'font' with the glyph data of 'patch' spliced in.

	Glyphs not in the patch keep their exact bytes; 'loca' is rebuilt
	from the new glyph lengths. 'font' itself is never modified.
	"""
	if compatibilityId is not None and tuple(compatibilityId) != patch.compatibilityId:
		raise PatchApplyError("patch compatibility id %r does not match the font's %r"
			% (patch.compatibilityId, tuple(compatibilityId)))
	for tag in patch.tables:
		if tag not in supportedTables:
			raise PatchApplyError("glyph-keyed patches for '%s' table are not supported" % tag)
	result = font.copy()
	newGlyphs = patch.glyphs.get("glyf")
	if not newGlyphs:
		return result
	for tag in ("glyf", "loca"):
		if tag not in font:
			raise PatchApplyError("font has no '%s' table" % tag)
	indexFormat = getIndexFormat(font)
	glyf = font["glyf"]
	locations = decompileLoca(font["loca"], indexFormat)
	checkLocations(locations, len(glyf))

	glyfData, newLocations = spliceGlyphs(glyf, locations, newGlyphs, indexFormat)
	log.debug("spliced %d glyphs into 'glyf' (%d -> %d bytes)", len(newGlyphs), len(glyf), len(glyfData))
	result["glyf"] = glyfData
	result["loca"] = compileLoca(newLocations, indexFormat)
	return result
