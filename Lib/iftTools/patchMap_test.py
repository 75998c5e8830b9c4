from iftTools import MapParseError
from iftTools.sfnt import Font
from iftTools.subsetDefinition import SubsetDefinition
from iftTools.patchMap import (
	PatchMap, PatchMapEntry, readPatchMaps, readPatchMapEntries, supportedSubset,
	expandUriTemplate, patchMapHeaderSize, TABLE_KEYED, GLYPH_KEYED, IFT_TAG, IFTX_TAG)
import struct
import pytest


COMPAT_ID = (1, 2, 3, 4)


def makeMap(tag=IFT_TAG, compatibilityId=COMPAT_ID):
	return PatchMap(compatibilityId, "//foo.bar/{id}",
		supported=SubsetDefinition.fromRanges([(0x20, 0x2F)]),
		entries=[
			PatchMapEntry(1, SubsetDefinition.fromRanges([(0x41, 0x5A)]), TABLE_KEYED),
			PatchMapEntry(2, SubsetDefinition.fromRanges([(0x61, 0x7A)], ["liga"]), GLYPH_KEYED,
				invalidates=[3]),
			PatchMapEntry(3, SubsetDefinition(designSpace={"wght": [(100, 900)]}), GLYPH_KEYED,
				uriTemplate="https://other/{d1}/{id}"),
		], tag=tag)


@pytest.fixture
def mapData():
	return makeMap().compile()


class PatchMapTest:

	def test_roundtrip(self, mapData):
		patchMap = PatchMap.decompile(mapData)
		assert patchMap.compile() == mapData

	def test_decompile(self, mapData):
		patchMap = PatchMap.decompile(mapData)
		assert patchMap.tag == IFT_TAG
		assert patchMap.compatibilityId == COMPAT_ID
		assert patchMap.uriTemplate == "//foo.bar/{id}"
		assert patchMap.supported == SubsetDefinition.fromRanges([(0x20, 0x2F)])
		assert [e.entryId for e in patchMap.entries] == [1, 2, 3]
		e1, e2, e3 = patchMap.entries
		assert e1.format == TABLE_KEYED
		assert e1.subset.codepoints == frozenset(range(0x41, 0x5B))
		assert e2.isGlyphKeyed
		assert e2.subset.featureTags == frozenset(["liga"])
		assert e2.invalidates == frozenset([3])
		assert e3.subset.designSpace["wght"][0] == (100, 900)
		for entry in patchMap.entries:
			assert entry.mapTag == IFT_TAG
			assert entry.compatibilityId == COMPAT_ID

	def test_entry_uris(self, mapData):
		e1, e2, e3 = PatchMap.decompile(mapData).entries
		assert e1.uri() == "//foo.bar/04"
		assert e2.uri() == "//foo.bar/08"
		assert e3.uri() == "https://other/C/0C"

	def test_entry_decompile_returns_next_offset(self):
		entry = PatchMapEntry(5, SubsetDefinition.fromRanges([(0x41, 0x5A)], ["liga"]), GLYPH_KEYED,
			invalidates=[6], uriTemplate="//x/{id}")
		data = b"\0\0" + entry.compile() + b"trailer"
		decoded, offset = PatchMapEntry.decompile(data, 2)
		assert data[offset:] == b"trailer"
		assert decoded.entryId == 5
		assert decoded.invalidates == frozenset([6])
		assert decoded.uriTemplate == "//x/{id}"

	def test_fixed_axis_values(self):
		patchMap = PatchMap(entries=[
			PatchMapEntry(1, SubsetDefinition(designSpace={"wdth": [(62.5, 100.25)]}), GLYPH_KEYED)])
		data = patchMap.compile()
		entry = PatchMap.decompile(data).entries[0]
		assert entry.subset.designSpace["wdth"][0] == (62.5, 100.25)
		assert PatchMap.decompile(data).compile() == data

	def test_zero_entries(self):
		data = PatchMap(COMPAT_ID, "").compile()
		patchMap = PatchMap.decompile(data)
		assert patchMap.entries == []
		assert patchMap.supported.isEmpty()
		assert len(data) == patchMapHeaderSize + 6

	def test_too_short(self, mapData):
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(mapData[:patchMapHeaderSize - 1])
		assert "too short" in str(excinfo.value)

	def test_truncated(self, mapData):
		for size in (patchMapHeaderSize + 4, len(mapData) - 1):
			with pytest.raises(MapParseError):
				PatchMap.decompile(mapData[:size])

	def test_bad_format(self, mapData):
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(b"\0\2" + mapData[2:])
		assert "format 2" in str(excinfo.value)

	def test_bad_entry_count(self, mapData):
		# claim one more entry than the offsets array holds
		data = mapData[:20] + struct.pack(">H", 4) + mapData[22:]
		with pytest.raises(MapParseError):
			PatchMap.decompile(data)

	def test_offset_outside_table(self, mapData):
		data = mapData[:patchMapHeaderSize] + struct.pack(">L", len(mapData)) + mapData[patchMapHeaderSize + 4:]
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(data)
		assert "outside" in str(excinfo.value)

	def test_duplicate_ids(self):
		patchMap = PatchMap(entries=[
			PatchMapEntry(1, SubsetDefinition([1]), GLYPH_KEYED),
			PatchMapEntry(1, SubsetDefinition([2]), GLYPH_KEYED)])
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(patchMap.compile())
		assert "duplicate entry id 1" in str(excinfo.value)

	def test_self_invalidation(self):
		patchMap = PatchMap(entries=[
			PatchMapEntry(7, SubsetDefinition([1]), TABLE_KEYED, invalidates=[7])])
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(patchMap.compile())
		assert "invalidates itself" in str(excinfo.value)

	def test_invalidation_cycle(self):
		patchMap = PatchMap(entries=[
			PatchMapEntry(1, SubsetDefinition([1]), TABLE_KEYED, invalidates=[2]),
			PatchMapEntry(2, SubsetDefinition([2]), TABLE_KEYED, invalidates=[3]),
			PatchMapEntry(3, SubsetDefinition([3]), TABLE_KEYED, invalidates=[1])])
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(patchMap.compile())
		assert "transitively invalidates itself" in str(excinfo.value)

	def test_unknown_entry_format(self, mapData):
		patchMap = PatchMap.decompile(mapData)
		offset = struct.unpack(">L", mapData[patchMapHeaderSize:patchMapHeaderSize + 4])[0]
		data = bytearray(mapData)
		data[offset + 2] = 9
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(bytes(data))
		assert "unknown patch format 9" in str(excinfo.value)
		assert len(patchMap.entries) == 3

	def test_bad_codepoint_range(self):
		data = PatchMap().compile()
		# supported subset: one range, 0x110000-0x110000
		data = data[:patchMapHeaderSize] + struct.pack(">HLLHH", 1, 0x110000, 0x110000, 0, 0)
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(data)
		assert "invalid codepoint range" in str(excinfo.value)

	def test_bad_template(self):
		data = bytearray(PatchMap(uriTemplate="ab").compile())
		data[patchMapHeaderSize] = 0xff
		with pytest.raises(MapParseError) as excinfo:
			PatchMap.decompile(bytes(data))
		assert "UTF-8" in str(excinfo.value)

	def test_markApplied(self, mapData):
		patchMap = PatchMap.decompile(mapData)
		patchMap.markApplied(2)
		assert [e.entryId for e in patchMap.entries] == [1]
		assert 2 not in patchMap and 3 not in patchMap
		assert 0x61 in patchMap.supported.codepoints
		assert "liga" in patchMap.supported.featureTags
		patchMap = PatchMap.decompile(patchMap.compile())
		assert [e.entryId for e in patchMap.entries] == [1]


class ReadPatchMapsTest:

	def test_no_map(self):
		with pytest.raises(MapParseError) as excinfo:
			readPatchMaps(Font({"head": b"\0" * 54}))
		assert "no 'IFT ' table" in str(excinfo.value)

	def test_ift_and_iftx(self):
		iftx = PatchMap((5, 6, 7, 8), "//x/{id}",
			supported=SubsetDefinition([0x30]),
			entries=[PatchMapEntry(9, SubsetDefinition([0x100]), GLYPH_KEYED)], tag=IFTX_TAG)
		font = Font({IFT_TAG: makeMap().compile(), IFTX_TAG: iftx.compile()})
		maps = readPatchMaps(font)
		assert [m.tag for m in maps] == [IFT_TAG, IFTX_TAG]
		entries = readPatchMapEntries(font)
		assert [e.entryId for e in entries] == [1, 2, 3, 9]
		assert entries[-1].compatibilityId == (5, 6, 7, 8)
		assert entries[-1].uri() == "//x/14"
		support = supportedSubset(maps)
		assert support.codepoints == frozenset(range(0x20, 0x31))

	def test_duplicate_ids_across_maps(self):
		iftx = PatchMap(entries=[PatchMapEntry(1, SubsetDefinition([0x100]), GLYPH_KEYED)],
			tag=IFTX_TAG)
		font = Font({IFT_TAG: makeMap().compile(), IFTX_TAG: iftx.compile()})
		with pytest.raises(MapParseError):
			readPatchMaps(font)


def test_expandUriTemplate():
	assert expandUriTemplate("//foo.bar/{id}", 0) == "//foo.bar/00"
	assert expandUriTemplate("//foo.bar/{id}", 4) == "//foo.bar/0G"
	assert expandUriTemplate("{d1}/{d2}/{d3}/{id}", 0x1234) == "0/Q/8/28Q0"
	assert expandUriTemplate("static.br", 3) == "static.br"
