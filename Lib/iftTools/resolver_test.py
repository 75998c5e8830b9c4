from iftTools import Unsatisfiable
from iftTools.subsetDefinition import SubsetDefinition
from iftTools.patchMap import PatchMapEntry, TABLE_KEYED, GLYPH_KEYED
from iftTools.resolver import resolve
import pytest


def entry(entryId, ranges=(), features=(), designSpace=None, format=GLYPH_KEYED, invalidates=()):
	return PatchMapEntry(entryId, SubsetDefinition.fromRanges(ranges, features, designSpace),
		format, invalidates)


def ids(plan):
	return [e.entryId for e in plan]


NOTHING = SubsetDefinition()


class ResolveTest:

	def test_upper_and_lower_case(self):
		entries = [
			entry(1, [(0x41, 0x5A)], format=TABLE_KEYED),
			entry(2, [(0x61, 0x7A)]),
		]
		plan = resolve(entries, NOTHING, SubsetDefinition([0x41, 0x61]))
		assert ids(plan) == [1, 2]

	def test_already_supported(self):
		entries = [entry(1, [(0x41, 0x5A)])]
		support = SubsetDefinition.fromRanges([(0x41, 0x5A)])
		assert resolve(entries, support, SubsetDefinition([0x41, 0x42])) == []
		assert resolve([], NOTHING, NOTHING) == []

	def test_minimal_cover(self):
		entries = [
			entry(1, [(0x41, 0x4D)]),
			entry(2, [(0x4E, 0x5A)]),
			entry(3, [(0x41, 0x5A)]),
			entry(4, [(0x41, 0x41)]),
		]
		plan = resolve(entries, NOTHING, SubsetDefinition([0x41, 0x5A]))
		assert ids(plan) == [3]

	def test_largest_coverage_first(self):
		entries = [
			entry(1, [(0x41, 0x42)]),
			entry(2, [(0x41, 0x45)]),
			entry(3, [(0x46, 0x46)]),
		]
		plan = resolve(entries, NOTHING, SubsetDefinition.fromRanges([(0x41, 0x46)]))
		assert ids(plan) == [2, 3]

	def test_ties_break_by_lowest_id(self):
		entries = [
			entry(7, [(0x41, 0x41)]),
			entry(3, [(0x41, 0x41)]),
			entry(5, [(0x41, 0x41)]),
		]
		plan = resolve(entries, NOTHING, SubsetDefinition([0x41]))
		assert ids(plan) == [3]

	def test_deterministic(self):
		entries = [entry(i, [(0x41 + i % 5, 0x50 + i % 3)], ["liga"] if i % 2 else []) for i in range(1, 20)]
		target = SubsetDefinition.fromRanges([(0x41, 0x52)], ["liga"])
		first = ids(resolve(entries, NOTHING, target))
		assert first == ids(resolve(list(reversed(entries)), NOTHING, target))
		assert first == ids(resolve(entries, NOTHING, target))

	def test_invalidation(self):
		# 1 supersedes 2; 2 alone would still cover 0x5A
		entries = [
			entry(1, [(0x41, 0x50)], format=TABLE_KEYED, invalidates=[2]),
			entry(2, [(0x41, 0x5A)]),
			entry(3, [(0x51, 0x5A)]),
		]
		plan = resolve(entries, NOTHING, SubsetDefinition.fromRanges([(0x41, 0x50)]) | SubsetDefinition([0x5A]))
		assert ids(plan) == [2]
		plan = resolve(entries, NOTHING, SubsetDefinition.fromRanges([(0x41, 0x55)]))
		assert ids(plan) == [2]
		# equal coverage: 1 wins the tie and drops 2
		plan = resolve(entries, NOTHING, SubsetDefinition.fromRanges([(0x41, 0x50)]))
		assert ids(plan) == [1]

	def test_invalidated_entry_never_selected(self):
		entries = [
			entry(1, [(0x41, 0x45)], format=TABLE_KEYED, invalidates=[2]),
			entry(2, [(0x46, 0x46)]),
			entry(3, [(0x46, 0x46)]),
		]
		plan = resolve(entries, NOTHING, SubsetDefinition.fromRanges([(0x41, 0x46)]))
		assert ids(plan) == [1, 3]

	def test_invalidation_makes_target_unsatisfiable(self):
		entries = [
			entry(1, [(0x41, 0x45)], format=TABLE_KEYED, invalidates=[2]),
			entry(2, [(0x46, 0x46)]),
		]
		with pytest.raises(Unsatisfiable) as excinfo:
			resolve(entries, NOTHING, SubsetDefinition.fromRanges([(0x41, 0x46)]))
		assert excinfo.value.remaining == SubsetDefinition([0x46])

	def test_unsatisfiable(self):
		entries = [entry(1, [(0x41, 0x5A)])]
		with pytest.raises(Unsatisfiable) as excinfo:
			resolve(entries, NOTHING, SubsetDefinition([0x41, 0x4E00]))
		assert excinfo.value.remaining == SubsetDefinition([0x4E00])
		with pytest.raises(Unsatisfiable):
			resolve([], NOTHING, SubsetDefinition([0x41]))

	def test_design_space_minimal_cover(self):
		entries = [
			entry(1, designSpace={"wght": [(100, 110)]}),
			entry(2, designSpace={"wght": [(100, 900)]}),
		]
		target = SubsetDefinition(designSpace={"wght": [(100, 900)]})
		assert ids(resolve(entries, NOTHING, target)) == [2]

	def test_design_space_split_cover(self):
		entries = [
			entry(1, designSpace={"wght": [(100, 400)]}),
			entry(2, designSpace={"wght": [(300, 400)]}),
			entry(3, designSpace={"wght": [(400, 900)]}),
		]
		target = SubsetDefinition(designSpace={"wght": [(100, 900)]})
		assert ids(resolve(entries, NOTHING, target)) == [3, 1]
		target = SubsetDefinition(designSpace={"wght": [(400, 900)]})
		assert ids(resolve(entries, NOTHING, target)) == [3]

	def test_features_and_design_space(self):
		entries = [
			entry(1, [(0x41, 0x5A)]),
			entry(2, features=["liga", "smcp"]),
			entry(3, designSpace={"wght": [(100, 900)]}),
		]
		target = SubsetDefinition([0x41], ["smcp"], {"wght": [(700, 700)]})
		assert ids(resolve(entries, NOTHING, target)) == [1, 2, 3]
		target = SubsetDefinition(designSpace={"wght": [(700, 700)]})
		support = SubsetDefinition(designSpace={"wght": [(400, 400)]})
		assert ids(resolve(entries, support, target)) == [3]
		with pytest.raises(Unsatisfiable):
			resolve(entries, NOTHING, SubsetDefinition(designSpace={"wdth": [(100, 100)]}))
