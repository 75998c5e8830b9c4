"""Subset definitions: the codepoints, layout features and design-space
regions that a font supports, a request asks for, or a patch map entry
grants.
"""

from fontTools.misc.textTools import Tag
from collections import namedtuple
import types


# weight of a single point on an axis: one 16.16 step
pointWeight = 1.0 / 0x10000


class AxisRange(namedtuple("AxisRange", ["start", "end"])):
	"""Closed interval on one design-space axis."""

	__slots__ = ()

	def __new__(cls, start, end=None):
		if end is None:
			end = start
		if start > end:
			raise ValueError("axis range start %r is greater than end %r" % (start, end))
		return super(AxisRange, cls).__new__(cls, start, end)

	@property
	def isPoint(self):
		return self.start == self.end

	def weight(self):
		"""Length of the interval; a point weighs one 16.16 step."""
		return max(self.end - self.start, pointWeight)

	def intersects(self, other):
		return self.start <= other.end and other.start <= self.end


def _normaliseRanges(ranges):
	"""Sort 'ranges' and merge the overlapping ones."""
	result = []
	for r in sorted(ranges):
		if result and r.start <= result[-1].end:
			last = result[-1]
			result[-1] = AxisRange(last.start, max(last.end, r.end))
		else:
			result.append(r)
	return tuple(result)


def _intersectRanges(a, b):
	result = []
	for x in a:
		for y in b:
			if not x.intersects(y):
				continue
			r = AxisRange(max(x.start, y.start), min(x.end, y.end))
			# two ranges only touching at a boundary share nothing
			if r.isPoint and not (x.isPoint or y.isPoint):
				continue
			result.append(r)
	return _normaliseRanges(result)


def _subtractRanges(a, b):
	result = list(a)
	for y in b:
		remaining = []
		for x in result:
			if not x.intersects(y):
				remaining.append(x)
				continue
			# closed intervals: the pieces keep the boundary points of 'y'
			if x.start < y.start:
				remaining.append(AxisRange(x.start, y.start))
			if x.end > y.end:
				remaining.append(AxisRange(y.end, x.end))
		result = remaining
	return _normaliseRanges(result)


def _mergeDesignSpace(a, b, op):
	result = {}
	for tag in set(a) | set(b):
		ranges = op(a.get(tag, ()), b.get(tag, ()))
		if ranges:
			result[tag] = ranges
	return result


class SubsetDefinition(object):
	"""Immutable set of codepoints, feature tags and design-space ranges.

	The design space maps an axis tag to a tuple of disjoint, sorted
	AxisRange intervals. Union, intersection and difference apply to
	the three components independently.
	"""

	__slots__ = ("codepoints", "featureTags", "designSpace", "_hash")

	def __init__(self, codepoints=(), featureTags=(), designSpace=None):
		object.__setattr__(self, "codepoints", frozenset(codepoints))
		object.__setattr__(self, "featureTags", frozenset(Tag(t) for t in featureTags))
		space = {}
		for tag, ranges in (designSpace or {}).items():
			if isinstance(ranges, AxisRange):
				ranges = (ranges,)
			ranges = _normaliseRanges(AxisRange(*r) for r in ranges)
			if ranges:
				space[Tag(tag)] = ranges
		object.__setattr__(self, "designSpace", types.MappingProxyType(space))
		object.__setattr__(self, "_hash", None)

	@classmethod
	def fromRanges(cls, codepointRanges=(), featureTags=(), designSpace=None):
		"""Build a definition from inclusive (start, end) codepoint ranges."""
		codepoints = set()
		for start, end in codepointRanges:
			codepoints.update(range(start, end + 1))
		return cls(codepoints, featureTags, designSpace)

	def __setattr__(self, name, value):
		raise AttributeError("%s is immutable" % self.__class__.__name__)

	def __or__(self, other):
		return SubsetDefinition(
			self.codepoints | other.codepoints,
			self.featureTags | other.featureTags,
			_mergeDesignSpace(self.designSpace, other.designSpace,
				lambda a, b: _normaliseRanges(a + b)))

	def __and__(self, other):
		return SubsetDefinition(
			self.codepoints & other.codepoints,
			self.featureTags & other.featureTags,
			_mergeDesignSpace(self.designSpace, other.designSpace, _intersectRanges))

	def __sub__(self, other):
		return SubsetDefinition(
			self.codepoints - other.codepoints,
			self.featureTags - other.featureTags,
			_mergeDesignSpace(self.designSpace, other.designSpace, _subtractRanges))

	def isEmpty(self):
		return not (self.codepoints or self.featureTags or self.designSpace)

	def __bool__(self):
		return not self.isEmpty()

	def intersects(self, other):
		return not (self & other).isEmpty()

	def coverageSize(self):
		"""Number of codepoints and features, plus the length of every axis
		interval in this subset.
		"""
		return (len(self.codepoints) + len(self.featureTags)
			+ sum(r.weight() for ranges in self.designSpace.values() for r in ranges))

	def codepointRanges(self):
		"""Return the codepoints as sorted, inclusive (start, end) ranges."""
		ranges = []
		for cp in sorted(self.codepoints):
			if ranges and ranges[-1][1] == cp - 1:
				ranges[-1][1] = cp
			else:
				ranges.append([cp, cp])
		return [tuple(r) for r in ranges]

	def __eq__(self, other):
		if not isinstance(other, SubsetDefinition):
			return NotImplemented
		return (self.codepoints == other.codepoints
			and self.featureTags == other.featureTags
			and self.designSpace == other.designSpace)

	def __ne__(self, other):
		result = self.__eq__(other)
		return result if result is NotImplemented else not result

	def __hash__(self):
		if self._hash is None:
			space = frozenset(self.designSpace.items())
			object.__setattr__(self, "_hash", hash((self.codepoints, self.featureTags, space)))
		return self._hash

	def __repr__(self):
		parts = []
		if self.codepoints:
			parts.append("codepoints=%s" % ",".join(
				"%04X" % s if s == e else "%04X-%04X" % (s, e)
				for s, e in self.codepointRanges()))
		if self.featureTags:
			parts.append("features=%s" % ",".join(sorted(self.featureTags)))
		for tag in sorted(self.designSpace):
			parts.append("%s=%s" % (tag, ",".join(
				"%g:%g" % tuple(r) for r in self.designSpace[tag])))
		return "<%s %s>" % (self.__class__.__name__, " ".join(parts) or "empty")
