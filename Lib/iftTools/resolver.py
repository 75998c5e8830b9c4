"""Select the patches needed to extend a font to a target subset."""

from iftTools import Unsatisfiable
import logging


log = logging.getLogger(__name__)


def resolve(entries, currentSupport, targetSubset):
	"""Return the ordered list of entries to apply so that 'currentSupport'
	grows to cover 'targetSubset'.

	Greedy set cover over the unmet part of the target: each round takes
	the entry granting the most of what is still needed, the lowest entry
	id winning ties. A selected entry removes the entries it invalidates
	from consideration. Raises Unsatisfiable when some of the target can't
	be covered by any remaining entry.
	"""
	needed = targetSubset - currentSupport
	candidates = sorted(entries, key=lambda e: e.entryId)
	plan = []
	while not needed.isEmpty():
		best = None
		bestSize = 0
		for entry in candidates:
			size = (entry.subset & needed).coverageSize()
			if size > bestSize:
				best, bestSize = entry, size
		if best is None:
			raise Unsatisfiable("no patch covers %r" % needed, remaining=needed)
		log.debug("selected entry %d covering %g of the remaining need", best.entryId, bestSize)
		plan.append(best)
		needed = needed - best.subset
		dropped = best.invalidates | {best.entryId}
		candidates = [e for e in candidates if e.entryId not in dropped]
	return plan
