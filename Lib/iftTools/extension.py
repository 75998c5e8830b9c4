"""iftTools.extension -- extend an incremental font until it supports a
target subset definition.

An ExtensionSession repeatedly resolves the font's patch maps against the
target, fetches the planned patches concurrently, and applies them in plan
order:

	Idle -> Resolving -> Fetching -> Applying -> Resolving ... -> Done | Failed

Fetching is left to a caller supplied 'fetch(uri) -> bytes' callable.
Any error fails the session; its 'font' then still holds the last fully
applied font, and 'error' the exception that stopped it.
"""

from iftTools import IFTError, FontFormatError, FetchError, PatchApplyError, NonConvergence
from iftTools.sfnt import Font, verifyChecksums
from iftTools.patchMap import readPatchMaps, supportedSubset, TABLE_KEYED
from iftTools.resolver import resolve
from iftTools.patch import decodePatch
from iftTools.tableKeyed import applyTableKeyedPatch
from iftTools.glyphKeyed import applyGlyphKeyedPatch
from concurrent.futures import ThreadPoolExecutor
import logging


log = logging.getLogger(__name__)


class ExtensionSession(object):

	IDLE = "idle"
	RESOLVING = "resolving"
	FETCHING = "fetching"
	APPLYING = "applying"
	DONE = "done"
	FAILED = "failed"

	maxWorkers = 4
	maxIterations = 64

	def __init__(self, fontData, target, fetch, maxWorkers=None, maxIterations=None,
			decompress=None, checkChecksums=1):
		self.font = Font.fromBytes(fontData, checkChecksums)
		self.fontData = fontData
		self.target = target
		self.fetch = fetch
		if maxWorkers is not None:
			self.maxWorkers = maxWorkers
		if maxIterations is not None:
			self.maxIterations = maxIterations
		self.decompress = decompress
		self.applied = set()
		self.appliedUris = set()
		self.remaining = target
		self.plan = []
		self.previousPlan = None
		self.patchData = {}
		self.iterations = 0
		self.error = None
		self.state = self.IDLE
		self.history = [self.IDLE]

	def _setState(self, state):
		log.debug("%s -> %s", self.state, state)
		self.state = state
		self.history.append(state)

	def run(self):
		"""Run the session to completion; return the extended font data."""
		if self.state != self.IDLE:
			raise IFTError("extension session has already been run")
		self._setState(self.RESOLVING)
		steps = {
			self.RESOLVING: self._resolve,
			self.FETCHING: self._fetch,
			self.APPLYING: self._apply,
		}
		try:
			while self.state not in (self.DONE, self.FAILED):
				steps[self.state]()
		except IFTError as e:
			log.error("font extension failed while %s: %s", self.state, e)
			self.error = e
			self._setState(self.FAILED)
			raise
		log.info("font extended to target after %d iterations (%d patches applied)",
			self.iterations, len(self.applied))
		return self.fontData

	def _resolve(self):
		maps = readPatchMaps(self.font)
		support = supportedSubset(maps)
		self.remaining = self.target - support
		entries = [entry for patchMap in maps for entry in patchMap.entries]
		plan = resolve(entries, support, self.target)
		if not plan:
			self.plan = []
			self._setState(self.DONE)
			return
		planIDs = frozenset(entry.entryId for entry in plan)
		if planIDs == self.previousPlan:
			raise NonConvergence("patch map keeps selecting entries %s"
				% ", ".join(str(i) for i in sorted(planIDs)))
		self.iterations += 1
		if self.iterations > self.maxIterations:
			raise NonConvergence("target not reached after %d iterations" % self.maxIterations)
		self.previousPlan = planIDs
		self.plan = plan
		log.info("iteration %d: planned entries %s", self.iterations,
			", ".join(str(entry.entryId) for entry in plan))
		self._setState(self.FETCHING)

	def _fetch(self):
		uris = []
		for entry in self.plan:
			uri = entry.uri()
			if entry.entryId not in self.applied and uri not in self.appliedUris and uri not in uris:
				uris.append(uri)
		self.patchData = {}
		if uris:
			with ThreadPoolExecutor(max_workers=min(self.maxWorkers, len(uris))) as executor:
				futures = [(uri, executor.submit(self.fetch, uri)) for uri in uris]
				for uri, future in futures:
					self.patchData[uri] = self._fetchResult(uri, future)
		self._setState(self.APPLYING)

	@staticmethod
	def _fetchResult(uri, future):
		try:
			data = future.result()
		except FetchError:
			raise
		except Exception as e:
			raise FetchError("failed to fetch %s: %s" % (uri, e), uri=uri) from e
		if data is None:
			raise FetchError("no data for %s" % uri, uri=uri)
		log.debug("fetched %s (%d bytes)", uri, len(data))
		return bytes(data)

	def _apply(self):
		working = self.font.copy()
		appliedNow = []
		urisNow = set()
		for entry in self.plan:
			if entry.entryId in self.applied:
				raise PatchApplyError("entry %d has already been applied" % entry.entryId)
			patchMap = self._findMap(working, entry)
			if patchMap is None:
				log.warning("skipping entry %d: superseded by an earlier patch", entry.entryId)
				continue
			uri = entry.uri()
			if uri in self.appliedUris or uri in urisNow:
				# a patch is applied once, whichever entries point at it
				log.debug("entry %d: %s has already been applied", entry.entryId, uri)
				patchMap.markApplied(entry.entryId)
				working[patchMap.tag] = patchMap.compile()
				appliedNow.append(entry.entryId)
				continue
			patch = decodePatch(entry.format, self.patchData[uri], self.decompress)
			if entry.format == TABLE_KEYED:
				working = applyTableKeyedPatch(working, patch, patchMap.compatibilityId, self.decompress)
				mapReplaced = any(op.tag == patchMap.tag for op in patch.operations)
			else:
				working = applyGlyphKeyedPatch(working, patch, patchMap.compatibilityId)
				mapReplaced = False
			if not mapReplaced:
				patchMap.markApplied(entry.entryId)
				working[patchMap.tag] = patchMap.compile()
			appliedNow.append(entry.entryId)
			urisNow.add(uri)
			log.debug("applied entry %d", entry.entryId)

		data = working.compile()
		try:
			verifyChecksums(data)
		except FontFormatError as e:
			raise PatchApplyError("patched font is inconsistent: %s" % e)
		self.font = Font.fromBytes(data)
		self.fontData = data
		self.applied.update(appliedNow)
		self.appliedUris.update(urisNow)
		self.patchData = {}
		self._setState(self.RESOLVING)

	@staticmethod
	def _findMap(font, entry):
		"""Return the map of 'font' still listing 'entry' as it was resolved,
		or None when an earlier patch replaced it.
		"""
		for patchMap in readPatchMaps(font):
			if entry.entryId in patchMap:
				if patchMap.compatibilityId != entry.compatibilityId:
					return None
				return patchMap
		return None


def extendFont(fontData, target, fetch, **kwargs):
	"""Extend 'fontData' until it supports the 'target' subset definition."""
	return ExtensionSession(fontData, target, fetch, **kwargs).run()
