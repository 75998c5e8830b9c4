"""Apply table-keyed patches."""

from iftTools import DecodeError, PatchApplyError
from iftTools.patch import decodeTableDelta, DELTA, REPLACE, DROP
import logging


log = logging.getLogger(__name__)


def applyTableKeyedPatch(font, patch, compatibilityId=None, decompress=None):
	"""Return a copy of 'font' with the table operations of 'patch' applied.

	Deltas are decoded against the table data as it was before this
	patch. When 'compatibilityId' is given, the patch must have been made
	for it. 'font' itself is never modified.
	"""
	if compatibilityId is not None and tuple(compatibilityId) != patch.compatibilityId:
		raise PatchApplyError("patch compatibility id %r does not match the font's %r"
			% (patch.compatibilityId, tuple(compatibilityId)))
	result = font.copy()
	for op in patch.operations:
		if op.kind == REPLACE:
			log.debug("replacing '%s' table (%d bytes)", op.tag, len(op.data))
			result[op.tag] = op.data
		elif op.kind == DELTA:
			if op.tag not in font:
				raise PatchApplyError("delta for missing '%s' table" % op.tag)
			try:
				data = decodeTableDelta(op, font[op.tag], decompress)
			except DecodeError as e:
				raise PatchApplyError(str(e))
			log.debug("patched '%s' table (%d -> %d bytes)", op.tag, len(font[op.tag]), len(data))
			result[op.tag] = data
		elif op.kind == DROP:
			if op.tag in result:
				log.debug("dropping '%s' table", op.tag)
				del result[op.tag]
		else:
			raise PatchApplyError("unknown operation %r on '%s' table" % (op.kind, op.tag))
	return result
