import logging
from fontTools.misc.loggingTools import configLogger

version = __version__ = "0.1.0"

log = logging.getLogger(__name__)

__all__ = [
	"version", "log", "configLogger",
	"IFTError", "FontFormatError", "MapParseError", "Unsatisfiable",
	"FetchError", "DecodeError", "PatchApplyError", "NonConvergence",
]


class IFTError(Exception): pass


class FontFormatError(IFTError): pass


class MapParseError(IFTError): pass


class Unsatisfiable(IFTError):

	def __init__(self, message, remaining=None):
		super(Unsatisfiable, self).__init__(message)
		self.remaining = remaining


class FetchError(IFTError):

	def __init__(self, message, uri=None):
		super(FetchError, self).__init__(message)
		self.uri = uri


class DecodeError(IFTError): pass


class PatchApplyError(IFTError): pass


class NonConvergence(IFTError): pass
