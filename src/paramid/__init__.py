from importlib import metadata

try:
    __version__ = metadata.version("paramid")
except Exception:
    __version__ = "unknown"

from .utils.logger import LoggerManager
from .utils.sequence import IdSequence
