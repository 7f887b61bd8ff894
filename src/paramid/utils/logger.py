#########################################################################################
##
##                                LOGGING MANAGEMENT
##                                 (utils/logger.py)
##
##            Central place for creating namespaced loggers below 'paramid'.
##            All loggers share one console handler and, once configured,
##            one file handler.
##
#########################################################################################

# IMPORTS ===============================================================================

import logging
import sys
import threading
from pathlib import Path


# CONSTANTS =============================================================================

ROOT_NAME = "paramid"

CONSOLE_FMT = "[%(name)s] %(levelname)s: %(message)s"
FILE_FMT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


# LOGGER MANAGER ========================================================================

class LoggerManager:
    """Singleton that owns the handlers of the ``paramid`` logger tree.

    Child loggers created through :meth:`get_logger` propagate to the
    package root logger, which carries the console handler and the optional
    shared file handler. Configuring the root once therefore configures every
    module of the package.

    Example
    -------
    .. code-block:: python

        log = LoggerManager().get_logger("ident.identification")
        log.info("generation %d: best cost %.3e", 0, 1.2e-3)

        LoggerManager().set_level(logging.DEBUG)
        LoggerManager().set_log_file("run/identification.log")
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._initialized = False
                cls._instance = instance
        return cls._instance


    def __init__(self):
        if self._initialized:
            return

        self._root = logging.getLogger(ROOT_NAME)
        self._root.setLevel(logging.INFO)
        self._root.propagate = False

        self._console_handler = logging.StreamHandler(sys.stdout)
        self._console_handler.setFormatter(logging.Formatter(CONSOLE_FMT))
        self._console_handler.setLevel(logging.INFO)
        self._root.addHandler(self._console_handler)

        self._file_handler = None
        self._initialized = True


    def get_logger(self, name: str) -> logging.Logger:
        """Return the logger ``paramid.<name>``.

        Parameters
        ----------
        name : str
            Dot-separated module name relative to the package root
            (e.g. ``"ident.optimize"``).
        """
        if not name or name == ROOT_NAME:
            return self._root
        if name.startswith(ROOT_NAME + "."):
            name = name[len(ROOT_NAME) + 1:]
        return self._root.getChild(name)


    def set_level(self, level: int) -> None:
        """Set the level of the package root logger and its console handler."""
        self._root.setLevel(level)
        self._console_handler.setLevel(level)


    def set_log_file(self, path, level: int = logging.DEBUG) -> Path:
        """Attach (or replace) the shared file handler.

        Parameters
        ----------
        path : str or Path
            Log file path; parent directories are created.
        level : int
            Level of the file handler.

        Returns
        -------
        Path
            Resolved path of the log file.
        """
        log_file = Path(path)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(FILE_FMT))

        self.close_log_file()
        self._file_handler = handler
        self._root.addHandler(handler)

        # the file handler may ask for more detail than the root lets through
        if level < self._root.level:
            self._root.setLevel(level)

        self._root.info("file logging initialized at: %s", log_file)
        return log_file


    def close_log_file(self) -> None:
        """Detach and close the shared file handler, if any."""
        if self._file_handler is not None:
            self._root.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None
