"""
Logging configuration for stampbook.

Quiet by default for better CLI UX; --verbose or STAMPBOOK_VERBOSE=1
switches to debug output on stderr. Independently of both, each store
session appends INFO records to a rotating operations log in the home
directory.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

PACKAGE_LOGGER = "stampbook"
OPS_LOG_FILENAME = "stampbook-ops.log"

# HTTP and model SDK loggers: chatty at INFO, hidden unless debugging
_LIBRARY_LOGGERS = ("httpx", "httpcore", "google_genai", "urllib3")

_DEBUG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_OPS_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s %(message)s"


def _set_levels(level: int, *names: str) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def configure_quiet_mode(quiet: bool = True):
    """
    Only warnings from stampbook and its libraries reach the console.

    Args:
        quiet: If False, leave logging and warnings untouched.
    """
    if not quiet:
        return
    warnings.filterwarnings("ignore")
    _set_levels(logging.WARNING, PACKAGE_LOGGER, *_LIBRARY_LOGGERS)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    has_stderr = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in root_logger.handlers
    )
    if not has_stderr:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_DEBUG_FORMAT, datefmt="%H:%M:%S"))
        root_logger.addHandler(handler)

    _set_levels(logging.DEBUG, PACKAGE_LOGGER, *_LIBRARY_LOGGERS)


def configure_ops_log(home_path) -> RotatingFileHandler:
    """Attach the operations log ({home_path}/stampbook-ops.log).

    Sync, merge and migration events are recorded at INFO whatever the
    console verbosity. The file rotates at 1MB, keeping 3 backups. The
    caller removes the returned handler when its session ends.
    """
    log_path = Path(home_path) / OPS_LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(_OPS_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.addHandler(handler)
    # Quiet mode raises the package level to WARNING; the file still needs INFO
    if not package_logger.isEnabledFor(logging.INFO):
        package_logger.setLevel(logging.INFO)

    return handler
