"""
Exceptions and error logging for stampbook.

Exception hierarchy, plus a file log of full tracebacks for the CLI.
"""

import logging
import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class RemoteCollectionError(Exception):
    """Error communicating with the remote collection."""


class RemoteTimeoutError(RemoteCollectionError):
    """A remote write did not finish within its time bound."""


class NotSignedInError(RemoteCollectionError):
    """No authenticated session is available."""


class OwnerMismatchError(RemoteCollectionError):
    """Write addressed to a collection the active session does not own."""


class StoreNotReadyError(RuntimeError):
    """Mutation attempted before the collection finished loading."""


class ExtractionError(Exception):
    """Stamp extraction from an image failed or returned nothing."""


ERROR_LOG_FILENAME = "stampbook-errors.log"


def _error_log_path(home: Optional[Path] = None) -> Path:
    if home is None:
        env_home = os.environ.get("STAMPBOOK_HOME")
        home = Path(env_home).expanduser() if env_home else Path.home() / ".stampbook"
    return Path(home) / ERROR_LOG_FILENAME


def format_error_entry(exc: BaseException, context: str = "") -> str:
    """One error log entry: separator, UTC timestamp and context, traceback."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    header = f"[{stamp}] {context}".rstrip()
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"\n{'-' * 72}\n{header}\n{trace}"


def log_exception(
    exc: BaseException,
    context: str = "",
    home: Optional[Path] = None,
) -> Path:
    """
    Append the full traceback of `exc` to the error log.

    The CLI prints only the message; this keeps the details. The log lives
    in `home` (default: STAMPBOOK_HOME or ~/.stampbook). Failing to write
    the log is not an error.

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(home)
    entry = format_error_entry(exc, context)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(entry)
    except OSError as e:
        logger.debug("Cannot write error log %s: %s", log_path, e)
    return log_path
