"""Logging configuration for workstack processes."""

import sys
import logging
import contextvars
from contextlib import contextmanager
from typing import Any, Optional

from .filestack import FileStack

__all__ = [
    'LOG_FORMAT',
    'setup_logging',
    'log_owner',
    'OwnerFilter',
    'FileStackLogHandler',
]

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Object on whose behalf records are currently being logged (None: the application)
_log_owner = contextvars.ContextVar(
    "workstack_log_owner", default=None
)


def setup_logging(log_level: str = "INFO", rank: Optional[int] = None) -> None:
    """
    Configure the root logger for a workstack process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        rank: Parallel rank used as a "[rank_N]" prefix, if known
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    format_str = LOG_FORMAT if rank is None else f"[rank_{rank}] {LOG_FORMAT}"

    # Several ranks may share a terminal; reconfigure rather than append handlers
    logging.basicConfig(level=numeric_level, format=format_str, stream=sys.stderr, force=True)


@contextmanager
def log_owner(owner: Any):
    """Attribute every record logged inside the block (in this thread) to `owner`."""
    token = _log_owner.set(owner)
    try:
        yield
    finally:
        _log_owner.reset(token)


class OwnerFilter(logging.Filter):
    """Drops records logged on behalf of a different owner."""

    def __init__(self, owner: Any):
        super().__init__()
        self.owner = owner

    def filter(self, record: logging.LogRecord) -> bool:
        current = _log_owner.get()
        return current is None or current is self.owner


class FileStackLogHandler(logging.Handler):
    """
    Pushes each log record as one line onto a FileStack.

    Used for the per-process LOG queue in the work directory, so a
    coordinator (or a human) can read every rank's log from shared storage.
    With an `owner`, records logged inside another owner's log_owner()
    block are skipped.
    """

    def __init__(self, stack: FileStack, level: int = logging.NOTSET, owner: Any = None):
        super().__init__(level)
        self.stack = stack
        self.setFormatter(logging.Formatter(LOG_FORMAT))
        if owner is not None:
            self.addFilter(OwnerFilter(owner))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record).replace('\n', '\\n')
            self.stack.push(message)
        except Exception:
            self.handleError(record)
