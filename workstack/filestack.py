"""
File-backed Persistent Queue for workstack

A FileStack is a named, durable, append-only sequence of string values
stored one per line in a single file on the shared filesystem. Every
process that opens the same path sees the same queue.

Concurrency:
- Every operation holds an fcntl lock on the backing file for its
  duration (exclusive for push/pop/clear, shared for reads)
- push() appends one complete line, flushes and fsyncs before unlocking,
  so concurrent writers on different hosts never interleave partial lines
- Readers re-read the file on every call; visibility is "eventually,
  after polling", never immediate

Polling:
- poll_query() / poll_size() block until a condition holds
- The wait between attempts follows a PollPolicy (exponential backoff
  with a cap). Without a timeout they poll forever.
"""

import os
import fcntl
import errno
import time
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from . import config

logger = logging.getLogger(__name__)

# Lock acquisition on the backing file
LOCK_TIMEOUT = 30
LOCK_RETRY_DELAY = 0.005

__all__ = [
    'PollTimeoutError',
    'PollPolicy',
    'LockedStackFile',
    'FileStack',
]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PollTimeoutError(TimeoutError):
    """
    Raised when a poll with a configured deadline gives up.

    Attributes:
        path: Backing file of the queue that was polled
        condition: Human-readable description of what was awaited
        waited: Seconds spent polling
    """

    def __init__(self, path: str, condition: str, waited: float):
        self.path = path
        self.condition = condition
        self.waited = waited
        super().__init__(f"Timed out after {waited:.2f}s waiting for {condition} on {path}")


# ============================================================================
# POLL POLICY
# ============================================================================

@dataclass(frozen=True)
class PollPolicy:
    """
    Retry/backoff policy for blocking polls.

    Attributes:
        interval: Initial sleep between attempts (seconds)
        max_interval: Upper bound for the sleep after backoff
        backoff: Multiplier applied to the sleep after every failed attempt
        timeout: Deadline in seconds, or None to poll forever
    """
    interval: float = config.POLL_INTERVAL
    max_interval: float = config.POLL_MAX_INTERVAL
    backoff: float = config.POLL_BACKOFF
    timeout: Optional[float] = config.POLL_TIMEOUT

    def __post_init__(self):
        if self.interval <= 0 or self.max_interval <= 0:
            raise ValueError("Poll intervals must be positive")
        if self.backoff < 1.0:
            raise ValueError(f"Poll backoff must be >= 1.0, got {self.backoff}")
        if self.timeout is not None and self.timeout < 0:
            raise ValueError(f"Poll timeout must be >= 0, got {self.timeout}")

    def wait_until(self, predicate: Callable[[], bool], path: str, condition: str) -> float:
        """
        Call predicate until it returns True.

        Args:
            predicate: Zero-argument check, re-evaluated after every sleep
            path: Queue path, used in the timeout error
            condition: Description of the awaited condition for errors/logs

        Returns:
            Seconds spent waiting

        Raises:
            PollTimeoutError: If timeout is set and elapsed before predicate held
        """
        start = time.monotonic()
        delay = self.interval
        attempts = 0
        while True:
            if predicate():
                waited = time.monotonic() - start
                if attempts:
                    logger.debug(f"{condition} on {path} after {attempts} retries ({waited:.3f}s)")
                return waited

            waited = time.monotonic() - start
            if self.timeout is not None:
                remaining = self.timeout - waited
                if remaining <= 0:
                    raise PollTimeoutError(path, condition, waited)
                sleep_for = min(delay, remaining)
            else:
                sleep_for = delay

            time.sleep(sleep_for)
            attempts += 1
            delay = min(delay * self.backoff, self.max_interval)


# ============================================================================
# FILE LOCKING
# ============================================================================

class LockedStackFile:
    """
    Context manager holding an fcntl lock on a queue's backing file.

    Usage:
        with LockedStackFile(path, 'r+', exclusive=True) as f:
            lines = f.read()
            ...

    The file is opened before locking, so FileNotFoundError propagates to the
    caller for read modes. The lock is always released on exit, even if the
    body raised.
    """

    def __init__(self, path: str, mode: str, exclusive: bool,
                 timeout: float = LOCK_TIMEOUT, retry_delay: float = LOCK_RETRY_DELAY):
        self.path = path
        self.mode = mode
        self.exclusive = exclusive
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.file = None

    def __enter__(self):
        start_time = time.time()
        self.file = open(self.path, self.mode, encoding='utf-8')
        operation = fcntl.LOCK_EX if self.exclusive else fcntl.LOCK_SH

        while True:
            try:
                fcntl.flock(self.file.fileno(), operation | fcntl.LOCK_NB)
                break
            except (IOError, OSError) as e:
                if e.errno not in (errno.EACCES, errno.EAGAIN):
                    self.file.close()
                    raise

                elapsed = time.time() - start_time
                if elapsed >= self.timeout:
                    self.file.close()
                    raise TimeoutError(
                        f"Could not acquire lock on {self.path} after {self.timeout}s. "
                        f"Another process may be holding it."
                    )
                time.sleep(self.retry_delay)

        return self.file

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.file:
            try:
                fcntl.flock(self.file.fileno(), fcntl.LOCK_UN)
            except Exception as e:
                logger.error(f"Error unlocking queue file {self.path}: {e}")
            finally:
                self.file.close()
        return False


def _parse_lines(content: str) -> List[str]:
    if not content:
        return []
    lines = content.split('\n')
    if lines[-1] == '':
        lines.pop()
    return lines


def _sync(f) -> None:
    f.flush()
    os.fsync(f.fileno())


# ============================================================================
# FILESTACK
# ============================================================================

class FileStack:
    """
    Durable cross-process queue of strings backed by a single file.

    Args:
        path: Backing file; created empty if it does not exist yet
        policy: Default PollPolicy for poll_query/poll_size
    """

    def __init__(self, path: str, policy: Optional[PollPolicy] = None):
        self.path = path
        self.policy = policy or PollPolicy()
        # Touch without truncating; another process may already have pushed
        with open(self.path, 'a', encoding='utf-8'):
            pass
        logger.debug(f"FileStack opened: {self.path}")

    def __repr__(self) -> str:
        return f"FileStack({self.path!r})"

    def push(self, value: str) -> None:
        """Append one value. Values may not contain newlines."""
        value = str(value)
        if '\n' in value:
            raise ValueError(f"FileStack values must be single-line, got {value!r}")
        with LockedStackFile(self.path, 'a', exclusive=True) as f:
            f.write(value + '\n')
            _sync(f)

    def pop(self) -> Optional[str]:
        """
        Remove and return the oldest value.

        Returns:
            The value, or None once the queue is empty (or its file is gone)
        """
        try:
            with LockedStackFile(self.path, 'r+', exclusive=True) as f:
                lines = _parse_lines(f.read())
                if not lines:
                    return None
                head, rest = lines[0], lines[1:]
                f.seek(0)
                f.truncate()
                f.write(''.join(line + '\n' for line in rest))
                _sync(f)
                return head
        except FileNotFoundError:
            return None

    def values(self) -> List[str]:
        """Snapshot of all stored values, oldest first."""
        try:
            with LockedStackFile(self.path, 'r', exclusive=False) as f:
                return _parse_lines(f.read())
        except FileNotFoundError:
            return []

    def size(self) -> int:
        return len(self.values())

    def contains(self, value: str) -> bool:
        return value in self.values()

    def poll_query(self, value: str, policy: Optional[PollPolicy] = None) -> float:
        """
        Block until `value` has been pushed to this queue.

        Returns:
            Seconds spent waiting

        Raises:
            PollTimeoutError: Only if the policy has a timeout
        """
        policy = policy or self.policy
        return policy.wait_until(lambda: self.contains(value), self.path, f"value {value!r}")

    def poll_size(self, n: int, policy: Optional[PollPolicy] = None) -> float:
        """Block until the queue holds at least `n` values."""
        policy = policy or self.policy
        return policy.wait_until(lambda: self.size() >= n, self.path, f"size >= {n}")

    def clear(self) -> None:
        """Remove all values, keeping the backing file."""
        try:
            with LockedStackFile(self.path, 'r+', exclusive=True) as f:
                f.truncate(0)
                _sync(f)
        except FileNotFoundError:
            pass

    def delete_backing(self) -> bool:
        """
        Remove the backing file.

        Returns:
            True if a file was removed, False if it was already gone
        """
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            return False
        logger.debug(f"FileStack deleted: {self.path}")
        return True
