"""
Test fixtures for workstack.

Provides an in-memory stand-in for FileStack that records every push and
every successful poll, and a helper to run a whole process group as
threads in one interpreter.
"""

import random
import threading
from typing import Any, Callable, Dict, List, Optional

POLL_WAIT_SECONDS = 10


class EventLog:
    """Ordered record of queue events shared by several MemoryStacks."""

    def __init__(self):
        self.cond = threading.Condition()
        self.events: List[tuple] = []

    def index_of(self, predicate: Callable[[tuple], bool]) -> List[int]:
        return [i for i, event in enumerate(self.events) if predicate(event)]


class MemoryStack:
    """
    Thread-safe in-memory queue with the FileStack interface.

    Every push is recorded as (name, 'push', value, thread) and every
    satisfied poll as (name, 'seen', value, thread). An optional random
    generator injects jitter before pushes to shuffle interleavings.
    """

    def __init__(self, name: str, log: EventLog, rng: Optional[random.Random] = None,
                 max_jitter: float = 0.005):
        self.path = f"memory://{name}"
        self.name = name
        self.log = log
        self.rng = rng
        self.max_jitter = max_jitter
        self._values: List[str] = []

    def _jitter(self):
        if self.rng is not None:
            with self.log.cond:
                delay = self.rng.uniform(0, self.max_jitter)
            threading.Event().wait(delay)

    def push(self, value: str) -> None:
        self._jitter()
        with self.log.cond:
            self._values.append(value)
            self.log.events.append((self.name, 'push', value, threading.current_thread().name))
            self.log.cond.notify_all()

    def pop(self) -> Optional[str]:
        with self.log.cond:
            return self._values.pop(0) if self._values else None

    def values(self) -> List[str]:
        with self.log.cond:
            return list(self._values)

    def size(self) -> int:
        return len(self.values())

    def contains(self, value: str) -> bool:
        return value in self.values()

    def clear(self) -> None:
        with self.log.cond:
            self._values.clear()

    def poll_query(self, value: str, policy=None) -> float:
        with self.log.cond:
            ok = self.log.cond.wait_for(lambda: value in self._values, timeout=POLL_WAIT_SECONDS)
            assert ok, f"{threading.current_thread().name} never saw {value} on {self.name}"
            self.log.events.append((self.name, 'seen', value, threading.current_thread().name))
        return 0.0

    def poll_size(self, n: int, policy=None) -> float:
        with self.log.cond:
            ok = self.log.cond.wait_for(lambda: len(self._values) >= n, timeout=POLL_WAIT_SECONDS)
            assert ok, f"{self.name} never reached size {n}"
        return 0.0


def run_group(n: int, target: Callable[[int], Any], timeout: float = 60) -> Dict[int, Any]:
    """
    Run target(rank) for ranks 0..n-1 in parallel threads.

    Returns:
        Dict rank -> return value

    Raises:
        The first exception raised by any rank, or AssertionError if a
        rank did not finish within `timeout`.
    """
    results: Dict[int, Any] = {}
    errors: Dict[int, BaseException] = {}

    def _run(rank: int):
        try:
            results[rank] = target(rank)
        except BaseException as e:  # re-raised in the main thread below
            errors[rank] = e

    threads = [
        threading.Thread(target=_run, args=(rank,), name=f"rank_{rank}", daemon=True)
        for rank in range(n)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout)

    stuck = [thread.name for thread in threads if thread.is_alive()]
    assert not stuck, f"Ranks did not finish: {stuck}"
    if errors:
        raise errors[min(errors)]
    return results
