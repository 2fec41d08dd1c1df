"""
Tests for the file-backed queue.

Tests cover:
- push/pop ordering and draining
- size/values/contains snapshots
- clear() and delete_backing()
- concurrent pushes from independent writers
- poll_query/poll_size blocking and deadlines
- PollPolicy validation
"""

import os
import sys
import time
import shutil
import tempfile
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from workstack.filestack import FileStack, PollPolicy, PollTimeoutError

FAST = PollPolicy(interval=0.005, max_interval=0.02, backoff=1.5, timeout=5)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for queue files."""
    path = tempfile.mkdtemp(prefix="test_filestack_")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def stack(temp_dir):
    return FileStack(os.path.join(temp_dir, "queue"), policy=FAST)


# ============================================================================
# TEST: basic operations
# ============================================================================

class TestFileStackOperations:

    def test_constructor_creates_empty_file(self, temp_dir):
        path = os.path.join(temp_dir, "fresh")
        FileStack(path)
        assert os.path.isfile(path)
        assert os.path.getsize(path) == 0

    def test_constructor_keeps_existing_values(self, temp_dir):
        path = os.path.join(temp_dir, "shared")
        FileStack(path).push("first")
        again = FileStack(path)
        assert again.values() == ["first"]

    def test_pop_returns_oldest_first(self, stack):
        for value in ("a", "b", "c"):
            stack.push(value)
        assert stack.pop() == "a"
        assert stack.pop() == "b"
        assert stack.values() == ["c"]

    def test_pop_drains_to_none(self, stack):
        stack.push("only")
        drained = []
        while True:
            value = stack.pop()
            if value is None:
                break
            drained.append(value)
        assert drained == ["only"]
        assert stack.pop() is None
        assert stack.size() == 0

    def test_size_and_contains(self, stack):
        assert stack.size() == 0
        stack.push("rank_0")
        stack.push("rank_1")
        assert stack.size() == 2
        assert stack.contains("rank_1")
        assert not stack.contains("rank_2")

    def test_empty_string_is_a_value(self, stack):
        stack.push("")
        assert stack.size() == 1
        assert stack.pop() == ""

    def test_multiline_value_rejected(self, stack):
        with pytest.raises(ValueError):
            stack.push("two\nlines")
        assert stack.size() == 0

    def test_clear_keeps_file(self, stack):
        stack.push("x")
        stack.clear()
        assert stack.size() == 0
        assert os.path.exists(stack.path)

    def test_delete_backing(self, stack):
        stack.push("x")
        assert stack.delete_backing() is True
        assert not os.path.exists(stack.path)
        assert stack.delete_backing() is False

    def test_reads_after_delete_behave_as_empty(self, stack):
        stack.delete_backing()
        assert stack.values() == []
        assert stack.pop() is None
        stack.clear()
        assert not os.path.exists(stack.path)

    def test_two_handles_share_state(self, temp_dir):
        path = os.path.join(temp_dir, "q")
        writer = FileStack(path)
        reader = FileStack(path)
        writer.push("hello")
        assert reader.pop() == "hello"
        assert writer.size() == 0


# ============================================================================
# TEST: concurrency
# ============================================================================

class TestFileStackConcurrency:

    def test_concurrent_pushes_do_not_corrupt_entries(self, temp_dir):
        path = os.path.join(temp_dir, "acks")
        FileStack(path)
        n_writers, n_pushes = 8, 50

        def writer(i):
            # Own handle per writer, like separate processes
            own = FileStack(path)
            for j in range(n_pushes):
                own.push(f"writer{i}-{j}")

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(n_writers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        values = FileStack(path).values()
        assert len(values) == n_writers * n_pushes
        assert set(values) == {f"writer{i}-{j}" for i in range(n_writers) for j in range(n_pushes)}

    def test_concurrent_pops_hand_out_each_value_once(self, temp_dir):
        path = os.path.join(temp_dir, "register")
        source = FileStack(path)
        for i in range(100):
            source.push(str(i))

        popped = []
        lock = threading.Lock()

        def consumer():
            own = FileStack(path)
            while True:
                value = own.pop()
                if value is None:
                    return
                with lock:
                    popped.append(value)

        threads = [threading.Thread(target=consumer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(popped, key=int) == [str(i) for i in range(100)]


# ============================================================================
# TEST: polling
# ============================================================================

class TestFileStackPolling:

    def test_poll_query_returns_immediately_when_present(self, stack):
        stack.push("WAIT")
        assert stack.poll_query("WAIT") < 1.0

    def test_poll_query_waits_for_late_push(self, stack):
        timer = threading.Timer(0.1, stack.push, args=("GOON",))
        timer.start()
        try:
            waited = stack.poll_query("GOON")
        finally:
            timer.cancel()
        assert waited >= 0.05
        assert stack.contains("GOON")

    def test_poll_size_waits_for_quorum(self, stack):
        def pushes():
            for i in range(3):
                time.sleep(0.03)
                stack.push(f"rank_{i}")

        t = threading.Thread(target=pushes)
        t.start()
        stack.poll_size(3)
        t.join()
        assert stack.size() == 3

    def test_poll_query_deadline_raises(self, stack):
        policy = PollPolicy(interval=0.01, max_interval=0.02, timeout=0.1)
        start = time.monotonic()
        with pytest.raises(PollTimeoutError) as exc_info:
            stack.poll_query("NEVER", policy=policy)
        assert time.monotonic() - start < 2.0
        assert exc_info.value.path == stack.path
        assert "NEVER" in exc_info.value.condition
        assert isinstance(exc_info.value, TimeoutError)

    def test_poll_size_deadline_raises(self, stack):
        policy = PollPolicy(interval=0.01, timeout=0.05)
        with pytest.raises(PollTimeoutError):
            stack.poll_size(1, policy=policy)


class TestPollPolicy:

    def test_defaults_have_no_deadline(self):
        assert PollPolicy(timeout=None).timeout is None

    @pytest.mark.parametrize("kwargs", [
        {"interval": 0},
        {"max_interval": -1},
        {"backoff": 0.5},
        {"timeout": -1},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            PollPolicy(**kwargs)

    def test_backoff_is_capped(self):
        calls = []
        policy = PollPolicy(interval=0.001, max_interval=0.004, backoff=2.0, timeout=None)

        def predicate():
            calls.append(time.monotonic())
            return len(calls) >= 6

        policy.wait_until(predicate, "memory://q", "test")
        gaps = [b - a for a, b in zip(calls, calls[1:])]
        assert len(gaps) == 5
        # Sleeps go 1, 2, 4, 4, 4 ms; none should explode past the cap
        assert max(gaps) < 0.5
