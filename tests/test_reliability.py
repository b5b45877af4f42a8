"""
Tests for reliability — bounded retry + single-worker tasker.
"""

import threading
import time

import pytest

from hostpolicy.core.errors import OperationCancelled
from hostpolicy.core.reliability.retry import retry_call
from hostpolicy.core.reliability.tasker import Tasker, TaskerClosed

# ── Retry ────────────────────────────────────────────────────────────


class TestRetryCall:
    def test_first_try(self):
        assert retry_call(lambda: 42, attempts=3, interval=1, description="x", sleeper=lambda _: None) == 42

    def test_succeeds_after_failures(self):
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ValueError("not yet")
            return "ok"

        result = retry_call(flaky, attempts=3, interval=5, description="x", sleeper=sleeps.append)
        assert result == "ok"
        assert len(calls) == 3
        assert sleeps == [5, 5]

    def test_exhausted_reraises_last(self):
        calls = []

        def failing():
            calls.append(1)
            raise ValueError(f"fail {len(calls)}")

        with pytest.raises(ValueError, match="fail 2"):
            retry_call(failing, attempts=2, interval=0, description="x", sleeper=lambda _: None)
        assert len(calls) == 2

    def test_non_retryable_propagates(self):
        calls = []

        def failing():
            calls.append(1)
            raise KeyError("nope")

        with pytest.raises(KeyError):
            retry_call(failing, attempts=5, interval=0, description="x", retry_on=(ValueError,))
        assert len(calls) == 1

    def test_cancelled_before_first(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            retry_call(lambda: 1, attempts=3, interval=0, description="x", cancel=cancel)

    def test_cancel_during_wait(self):
        cancel = threading.Event()

        def failing():
            cancel.set()
            raise ValueError("boom")

        start = time.monotonic()
        with pytest.raises(OperationCancelled):
            retry_call(failing, attempts=3, interval=30, description="x", cancel=cancel)
        assert time.monotonic() - start < 5

    def test_minimum_one_attempt(self):
        assert retry_call(lambda: "x", attempts=0, interval=0, description="x") == "x"


# ── Tasker ───────────────────────────────────────────────────────────


class TestTasker:
    def test_result(self):
        tasker = Tasker()
        try:
            assert tasker.enqueue("one", lambda: 1 + 1).result(timeout=5) == 2
        finally:
            tasker.close()

    def test_exception_in_future(self):
        tasker = Tasker()

        def boom():
            raise RuntimeError("task failed")

        try:
            with pytest.raises(RuntimeError, match="task failed"):
                tasker.enqueue("boom", boom).result(timeout=5)
            # worker survives
            assert tasker.enqueue("after", lambda: "ok").result(timeout=5) == "ok"
        finally:
            tasker.close()

    def test_serialized(self):
        tasker = Tasker()
        active = []
        overlap = []
        lock = threading.Lock()

        def task():
            with lock:
                active.append(1)
                if len(active) > 1:
                    overlap.append(True)
            time.sleep(0.01)
            with lock:
                active.pop()

        futures = [tasker.enqueue(f"t{i}", task) for i in range(5)]
        for f in futures:
            f.result(timeout=5)
        tasker.close()
        assert overlap == []

    def test_fifo(self):
        tasker = Tasker()
        order = []
        futures = [tasker.enqueue(str(i), lambda i=i: order.append(i)) for i in range(5)]
        for f in futures:
            f.result(timeout=5)
        tasker.close()
        assert order == [0, 1, 2, 3, 4]

    def test_close_runs_queued_then_rejects(self):
        tasker = Tasker()
        gate = threading.Event()
        first = tasker.enqueue("wait", lambda: gate.wait(5))
        second = tasker.enqueue("second", lambda: "done")
        gate.set()
        tasker.close(wait=True)
        assert first.result(timeout=1) is True
        assert second.result(timeout=1) == "done"
        assert tasker.closed
        with pytest.raises(TaskerClosed):
            tasker.enqueue("late", lambda: None)

    def test_close_idempotent(self):
        tasker = Tasker()
        tasker.close()
        tasker.close()
