"""
Tasker — a single worker thread that runs submitted tasks one at a time.

Overlapping scheduler ticks serialize here: a run enqueued while another
is in progress waits for it to finish.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

logger = logging.getLogger(__name__)

_STOP = object()


class TaskerClosed(RuntimeError):
    """Raised by ``enqueue`` after ``close``."""


class Tasker:
    """Single-worker FIFO task queue.

    Usage::

        tasker = Tasker()
        future = tasker.enqueue("run", lambda: run_once(...))
        report = future.result()
        tasker.close()
    """

    def __init__(self, name: str = "tasker"):
        self._queue: queue.Queue[Any] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._worker, name=name, daemon=True)
        self._thread.start()

    def enqueue(self, name: str, fn: Callable[[], Any]) -> Future:
        """Queue ``fn``; its result (or exception) lands in the returned Future."""
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise TaskerClosed(f"cannot enqueue {name!r}: tasker closed")
            self._queue.put((name, fn, future))
        logger.debug("Enqueued task %r", name)
        return future

    def close(self, wait: bool = True) -> None:
        """Stop accepting tasks; already queued tasks still run."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        if wait:
            self._thread.join()

    @property
    def closed(self) -> bool:
        return self._closed

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            name, fn, future = item
            if not future.set_running_or_notify_cancel():
                continue
            logger.debug("Tasker running %r", name)
            try:
                future.set_result(fn())
            except BaseException as e:
                logger.error("Task %r failed: %s", name, e)
                future.set_exception(e)
            else:
                logger.debug("Finished task %r", name)
