"""
Bounded retry — fixed interval, a fixed number of attempts.

Used around each manager's inventory/plan/apply pass. The cancel event
is checked before every attempt and interrupts the wait between them.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TypeVar

from hostpolicy.core.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int,
    interval: float,
    description: str,
    cancel: threading.Event | None = None,
    sleeper: Callable[[float], object] | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Call ``fn`` until it succeeds or ``attempts`` are used up.

    Args:
        fn: Zero-argument callable.
        attempts: Total number of calls (>= 1).
        interval: Seconds between attempts.
        description: What is being retried, for log lines.
        cancel: Optional event; when set no further attempt starts.
        sleeper: Replaces the wait between attempts (tests).
        retry_on: Exception types that trigger another attempt.

    Returns:
        Whatever ``fn`` returns.

    Raises:
        OperationCancelled: ``cancel`` was set before an attempt.
        Exception: The last error once attempts are exhausted.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"{description}: cancelled")
        try:
            return fn()
        except OperationCancelled:
            raise
        except retry_on as e:
            if attempt >= attempts:
                logger.error("Error %s, giving up after %d attempts: %s", description, attempt, e)
                raise
            logger.warning(
                "Error %s, attempt %d/%d, retrying in %ss: %s",
                description, attempt, attempts, interval, e,
            )
            _wait(interval, cancel, sleeper)
    raise AssertionError("unreachable")


def _wait(interval: float, cancel: threading.Event | None, sleeper: Callable[[float], object] | None) -> None:
    if sleeper is not None:
        sleeper(interval)
    elif cancel is not None:
        cancel.wait(interval)
    else:
        time.sleep(interval)
