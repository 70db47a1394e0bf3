"""Bounded, cancellable polling helpers.

Every suspension point in GroupDesigner goes through these two functions.
Deadlines are measured with ``time.monotonic()`` so a delayed tick never
stretches a timeout, and a set *stop* event aborts the wait at the next
slice.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


def _sleep(seconds: float, stop: Optional[threading.Event]) -> None:
    if seconds <= 0:
        return
    if stop is not None:
        stop.wait(seconds)
    else:
        time.sleep(seconds)


def wait_until(
    predicate: Callable[[], bool],
    interval_s: float,
    timeout_s: float,
    stop: Optional[threading.Event] = None,
) -> bool:
    """Poll *predicate* every *interval_s* until it is true or *timeout_s* elapses.

    The predicate is evaluated at least once, even with a zero timeout.

    Returns:
        True if the predicate became true, False on timeout or cancellation.
    """
    deadline = time.monotonic() + max(timeout_s, 0.0)
    while True:
        if stop is not None and stop.is_set():
            return False
        if predicate():
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        _sleep(min(interval_s, remaining), stop)


def pause(seconds: float, stop: Optional[threading.Event] = None) -> bool:
    """Sleep for *seconds* unless *stop* is set first.

    Returns:
        True if the full pause elapsed, False if it was cancelled.
    """
    if stop is not None and stop.is_set():
        return False
    _sleep(seconds, stop)
    return stop is None or not stop.is_set()
