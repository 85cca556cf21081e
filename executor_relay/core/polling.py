"""Deadline-bounded poll loop shared by the attestation and status pollers."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from executor_relay.core.utils import get_logger

LOGGER = get_logger("executor_relay.polling")

T = TypeVar("T")


class Throttled(Exception):
    """Raised by a poll function when the remote side asked us to slow down."""

    def __init__(self, retry_after: Optional[float] = None) -> None:
        super().__init__("rate limited")
        self.retry_after = retry_after


@dataclass(frozen=True)
class PollResult(Generic[T]):
    value: Optional[T]
    attempts: int
    elapsed: float
    cancelled: bool = False

    @property
    def timed_out(self) -> bool:
        return self.value is None and not self.cancelled


def poll_until(
    poll_once: Callable[[], Optional[T]],
    *,
    timeout: float,
    interval: float,
    max_interval: Optional[float] = None,
    backoff: float = 1.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Optional[Callable[[float], object]] = None,
    cancel_event: Optional[threading.Event] = None,
    label: str = "poll",
) -> PollResult[T]:
    """Call ``poll_once`` until it returns a value, the deadline passes or ``cancel_event`` is set.

    The deadline is only declared after a poll made at or past it, so a
    timeout is never reported early. When ``sleep`` is omitted and a
    ``cancel_event`` is given, the loop waits on the event so a cancel wakes
    it immediately.
    """
    if timeout < 0 or interval <= 0:
        raise ValueError("timeout must be non-negative and interval positive")
    ceiling = max_interval if max_interval is not None else interval
    if sleep is None:
        sleep = cancel_event.wait if cancel_event is not None else time.sleep

    start = clock()
    deadline = start + timeout
    delay = interval
    attempts = 0

    while True:
        if cancel_event is not None and cancel_event.is_set():
            LOGGER.info("%s cancelled after %s attempts", label, attempts)
            return PollResult(None, attempts, clock() - start, cancelled=True)

        wait_for = delay
        attempts += 1
        try:
            value = poll_once()
        except Throttled as exc:
            delay = min(delay * 2, ceiling)
            wait_for = max(delay, exc.retry_after or 0.0)
            LOGGER.warning("%s rate limited; backing off %.1fs", label, wait_for)
            value = None
        else:
            delay = min(delay * backoff, ceiling)

        if value is not None:
            return PollResult(value, attempts, clock() - start)

        now = clock()
        if now >= deadline:
            LOGGER.warning("%s timed out after %s attempts (%.1fs)", label, attempts, now - start)
            return PollResult(None, attempts, now - start)

        LOGGER.debug("%s attempt %s pending; next in %.1fs", label, attempts, wait_for)
        sleep(min(wait_for, deadline - now))


__all__ = ["PollResult", "Throttled", "poll_until"]
