"""Bounded polling primitive shared by every wait in the handlers."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("tab_context.polling")

Clock = Callable[[], float]
Sleep = Callable[[float], None]


@dataclass
class PollResult:
    ok: bool
    value: Any = None
    attempts: int = 0
    elapsed: float = 0.0
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "attempts": self.attempts,
            "elapsedMs": int(self.elapsed * 1000),
            "cancelled": self.cancelled,
        }


def _attempt(predicate: Callable[[], Any]) -> Any:
    try:
        return predicate()
    except Exception as exc:  # noqa: BLE001
        logger.debug("poll predicate failed: %s", exc)
        return None


def poll_until(
    predicate: Callable[[], Any],
    *,
    timeout: float,
    interval: float = 0.1,
    cancel: threading.Event | None = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> PollResult:
    """Call `predicate` until it returns a truthy value or `timeout` passes.

    The predicate runs at least once. Exceptions count as "not ready".
    When the deadline passes one final check is made before giving up.
    Setting `cancel` stops polling at the next interval boundary.
    """
    start = clock()
    deadline = start + max(0.0, float(timeout))
    step = max(0.001, float(interval))
    attempts = 0

    while True:
        if cancel is not None and cancel.is_set():
            return PollResult(ok=False, attempts=attempts, elapsed=clock() - start, cancelled=True)

        attempts += 1
        value = _attempt(predicate)
        if value:
            return PollResult(ok=True, value=value, attempts=attempts, elapsed=clock() - start)

        now = clock()
        if now >= deadline:
            break
        sleep(min(step, max(0.0, deadline - now)))
        if clock() >= deadline:
            break

    if cancel is not None and cancel.is_set():
        return PollResult(ok=False, attempts=attempts, elapsed=clock() - start, cancelled=True)

    # Final best-effort check after the deadline.
    attempts += 1
    value = _attempt(predicate)
    return PollResult(ok=bool(value), value=value if value else None, attempts=attempts, elapsed=clock() - start)
