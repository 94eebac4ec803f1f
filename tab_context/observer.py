"""
Change observer with debounce and heartbeat.

The page reports cheap change signals (mutation counter, visibility, URL
hash, focus). Mutation bursts are coalesced by a debounce window;
visibility/focus/hash changes trigger an immediate re-check; a slow
heartbeat re-checks even when no signal moved. Every re-check calls
`evaluate(reason)`, which decides whether the context materially changed;
only then is `on_change(reason)` called.

`pump(now)` performs one scheduling step and is what tests drive; `start()`
runs it on a daemon thread until the disposer is called.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger("tab_context.observer")

SignalsReader = Callable[[], dict[str, Any]]
Evaluator = Callable[[str], bool]
ChangeCallback = Callable[[str], None]

_IMMEDIATE_SIGNALS = (("hash", "hashchange"), ("visibility", "visibility"), ("focus", "focus"))


class ChangeObserver:
    def __init__(
        self,
        *,
        read_signals: SignalsReader,
        evaluate: Evaluator,
        on_change: ChangeCallback,
        prefix: str = "site",
        debounce: float = 0.2,
        heartbeat: float | None = 2.0,
        tick: float = 0.05,
        immediate: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.read_signals = read_signals
        self.evaluate = evaluate
        self.on_change = on_change
        self.prefix = prefix
        self.debounce = max(0.0, float(debounce))
        self.heartbeat = float(heartbeat) if heartbeat else None
        self.tick = max(0.01, float(tick))
        self.immediate = immediate
        self.clock = clock

        self._last_signals: dict[str, Any] | None = None
        self._pending_reason: str | None = None
        self._due: float = 0.0
        self._next_heartbeat: float | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._disposed = False
        self._lock = threading.Lock()
        self.emitted = 0

    def _reason(self, kind: str) -> str:
        return f"{self.prefix}_{kind}"

    def notify(self, reason: str, now: float | None = None) -> None:
        """Schedule a debounced re-check (restarts the window)."""
        now = self.clock() if now is None else now
        self._pending_reason = reason
        self._due = now + self.debounce

    def _read(self) -> dict[str, Any] | None:
        try:
            value = self.read_signals()
        except Exception as exc:  # noqa: BLE001
            logger.debug("change signals unavailable: %s", exc)
            return None
        return value if isinstance(value, dict) else None

    def _fire(self, reason: str) -> bool:
        try:
            changed = bool(self.evaluate(reason))
        except Exception as exc:  # noqa: BLE001
            logger.warning("change evaluation failed (%s): %s", reason, exc)
            return False
        if not changed:
            return False
        self.emitted += 1
        try:
            self.on_change(reason)
        except Exception as exc:  # noqa: BLE001
            logger.warning("change listener failed (%s): %s", reason, exc)
        return True

    def pump(self, now: float | None = None) -> list[str]:
        """One scheduling step; returns the reasons that were emitted."""
        if self._disposed:
            return []
        with self._lock:
            now = self.clock() if now is None else now
            if self._next_heartbeat is None and self.heartbeat:
                self._next_heartbeat = now + self.heartbeat

            emitted: list[str] = []
            signals = self._read()
            if signals is not None:
                previous = self._last_signals
                self._last_signals = signals
                if previous is not None:
                    immediate = None
                    for key, kind in _IMMEDIATE_SIGNALS:
                        if signals.get(key) != previous.get(key):
                            immediate = self._reason(kind)
                            break
                    if immediate is not None and not self.immediate:
                        self.notify(immediate, now)
                    elif immediate is not None:
                        self._pending_reason = None
                        if self._fire(immediate):
                            emitted.append(immediate)
                    elif signals.get("seq") != previous.get("seq"):
                        self.notify(self._reason("mutation"), now)

            if self._pending_reason is not None and now >= self._due:
                reason = self._pending_reason
                self._pending_reason = None
                if self._fire(reason):
                    emitted.append(reason)

            if self._next_heartbeat is not None and now >= self._next_heartbeat:
                self._next_heartbeat = now + (self.heartbeat or 0.0)
                reason = self._reason("poll")
                if self._fire(reason):
                    emitted.append(reason)
            return emitted

    def start(self) -> Callable[[], None]:
        if self._thread is None and not self._disposed:
            self._thread = threading.Thread(target=self._run, name=f"{self.prefix}-observer", daemon=True)
            self._thread.start()
        return self.dispose

    def _run(self) -> None:
        while not self._stop.wait(self.tick):
            try:
                self.pump()
            except Exception as exc:  # noqa: BLE001
                logger.warning("observer step failed: %s", exc)

    def dispose(self) -> None:
        """Stop observing. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._thread = None
        self._pending_reason = None
