"""
Tab context host.

Owns the active site handler for one page: picks it from the registry by
URL (re-picking after navigation), normalizes every context it returns,
validates site actions and coalesces change notifications into pushes.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from .apps import SiteHandler, SiteRegistry, site_registry
from .config import TabContextConfig
from .page import PageSession
from .text import to_safe_text

logger = logging.getLogger("tab_context.host")

PUSH_COALESCE = 0.18

PushCallback = Callable[[dict[str, Any]], None]


def normalize_context(raw: Any, *, site: str, url: str = "", captured_at: int | None = None) -> dict[str, Any]:
    ctx = raw if isinstance(raw, dict) else {}
    details = ctx.get("details")
    return {
        "site": str(ctx.get("site") or site or "generic").strip().lower(),
        "url": to_safe_text(ctx.get("url") or url, 2000),
        "title": to_safe_text(ctx.get("title"), 280),
        "description": to_safe_text(ctx.get("description"), 360),
        "textExcerpt": str(ctx.get("textExcerpt") or ""),
        "details": dict(details) if isinstance(details, dict) else {},
        "capturedAt": int(time.time() * 1000) if captured_at is None else captured_at,
    }


class TabContextHost:
    def __init__(
        self,
        page: PageSession,
        config: TabContextConfig | None = None,
        *,
        registry: SiteRegistry | None = None,
        coalesce: float = PUSH_COALESCE,
    ) -> None:
        self.page = page
        self.config = config or TabContextConfig()
        self.registry = registry or site_registry
        self.coalesce = max(0.0, float(coalesce))
        self.handler: SiteHandler | None = None
        self._push: PushCallback | None = None
        self._dispose: Callable[[], None] | None = None
        self._lock = threading.Lock()
        # Relay thread and push timer both resolve the handler.
        self._handler_lock = threading.RLock()
        self._timer: threading.Timer | None = None
        self._pending_reason: str | None = None

    def _current_url(self) -> str:
        try:
            return self.page.url()
        except Exception as exc:  # noqa: BLE001
            logger.debug("page url unavailable: %s", exc)
            return ""

    def ensure_handler(self) -> SiteHandler:
        """Active handler for the page's current URL; replaced after navigation to another site."""
        with self._handler_lock:
            url = self._current_url()
            selection = self.registry.select(url=url, config=self.config)
            if selection is None:
                raise RuntimeError("No site handler registered")
            if self.handler is not None and type(self.handler) is selection.handler:
                return self.handler

            previous = self.handler
            if previous is not None:
                self._stop_observer()
                previous.close()
            self.handler = selection.handler.create(page=self.page, config=self.config)
            logger.info("site handler %s (%s) for %s", self.handler.name, selection.matched_by, url or "-")
            if self._push is not None:
                self._start_observer()
            return self.handler

    def get_tab_context(self, text_limit: int | None = None) -> dict[str, Any]:
        try:
            handler = self.ensure_handler()
        except Exception as exc:  # noqa: BLE001
            logger.warning("handler selection failed: %s", exc)
            return normalize_context({"details": {"error": str(exc)}}, site="generic", url=self._current_url())
        try:
            raw = handler.collect_context(text_limit=text_limit)
        except Exception as exc:  # noqa: BLE001
            logger.warning("collect_context crashed (%s): %s", handler.name, exc)
            raw = {"site": handler.name, "details": {"error": str(exc) or exc.__class__.__name__}}
        return normalize_context(raw, site=handler.name, url=self._current_url())

    def run_site_action(self, action: Any, args: dict[str, Any] | None = None, *, site: Any = "") -> dict[str, Any]:
        name = str(action or "").strip()
        if not name:
            return {"ok": False, "error": "Site action is required"}
        try:
            handler = self.ensure_handler()
        except Exception as exc:  # noqa: BLE001
            return {"ok": False, "error": str(exc)}
        wanted = str(site or "").strip().lower()
        if wanted and wanted != handler.name:
            return {
                "ok": False,
                "error": f"Action targets site '{wanted}' but the active tab is '{handler.name}'",
                "details": {"requestedSite": wanted, "activeSite": handler.name},
            }
        logger.info("site_action site=%s action=%s", handler.name, name)
        try:
            result = handler.run_action(name, args if isinstance(args, dict) else {})
        except Exception as exc:  # noqa: BLE001
            logger.exception("site action crashed")
            return {"ok": False, "error": str(exc) or exc.__class__.__name__}
        if not isinstance(result, dict):
            return {"ok": False, "error": "Site action returned no result"}
        return {**result, "ok": bool(result.get("ok")), "site": handler.name}

    # ------------------------------------------------------------------
    # change pushes

    def start(self, push: PushCallback) -> None:
        with self._handler_lock:
            self._push = push
            self.ensure_handler()
            if self._dispose is None:
                self._start_observer()

    def _start_observer(self) -> None:
        if self.handler is not None:
            self._dispose = self.handler.observe_context_changes(self.on_change)

    def _stop_observer(self) -> None:
        dispose, self._dispose = self._dispose, None
        if dispose is not None:
            dispose()

    def on_change(self, reason: str) -> None:
        """Record a change; bursts within the coalescing window produce one push."""
        with self._lock:
            self._pending_reason = reason
            if self._timer is not None:
                return
            if self.coalesce <= 0:
                timer = None
            else:
                timer = threading.Timer(self.coalesce, self.flush)
                timer.daemon = True
                self._timer = timer
        if timer is None:
            self.flush()
        else:
            timer.start()

    def flush(self) -> dict[str, Any] | None:
        with self._lock:
            reason, self._pending_reason = self._pending_reason, None
            timer, self._timer = self._timer, None
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()
        if reason is None or self._push is None:
            return None
        message = {"type": "tabContextPush", "reason": reason, "context": self.get_tab_context()}
        try:
            self._push(message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("push failed: %s", exc)
        return message

    def close(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
            self._pending_reason = None
        if timer is not None:
            timer.cancel()
        with self._handler_lock:
            self._stop_observer()
            if self.handler is not None:
                self.handler.close()
            self._push = None
