from __future__ import annotations

import logging
import threading
from contextlib import suppress
from typing import Any

from ..config import TabContextConfig
from ..observer import ChangeObserver
from ..page import PageSession
from ..text import to_safe_text
from .base import ChangeCallback, Disposer, SiteHandler

logger = logging.getLogger("tab_context.generic")

DEFAULT_TEXT_LIMIT = 2000
PAGE_CONTEXT_TEXT_LIMIT = 2400
MUTATION_DEBOUNCE = 0.26

GENERIC_CONTEXT_JS = r"""(() => {
  const limit = __LIMIT__;
  const clean = (v) => String(v || '').replace(/\s+/g, ' ').trim();
  const metas = ['meta[name="description"]', 'meta[property="og:description"]', 'meta[name="twitter:description"]'];
  let description = '';
  for (const sel of metas) {
    const node = document.querySelector(sel);
    const content = clean(node ? node.getAttribute('content') : '');
    if (content) { description = content; break; }
  }
  const body = document.body;
  return {
    url: location.href,
    title: document.title || '',
    description,
    text: body ? clean(body.innerText || body.textContent || '').slice(0, limit) : '',
    language: (document.documentElement && document.documentElement.lang) || '',
    pathname: location.pathname || '',
  };
})()"""


class GenericHandler(SiteHandler):
    """Fallback handler for any page."""

    name = "generic"
    priority = 1

    def __init__(self, page: PageSession, config: TabContextConfig | None = None) -> None:
        self.page = page
        self.config = config or TabContextConfig()
        self._lock = threading.RLock()
        self._observers: list[ChangeObserver] = []

    @classmethod
    def match(cls, *, url: str, config: TabContextConfig) -> bool:
        return True

    @classmethod
    def create(cls, *, page: PageSession, config: TabContextConfig) -> GenericHandler:
        return cls(page, config)

    def _read(self, text_limit: int) -> dict[str, Any]:
        with self._lock:
            raw = self.page.call(GENERIC_CONTEXT_JS, limit=int(text_limit))
        raw = raw if isinstance(raw, dict) else {}
        return {
            "site": self.name,
            "url": to_safe_text(raw.get("url"), 2000),
            "title": to_safe_text(raw.get("title"), 280),
            "description": to_safe_text(raw.get("description"), 360),
            "textExcerpt": to_safe_text(raw.get("text"), text_limit),
            "details": {
                "language": to_safe_text(raw.get("language"), 32),
                "pathname": to_safe_text(raw.get("pathname"), 500),
            },
        }

    def collect_context(self, *, text_limit: int | None = None) -> dict[str, Any]:
        limit = int(text_limit or DEFAULT_TEXT_LIMIT)
        try:
            return self._read(limit)
        except Exception as exc:  # noqa: BLE001
            logger.warning("generic context failed: %s", exc)
            return {
                "site": self.name,
                "url": "",
                "title": "",
                "description": "",
                "textExcerpt": "",
                "details": {"error": str(exc) or exc.__class__.__name__},
            }

    def observe_context_changes(self, on_change: ChangeCallback) -> Disposer:
        def read_signals() -> dict[str, Any]:
            with self._lock:
                return self.page.change_signals()

        observer = ChangeObserver(
            read_signals=read_signals,
            evaluate=lambda reason: True,
            on_change=lambda reason: on_change("dom_mutation"),
            prefix="dom",
            debounce=MUTATION_DEBOUNCE,
            heartbeat=None,
            immediate=False,
        )
        self._observers.append(observer)
        observer.start()

        def dispose() -> None:
            observer.dispose()
            with suppress(ValueError):
                self._observers.remove(observer)

        return dispose

    def run_action(self, action: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
        if action == "getPageContext":
            return {"ok": True, "result": self.collect_context(text_limit=PAGE_CONTEXT_TEXT_LIMIT)}
        return {"ok": False, "error": f"Action not supported on generic pages: {action or '<empty>'}"}

    def close(self) -> None:
        for observer in list(self._observers):
            observer.dispose()
        self._observers.clear()
