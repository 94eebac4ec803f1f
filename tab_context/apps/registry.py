from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import TabContextConfig
from .base import SiteHandler

logger = logging.getLogger("tab_context.registry")


@dataclass
class SiteSelection:
    handler: type[SiteHandler]
    matched_by: str  # "name" | "url" | "fallback"


class SiteRegistry:
    """Priority-ordered registry of site handlers."""

    def __init__(self, fallback: str = "generic") -> None:
        self._handlers: dict[str, type[SiteHandler]] = {}
        self.fallback = fallback

    def register(self, handler: type[SiteHandler]) -> None:
        self._handlers[str(handler.name)] = handler

    def available(self) -> list[str]:
        return [h.name for h in self.ordered()]

    def ordered(self) -> list[type[SiteHandler]]:
        return sorted(self._handlers.values(), key=lambda h: (-int(h.priority), h.name))

    def get(self, name: str) -> type[SiteHandler] | None:
        return self._handlers.get(str(name or "").strip().lower())

    def select(self, *, url: str, config: TabContextConfig, site: str = "") -> SiteSelection | None:
        name = str(site or "").strip().lower()
        if name and name != "auto":
            handler = self._handlers.get(name)
            return SiteSelection(handler=handler, matched_by="name") if handler is not None else None

        u = str(url or "").strip()
        if u:
            for handler in self.ordered():
                if handler.name == self.fallback:
                    continue
                try:
                    if handler.match(url=u, config=config):
                        return SiteSelection(handler=handler, matched_by="url")
                except Exception as exc:  # noqa: BLE001
                    logger.debug("handler %s match failed: %s", handler.name, exc)
                    continue
        fallback = self._handlers.get(self.fallback)
        return SiteSelection(handler=fallback, matched_by="fallback") if fallback is not None else None


site_registry = SiteRegistry()

# Register built-in handlers.
try:
    from .chat_app import ChatAppHandler

    site_registry.register(ChatAppHandler)
except Exception:  # noqa: BLE001
    # Fail-closed: one broken handler must not take the registry down.
    logger.exception("chat handler registration failed")

try:
    from .generic import GenericHandler

    site_registry.register(GenericHandler)
except Exception:  # noqa: BLE001
    logger.exception("generic handler registration failed")
