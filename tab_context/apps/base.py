from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from ..config import TabContextConfig
from ..errors import SiteHandlerError
from ..page import PageSession

__all__ = ["SiteHandler", "SiteHandlerError", "ChangeCallback", "Disposer"]

ChangeCallback = Callable[[str], None]
Disposer = Callable[[], None]


class SiteHandler(ABC):
    """Capability surface one site exposes to the tab-context host."""

    name: str
    # Higher wins when several handlers match the same URL.
    priority: int = 0

    @classmethod
    @abstractmethod
    def match(cls, *, url: str, config: TabContextConfig) -> bool:
        """Return True if the handler can operate on the given URL."""

    @classmethod
    @abstractmethod
    def create(cls, *, page: PageSession, config: TabContextConfig) -> SiteHandler:
        """Build a handler bound to one page."""

    @abstractmethod
    def collect_context(self, *, text_limit: int | None = None) -> dict[str, Any]:
        """Snapshot of the page. Never raises."""

    @abstractmethod
    def observe_context_changes(self, on_change: ChangeCallback) -> Disposer:
        """Start change notification; the returned disposer is idempotent."""

    @abstractmethod
    def run_action(self, action: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a site action; returns {ok, result?, error?}. Never raises."""

    def close(self) -> None:
        """Release observers and other per-page resources."""
