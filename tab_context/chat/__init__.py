"""
Chat web app subsystem.

- dom: JS extraction snippets + `ChatDom` port (readers and actuators)
- scraper: message rows -> ordered `Message` list
- sync_store: persisted per-channel ledger of reconciled message ids
- inbox: chat list parsing and query scoring
- collector: one canonical snapshot of the open chat
- actions: send / open / archive with verification loops
"""

from __future__ import annotations

from .actions import ChatActionExecutor
from .collector import ContextCollector, context_signature
from .dom import CdpChatDom, ChatDom
from .state import ChatRuntime, ChatSettings
from .sync_store import ChatSyncStore

__all__ = [
    "CdpChatDom",
    "ChatActionExecutor",
    "ChatDom",
    "ChatRuntime",
    "ChatSettings",
    "ChatSyncStore",
    "ContextCollector",
    "context_signature",
]
