"""Per-handler runtime state of the chat-app handler.

Everything a collector or executor needs beyond the DOM lives here, owned
by one handler instance: sync ledger, observed-chat tracker, the recent
send window, timeouts and the clock.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..config import TabContextConfig
from ..storage import KeyValueStorage, MemoryStorage
from .sync_store import ChatSyncStore

logger = logging.getLogger("tab_context.chat.state")


@dataclass
class ChatSettings:
    identity_timeout: float = 2.2
    composer_timeout: float = 1.5
    send_button_timeout: float = 1.2
    enter_fallback_timeout: float = 0.6
    confirm_timeout: float = 2.6
    open_timeout: float = 2.5
    menu_timeout: float = 1.2
    archive_timeout: float = 1.8
    poll_interval: float = 0.1
    dedupe_window: float = 6.0
    message_limit: int = 80
    inbox_limit: int = 40
    text_limit: int = 1800

    @classmethod
    def from_config(cls, config: TabContextConfig) -> ChatSettings:
        return cls(
            identity_timeout=config.identity_timeout,
            confirm_timeout=config.confirm_timeout,
            open_timeout=config.open_timeout,
            dedupe_window=config.dedupe_window,
            message_limit=config.message_limit,
            inbox_limit=config.inbox_limit,
        )


@dataclass
class ChatTransition:
    previous_key: str
    previous_channel_id: str
    chat_key: str
    channel_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": {"chatKey": self.previous_key, "channelId": self.previous_channel_id},
            "to": {"chatKey": self.chat_key, "channelId": self.channel_id},
        }


@dataclass
class ObservedChatState:
    """Most recently seen chat; process lifetime only."""

    chat_key: str = ""
    channel_id: str = ""
    last_message_id: str = ""
    switches: int = 0

    def observe(self, chat_key: str, channel_id: str, last_message_id: str) -> ChatTransition | None:
        transition: ChatTransition | None = None
        identity_changed = (channel_id or chat_key) != (self.channel_id or self.chat_key)
        if identity_changed and (self.channel_id or self.chat_key):
            transition = ChatTransition(
                previous_key=self.chat_key,
                previous_channel_id=self.channel_id,
                chat_key=chat_key,
                channel_id=channel_id,
            )
            self.switches += 1
            logger.info("chat switch %s -> %s", self.channel_id or self.chat_key, channel_id or chat_key)
        self.chat_key = chat_key
        self.channel_id = channel_id
        if last_message_id:
            self.last_message_id = last_message_id
        elif identity_changed:
            self.last_message_id = ""
        return transition


@dataclass
class ChatRuntime:
    sync_store: ChatSyncStore
    settings: ChatSettings = field(default_factory=ChatSettings)
    observed: ObservedChatState = field(default_factory=ObservedChatState)
    recent_sends: dict[str, float] = field(default_factory=dict)
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def in_memory(cls, **kwargs: Any) -> ChatRuntime:
        return cls(sync_store=ChatSyncStore(MemoryStorage()), **kwargs)

    @classmethod
    def for_storage(cls, storage: KeyValueStorage, **kwargs: Any) -> ChatRuntime:
        return cls(sync_store=ChatSyncStore(storage), **kwargs)

    def is_recent_send(self, fingerprint: str, window: float | None = None) -> bool:
        self._prune_sends()
        sent_at = self.recent_sends.get(fingerprint)
        if sent_at is None:
            return False
        span = self.settings.dedupe_window if window is None else window
        return self.clock() - sent_at < span

    def remember_send(self, fingerprint: str) -> None:
        self._prune_sends()
        self.recent_sends[fingerprint] = self.clock()

    def _prune_sends(self) -> None:
        horizon = self.clock() - max(self.settings.dedupe_window, 1.0) * 4
        for key in [k for k, ts in self.recent_sends.items() if ts < horizon]:
            self.recent_sends.pop(key, None)
