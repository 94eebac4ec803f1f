"""Data model of the chat-app handler.

Python attributes are snake_case; `to_dict()` renders the camelCase wire
shape the message-relay layer forwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ROLES = ("me", "contact")

MESSAGE_KINDS = (
    "text",
    "audio",
    "image",
    "video",
    "sticker",
    "document",
    "media_caption",
    "empty",
    "unknown",
)

INBOX_KINDS = ("contact", "group", "unknown")


@dataclass(frozen=True)
class Message:
    id: str
    role: str
    text: str
    timestamp: str = ""
    kind: str = "text"
    author: str = ""
    enriched: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "timestamp": self.timestamp,
            "kind": self.kind,
        }
        if self.author:
            out["author"] = self.author
        if self.enriched:
            out["enriched"] = dict(self.enriched)
        return out


@dataclass
class ScrapeResult:
    messages: list[Message]
    strategy: str = ""
    row_count: int = 0
    dropped: int = 0

    def diagnostics(self) -> dict[str, Any]:
        return {"strategy": self.strategy, "rowCount": self.row_count, "dropped": self.dropped}


@dataclass(frozen=True)
class ChannelIdentity:
    channel_id: str
    source: str  # "message" | "phone" | "title" | ""

    def __bool__(self) -> bool:
        return bool(self.channel_id)


@dataclass
class CurrentChat:
    title: str = ""
    phone: str = ""
    key: str = ""
    channel_id: str = ""
    channel_source: str = ""
    type: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "phone": self.phone,
            "key": self.key,
            "channelId": self.channel_id,
            "channelSource": self.channel_source,
            "type": self.type,
        }


@dataclass
class InboxEntry:
    title: str
    phone: str = ""
    preview: str = ""
    kind: str = "unknown"
    rank: int = 0
    unread: int = 0
    normalized_title: str = ""
    phone_digits: str = ""
    search_haystack: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": f"{self.rank}-{self.title}",
            "title": self.title,
            "phone": self.phone,
            "preview": self.preview,
            "kind": self.kind,
            "rank": self.rank,
            "unread": self.unread,
        }


@dataclass
class ChatSyncEntry:
    channel_id: str
    chat_key: str = ""
    title: str = ""
    phone: str = ""
    last_message_id: str = ""
    message_ids: list[str] = field(default_factory=list)
    updated_at: int = 0

    def same_content(self, other: ChatSyncEntry | None) -> bool:
        if other is None:
            return False
        return (
            self.channel_id == other.channel_id
            and self.chat_key == other.chat_key
            and self.title == other.title
            and self.phone == other.phone
            and self.last_message_id == other.last_message_id
            and self.message_ids == other.message_ids
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "chatKey": self.chat_key,
            "title": self.title,
            "phone": self.phone,
            "lastMessageId": self.last_message_id,
            "messageIds": list(self.message_ids),
            "updatedAt": self.updated_at,
        }


@dataclass
class SyncStatus:
    channel_id: str = ""
    known_last_message_id: str = ""
    last_visible_message_id: str = ""
    is_last_message_synced: bool = True
    missing_message_count: int = 0
    missing_message_ids: list[str] = field(default_factory=list)
    known_message_count: int = 0
    persisted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "knownLastMessageId": self.known_last_message_id,
            "lastVisibleMessageId": self.last_visible_message_id,
            "isLastMessageSynced": self.is_last_message_synced,
            "missingMessageCount": self.missing_message_count,
            "missingMessageIds": list(self.missing_message_ids),
            "knownMessageCount": self.known_message_count,
            "persisted": self.persisted,
        }
