"""Chat sync ledger: which message ids were already reconciled, per channel.

The ledger is one versioned record `{version, updatedAt, chats: [...]}`
kept under a fixed storage key. It is cached after the first load and
written through on every real change.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from ..storage import KeyValueStorage
from ..text import to_safe_text
from .models import ChatSyncEntry, SyncStatus

logger = logging.getLogger("tab_context.chat.sync")

LEDGER_KEY = "tab_context.chat_sync.v1"
LEDGER_VERSION = 1
MAX_MESSAGE_IDS = 180
MAX_CHANNELS = 120
MISSING_IDS_TAIL = 12


def _now_ms() -> int:
    return int(time.time() * 1000)


def _clean_ids(raw: Any, cap: int = MAX_MESSAGE_IDS) -> list[str]:
    if not isinstance(raw, list):
        return []
    out: list[str] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, str):
            continue
        value = item.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out[-cap:] if len(out) > cap else out


def parse_entry(raw: Any) -> ChatSyncEntry | None:
    """Validate one persisted entry; None when it is unusable."""
    if not isinstance(raw, dict):
        return None
    channel_id = raw.get("channelId")
    if not isinstance(channel_id, str) or not channel_id.strip():
        return None
    if not isinstance(raw.get("messageIds", []), list):
        return None
    try:
        updated_at = int(raw.get("updatedAt") or 0)
    except (TypeError, ValueError):
        updated_at = 0
    message_ids = _clean_ids(raw.get("messageIds"))
    last = raw.get("lastMessageId")
    return ChatSyncEntry(
        channel_id=channel_id.strip(),
        chat_key=to_safe_text(raw.get("chatKey"), 220),
        title=to_safe_text(raw.get("title"), 240),
        phone=to_safe_text(raw.get("phone"), 40),
        last_message_id=last.strip() if isinstance(last, str) else (message_ids[-1] if message_ids else ""),
        message_ids=message_ids,
        updated_at=max(0, updated_at),
    )


def merge_message_ids(known: list[str], visible: list[str], cap: int = MAX_MESSAGE_IDS) -> list[str]:
    """Append unseen visible ids (oldest first) and evict from the front past `cap`."""
    merged = list(known)
    seen = set(merged)
    for mid in visible:
        if mid and mid not in seen:
            seen.add(mid)
            merged.append(mid)
    if len(merged) > cap:
        merged = merged[len(merged) - cap :]
    return merged


class ChatSyncStore:
    """Single-writer ledger of reconciled message ids."""

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        key: str = LEDGER_KEY,
        clock_ms: Callable[[], int] = _now_ms,
        max_message_ids: int = MAX_MESSAGE_IDS,
        max_channels: int = MAX_CHANNELS,
    ) -> None:
        self.storage = storage
        self.key = key
        self.clock_ms = clock_ms
        self.max_message_ids = max(1, int(max_message_ids))
        self.max_channels = max(1, int(max_channels))
        self._entries: dict[str, ChatSyncEntry] | None = None
        self.skipped = 0

    def load(self, *, force: bool = False) -> dict[str, ChatSyncEntry]:
        """Read and validate the ledger. Unreadable data loads as empty."""
        if self._entries is not None and not force:
            return self._entries

        entries: dict[str, ChatSyncEntry] = {}
        skipped = 0
        try:
            record = self.storage.read(self.key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("sync ledger unreadable, starting empty: %s", exc)
            record = None

        chats = record.get("chats") if isinstance(record, dict) else None
        if isinstance(chats, list):
            for raw in chats:
                entry = parse_entry(raw)
                if entry is None:
                    skipped += 1
                    continue
                if len(entry.message_ids) > self.max_message_ids:
                    entry.message_ids = entry.message_ids[-self.max_message_ids :]
                prev = entries.get(entry.channel_id)
                if prev is None or entry.updated_at >= prev.updated_at:
                    entries[entry.channel_id] = entry
        elif record is not None:
            logger.warning("sync ledger has unexpected shape; ignoring it")

        if skipped:
            logger.debug("skipped %d malformed sync entries", skipped)
        self.skipped = skipped
        self._entries = entries
        return entries

    def get(self, channel_id: str) -> ChatSyncEntry | None:
        return self.load().get(str(channel_id or "").strip())

    def entries(self) -> list[ChatSyncEntry]:
        return sorted(self.load().values(), key=lambda e: e.updated_at, reverse=True)

    def snapshot(self) -> dict[str, Any]:
        return {
            "version": LEDGER_VERSION,
            "updatedAt": self.clock_ms(),
            "chats": [e.to_dict() for e in self.entries()],
        }

    def _persist(self) -> None:
        entries = self.load()
        if len(entries) > self.max_channels:
            ordered = sorted(entries.values(), key=lambda e: e.updated_at)
            for stale in ordered[: len(entries) - self.max_channels]:
                entries.pop(stale.channel_id, None)
        self.storage.write(self.key, self.snapshot())

    def update(
        self,
        channel_id: str,
        chat_key: str,
        title: str,
        phone: str,
        visible_message_ids: list[str],
    ) -> SyncStatus:
        """Merge the visible ids for a channel and report what was new."""
        channel = str(channel_id or "").strip()
        visible = _clean_ids(list(visible_message_ids or []), cap=10_000)
        last_visible = visible[-1] if visible else ""

        if not channel:
            return SyncStatus(
                last_visible_message_id=last_visible,
                is_last_message_synced=not visible,
                missing_message_count=len(visible),
                missing_message_ids=visible[-MISSING_IDS_TAIL:],
            )

        entries = self.load()
        previous = entries.get(channel)
        known_ids = list(previous.message_ids) if previous else []
        known_set = set(known_ids)
        missing = [mid for mid in visible if mid not in known_set]

        merged = merge_message_ids(known_ids, visible, self.max_message_ids)
        candidate = ChatSyncEntry(
            channel_id=channel,
            chat_key=to_safe_text(chat_key, 220) or (previous.chat_key if previous else ""),
            title=to_safe_text(title, 240) or (previous.title if previous else ""),
            phone=to_safe_text(phone, 40) or (previous.phone if previous else ""),
            last_message_id=last_visible or (previous.last_message_id if previous else ""),
            message_ids=merged,
            updated_at=previous.updated_at if previous else 0,
        )

        persisted = False
        if not candidate.same_content(previous):
            candidate.updated_at = self.clock_ms()
            entries[channel] = candidate
            try:
                self._persist()
                persisted = True
                logger.info(
                    "sync ledger updated channel=%s new=%d known=%d",
                    channel,
                    len(missing),
                    len(candidate.message_ids),
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("sync ledger write failed: %s", exc)
                # Cache mirrors storage; the next update retries the write.
                if previous is None:
                    entries.pop(channel, None)
                else:
                    entries[channel] = previous

        return SyncStatus(
            channel_id=channel,
            known_last_message_id=previous.last_message_id if previous else "",
            last_visible_message_id=last_visible,
            is_last_message_synced=(last_visible in known_set) if last_visible else True,
            missing_message_count=len(missing),
            missing_message_ids=missing[-MISSING_IDS_TAIL:],
            known_message_count=len(candidate.message_ids),
            persisted=persisted,
        )
