"""Context collector: one canonical snapshot of the open chat."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..text import (
    digits_only,
    extract_channel_token,
    extract_phone_candidate,
    normalize_lookup_token,
    normalize_phone,
    parse_storage_candidate,
    to_safe_text,
    to_stable_hash,
)
from .dom import ChatDom
from .inbox import looks_like_group_title, read_inbox
from .models import ChannelIdentity, CurrentChat, InboxEntry, Message, ScrapeResult, SyncStatus
from .scraper import scrape_messages
from .state import ChatRuntime, ChatTransition

logger = logging.getLogger("tab_context.chat.collector")

SITE = "chat"
DESCRIPTION = "Chat web conversation context"
EXCERPT_MESSAGES = 10
MIN_TEXT_LIMIT = 300
SIGNATURE_TAIL = 3

IDENTITY_STORAGE_KEYS = ("last-wid-md", "last-wid", "lastKnownPhone")


def resolve_channel_identity(messages: list[Message], phone: str, title: str) -> ChannelIdentity:
    """Channel key by priority: message-id token, then phone, then title."""
    for message in reversed(messages):
        token = extract_channel_token(message.id)
        if token:
            return ChannelIdentity(channel_id=token, source="message")
    digits = digits_only(phone)
    if digits:
        return ChannelIdentity(channel_id=f"phone:{digits}", source="phone")
    # Two chats sharing a display name collide here.
    token = normalize_lookup_token(title)
    if token:
        return ChannelIdentity(channel_id=f"title:{token}", source="title")
    return ChannelIdentity(channel_id="", source="")


def resolve_chat_phone(header: dict[str, Any], title: str) -> str:
    """Phone of the open chat: URL param, title, subtitle, then chat-list breadcrumb."""
    from_url = normalize_phone(header.get("urlPhone"))
    if from_url:
        return from_url
    for candidate in (title, header.get("subtitle"), header.get("breadcrumb")):
        phone = extract_phone_candidate(candidate)
        if phone:
            return phone
    return ""


def conversation_type(channel_id: str, phone: str, title: str) -> str:
    lowered = channel_id.lower()
    if "@g.us" in lowered:
        return "group"
    if "@c.us" in lowered or phone:
        return "direct"
    if looks_like_group_title(title):
        return "group"
    return "unknown"


def read_current_chat(dom: ChatDom, messages: list[Message] | None = None) -> CurrentChat:
    header = dom.read_chat_header() or {}
    title = to_safe_text(header.get("title"), 240)
    phone = resolve_chat_phone(header, title)
    identity = resolve_channel_identity(messages or [], phone, title)
    if not phone and identity.channel_id.endswith("@c.us"):
        phone = extract_phone_candidate(identity.channel_id)
    return CurrentChat(
        title=title,
        phone=phone,
        key=phone or title,
        channel_id=identity.channel_id,
        channel_source=identity.source,
        type=conversation_type(identity.channel_id, phone, title),
    )


def read_my_number(dom: ChatDom) -> str:
    """The signed-in account's number, dug out of the page's storage."""
    values = dom.read_identity_storage() or {}
    for key in IDENTITY_STORAGE_KEYS:
        if key in values:
            candidate = parse_storage_candidate(values.get(key))
            if candidate:
                return candidate
    for key, value in values.items():
        if key in IDENTITY_STORAGE_KEYS:
            continue
        candidate = parse_storage_candidate(value)
        if candidate:
            return candidate
    return ""


def build_excerpt(messages: list[Message], text_limit: int) -> str:
    lines = [f"{'Yo' if m.role == 'me' else 'Contacto'}: {m.text}" for m in messages[-EXCERPT_MESSAGES:]]
    return "\n".join(lines)[: max(MIN_TEXT_LIMIT, int(text_limit))]


def context_signature(context: dict[str, Any]) -> str:
    """Compact change signature; benign re-renders keep it stable."""
    details = context.get("details") if isinstance(context.get("details"), dict) else {}
    chat = details.get("currentChat") if isinstance(details.get("currentChat"), dict) else {}
    sync = details.get("sync") if isinstance(details.get("sync"), dict) else {}
    messages = details.get("messages") if isinstance(details.get("messages"), list) else []

    first_id = str(messages[0].get("id") or "") if messages else ""
    last_id = str(messages[-1].get("id") or "") if messages else ""
    tail = "|".join(
        ":".join(str(m.get(k) or "") for k in ("id", "role", "kind", "text")) for m in messages[-SIGNATURE_TAIL:]
    )
    return "::".join(
        [
            str(chat.get("channelId") or chat.get("key") or ""),
            f"count:{len(messages)}",
            f"known:{int(sync.get('knownMessageCount') or 0)}",
            f"missing:{int(sync.get('missingMessageCount') or 0)}",
            f"first:{first_id}",
            f"last:{last_id}",
            f"visible:{sync.get('lastVisibleMessageId') or ''}",
            f"tail:{to_stable_hash(tail)}",
        ]
    )


@dataclass
class ChatSnapshot:
    url: str = ""
    page_title: str = ""
    my_number: str = ""
    chat: CurrentChat = field(default_factory=CurrentChat)
    scrape: ScrapeResult = field(default_factory=lambda: ScrapeResult(messages=[]))
    inbox: list[InboxEntry] = field(default_factory=list)
    sync: SyncStatus = field(default_factory=SyncStatus)
    transition: ChatTransition | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def messages(self) -> list[Message]:
        return self.scrape.messages

    def to_context(self, text_limit: int) -> dict[str, Any]:
        details: dict[str, Any] = {
            "myNumber": self.my_number,
            "currentChat": self.chat.to_dict(),
            "messages": [m.to_dict() for m in self.messages],
            "inbox": [e.to_dict() for e in self.inbox],
            "sync": self.sync.to_dict(),
            "scrape": self.scrape.diagnostics(),
        }
        if self.transition is not None:
            details["transition"] = self.transition.to_dict()
        if self.errors:
            details["errors"] = dict(self.errors)
        return {
            "site": SITE,
            "url": self.url,
            "title": self.page_title,
            "description": DESCRIPTION,
            "textExcerpt": build_excerpt(self.messages, text_limit),
            "details": details,
        }


class ContextCollector:
    """Assembles chat identity, message tail, inbox and sync status.

    Each part is read independently; a failing part is recorded under
    `errors` and the rest of the snapshot is still returned.
    """

    def __init__(self, dom: ChatDom, runtime: ChatRuntime) -> None:
        self.dom = dom
        self.runtime = runtime

    def snapshot(self, *, message_limit: int | None = None, inbox_limit: int | None = None) -> ChatSnapshot:
        settings = self.runtime.settings
        snap = ChatSnapshot()
        started = time.perf_counter()

        try:
            meta = self.dom.page_meta() or {}
            snap.url = to_safe_text(meta.get("url"), 2000)
            snap.page_title = to_safe_text(meta.get("title"), 280)
        except Exception as exc:  # noqa: BLE001
            snap.errors["page"] = str(exc)

        try:
            snap.scrape = scrape_messages(self.dom, message_limit or settings.message_limit)
        except Exception as exc:  # noqa: BLE001
            snap.errors["messages"] = str(exc)

        try:
            snap.chat = read_current_chat(self.dom, snap.messages)
        except Exception as exc:  # noqa: BLE001
            snap.errors["currentChat"] = str(exc)

        try:
            snap.my_number = read_my_number(self.dom)
        except Exception as exc:  # noqa: BLE001
            snap.errors["myNumber"] = str(exc)

        try:
            snap.inbox = read_inbox(self.dom, inbox_limit or settings.inbox_limit)
        except Exception as exc:  # noqa: BLE001
            snap.errors["inbox"] = str(exc)

        chat = snap.chat
        try:
            snap.sync = self.runtime.sync_store.update(
                chat.channel_id,
                chat.key,
                chat.title,
                chat.phone,
                [m.id for m in snap.messages],
            )
        except Exception as exc:  # noqa: BLE001
            snap.errors["sync"] = str(exc)

        last_id = snap.messages[-1].id if snap.messages else ""
        snap.transition = self.runtime.observed.observe(chat.key, chat.channel_id, last_id)

        logger.debug(
            "collected chat=%s messages=%d inbox=%d in %.1fms",
            chat.channel_id or "-",
            len(snap.messages),
            len(snap.inbox),
            (time.perf_counter() - started) * 1000,
        )
        return snap

    def collect(self, text_limit: int | None = None) -> dict[str, Any]:
        limit = self.runtime.settings.text_limit if text_limit is None else text_limit
        return self.snapshot().to_context(max(MIN_TEXT_LIMIT, int(limit or 0)))
