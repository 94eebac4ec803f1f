"""Inbox listing and query matching."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..text import (
    digits_only,
    extract_channel_token,
    extract_phone_candidate,
    normalize_lookup_token,
    phones_match,
    to_safe_text,
)
from .dom import ChatDom
from .models import InboxEntry

logger = logging.getLogger("tab_context.chat.inbox")

DEFAULT_INBOX_LIMIT = 40

SCORE_EXACT_TITLE = 100.0
SCORE_TITLE_PREFIX = 70.0
SCORE_SUBSTRING = 45.0
SCORE_PARTIAL_TOKENS = 25.0
BONUS_PHONE_EXACT = 80.0
BONUS_PHONE_SUFFIX = 60.0
BIAS_PREFERRED_KIND = 12.0
MIN_PHONE_QUERY_DIGITS = 6

SCOPES = ("all", "groups", "contacts")

_GROUP_WORDS = ("group", "grupo")


def _entry_kind(raw: dict[str, Any], title: str, phone: str) -> str:
    data_id = str(raw.get("dataId") or "").lower()
    if raw.get("groupHint") or "@g.us" in data_id:
        return "group"
    if phone or "@c.us" in data_id:
        return "contact"
    return "unknown"


def parse_inbox_row(raw: dict[str, Any], fallback_index: int = 0) -> InboxEntry | None:
    if not isinstance(raw, dict):
        return None
    title = to_safe_text(raw.get("title"), 180)
    if not title:
        return None

    preview = ""
    for candidate in raw.get("previewCandidates") or []:
        value = to_safe_text(candidate, 220)
        if value and value != title:
            preview = value
            break

    channel = extract_channel_token(raw.get("dataId"))
    phone = extract_phone_candidate(title) or (extract_phone_candidate(channel) if "@c.us" in channel else "")
    try:
        rank = int(raw.get("index", fallback_index))
    except (TypeError, ValueError):
        rank = fallback_index
    try:
        unread = max(0, int(raw.get("unread") or 0))
    except (TypeError, ValueError):
        unread = 0

    entry = InboxEntry(
        title=title,
        phone=phone,
        preview=preview,
        kind=_entry_kind(raw, title, phone),
        rank=rank,
        unread=unread,
    )
    return with_search_fields(entry)


def with_search_fields(entry: InboxEntry) -> InboxEntry:
    entry.normalized_title = normalize_lookup_token(entry.title)
    entry.phone_digits = digits_only(entry.phone)
    entry.search_haystack = " ".join(
        part for part in (entry.normalized_title, normalize_lookup_token(entry.preview), entry.phone_digits) if part
    )
    return entry


def read_inbox(dom: ChatDom, limit: int = DEFAULT_INBOX_LIMIT) -> list[InboxEntry]:
    entries: list[InboxEntry] = []
    for i, raw in enumerate(dom.read_inbox_rows()):
        try:
            entry = parse_inbox_row(raw, i)
        except Exception as exc:  # noqa: BLE001
            logger.debug("inbox row %d skipped: %s", i, exc)
            continue
        if entry is not None:
            entries.append(entry)
    cap = max(1, int(limit or DEFAULT_INBOX_LIMIT))
    return entries[:cap]


def normalize_scope(raw: Any) -> str:
    scope = str(raw or "").strip().lower()
    if scope in {"group", "groups", "grupos"}:
        return "groups"
    if scope in {"contact", "contacts", "contactos", "direct"}:
        return "contacts"
    return "all"


def normalize_prefer(raw: Any) -> str:
    prefer = normalize_scope(raw)
    return "" if prefer == "all" else prefer


@dataclass
class InboxMatch:
    entry: InboxEntry
    score: float
    matched_by: str

    def to_dict(self) -> dict[str, Any]:
        return {**self.entry.to_dict(), "score": self.score, "matchedBy": self.matched_by}


def score_entry(entry: InboxEntry, query: str, *, prefer: str = "", phone: str = "") -> tuple[float, str]:
    """Weighted match score of one inbox entry against a free-text/phone query.

    0 means "no match". Title tiers (exact > prefix > substring > partial
    tokens) set the base; a phone match adds a large bonus; `prefer`
    biases groups or contacts.
    """
    q = normalize_lookup_token(query)
    if not q and not digits_only(phone):
        return 0.0, ""
    title = entry.normalized_title or normalize_lookup_token(entry.title)

    base = 0.0
    matched_by = ""
    if not q:
        pass
    elif title == q:
        base, matched_by = SCORE_EXACT_TITLE, "exact"
    elif title.startswith(q):
        base, matched_by = SCORE_TITLE_PREFIX, "prefix"
    elif q in title:
        base, matched_by = SCORE_SUBSTRING, "substring"
    else:
        tokens = [t for t in q.split(" ") if t]
        haystack = entry.search_haystack or title
        hay_tokens = haystack.split(" ")
        hits = sum(1 for t in tokens if any(h.startswith(t) for h in hay_tokens))
        if tokens and hits:
            base, matched_by = SCORE_PARTIAL_TOKENS * hits / len(tokens), "tokens"

    q_digits = digits_only(phone) if digits_only(phone) else digits_only(query)
    entry_digits = entry.phone_digits or digits_only(entry.phone)
    if len(q_digits) >= MIN_PHONE_QUERY_DIGITS and entry_digits:
        if q_digits == entry_digits:
            base += BONUS_PHONE_EXACT
            matched_by = matched_by or "phone"
        elif phones_match(q_digits, entry_digits):
            base += BONUS_PHONE_SUFFIX
            matched_by = matched_by or "phone_suffix"

    if base <= 0:
        return 0.0, ""

    if prefer == "groups":
        base += BIAS_PREFERRED_KIND if entry.kind == "group" else -BIAS_PREFERRED_KIND / 2
    elif prefer == "contacts":
        base += BIAS_PREFERRED_KIND if entry.kind == "contact" else -BIAS_PREFERRED_KIND / 2
    return max(base, 0.01), matched_by


def rank_matches(
    entries: list[InboxEntry], query: str, *, prefer: str = "", phone: str = ""
) -> list[InboxMatch]:
    """Matches with score > 0, best first; ties favour the earlier list rank."""
    matches: list[InboxMatch] = []
    for entry in entries:
        score, matched_by = score_entry(entry, query, prefer=prefer, phone=phone)
        if score > 0:
            matches.append(InboxMatch(entry=entry, score=score, matched_by=matched_by))
    matches.sort(key=lambda m: (-m.score, m.entry.rank))
    return matches


def filter_inbox(entries: list[InboxEntry], *, scope: str = "all", query: str = "") -> list[InboxEntry]:
    """Entries inside `scope` that match `query` (all of them when query is empty)."""
    scope = normalize_scope(scope)
    out: list[InboxEntry] = []
    for entry in entries:
        if scope == "groups" and entry.kind != "group":
            continue
        if scope == "contacts" and entry.kind != "contact":
            continue
        if query and score_entry(entry, query)[0] <= 0:
            continue
        out.append(entry)
    return out


def looks_like_group_title(title: str) -> bool:
    token = normalize_lookup_token(title)
    return any(word in token.split(" ") for word in _GROUP_WORDS)
