"""Identity and text normalization helpers.

Pure, total functions: every helper accepts any value (including None)
and returns the empty/neutral value instead of raising.
"""

from __future__ import annotations

import json
import re
import unicodedata
from typing import Any

_WS_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")
_WID_PHONE_RE = re.compile(r"([0-9]{7,})@")
_COMMON_PHONE_RE = re.compile(r"(\+?[0-9][0-9\s().-]{6,}[0-9])")

# Chat-network ids embedded in message ids, e.g. "false_34612345678@c.us_3EB0C1D2".
_CHANNEL_TOKEN_RE = re.compile(
    r"([0-9][0-9-]{4,}@(?:c\.us|g\.us|s\.whatsapp\.net|lid|broadcast|newsletter))",
    re.IGNORECASE,
)

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193

STORAGE_PRIORITY_FIELDS = ("user", "wid", "id", "me", "phone", "jid", "serialized")

MIN_PHONE_SUFFIX = 7


def to_safe_text(value: Any, limit: int = 1200) -> str:
    """Collapse whitespace, strip and truncate to `limit` characters."""
    if value is None:
        return ""
    text = _WS_RE.sub(" ", str(value)).strip()
    if not text:
        return ""
    return text[: max(0, int(limit))]


def digits_only(value: Any) -> str:
    if value is None:
        return ""
    return _NON_DIGIT_RE.sub("", str(value))


def normalize_phone(value: Any) -> str:
    """Strip non-digits; keep a leading '+' only when the original had one."""
    source = str(value or "").strip()
    if not source:
        return ""
    digits = digits_only(source)
    if not digits:
        return ""
    return f"+{digits}" if source.startswith("+") else digits


def extract_phone_candidate(value: Any) -> str:
    """Find a phone number in free text (chat-network id form first)."""
    source = str(value or "")
    if not source:
        return ""

    wid = _WID_PHONE_RE.search(source)
    if wid:
        return normalize_phone(wid.group(1))

    common = _COMMON_PHONE_RE.search(source)
    if common:
        return normalize_phone(common.group(1))

    return ""


def normalize_lookup_token(value: Any) -> str:
    """Lowercase, strip diacritics and collapse whitespace (fuzzy matching key)."""
    if value is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WS_RE.sub(" ", stripped.lower()).strip()


def to_stable_hash(value: Any) -> str:
    """32-bit FNV-1a hash as 8 hex chars. Used for id suffixes only."""
    h = _FNV_OFFSET
    for byte in str(value or "").encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return f"{h:08x}"


def phones_match(a: Any, b: Any, *, min_suffix: int = MIN_PHONE_SUFFIX) -> bool:
    """Digit comparison tolerant of missing country prefixes.

    Equal digit strings match; otherwise the longer must end with the
    shorter and the shorter must carry at least `min_suffix` digits.
    """
    da = digits_only(a)
    db = digits_only(b)
    if not da or not db:
        return False
    if da == db:
        return True
    short, long_ = (da, db) if len(da) <= len(db) else (db, da)
    if len(short) < min_suffix:
        return False
    return long_.endswith(short)


def extract_channel_token(value: Any) -> str:
    """Return the chat-network channel id embedded in a message id, if any."""
    source = str(value or "")
    if not source:
        return ""
    match = _CHANNEL_TOKEN_RE.search(source)
    return match.group(1).lower() if match else ""


def parse_storage_candidate(raw: Any, *, _depth: int = 0) -> str:
    """Dig a phone number out of an arbitrary storage value.

    Strings are scanned directly and then tried as JSON; objects are walked
    through well-known id fields first, then every remaining field.
    """
    if raw is None or _depth > 6:
        return ""

    if isinstance(raw, str):
        direct = extract_phone_candidate(raw)
        if direct:
            return direct
        try:
            parsed = json.loads(raw)
        except (ValueError, TypeError):
            return ""
        if isinstance(parsed, str) and parsed == raw:
            return ""
        return parse_storage_candidate(parsed, _depth=_depth + 1)

    if isinstance(raw, dict):
        for key in STORAGE_PRIORITY_FIELDS:
            if key not in raw:
                continue
            candidate = parse_storage_candidate(raw[key], _depth=_depth + 1)
            if candidate:
                return candidate
        for key, value in raw.items():
            if key in STORAGE_PRIORITY_FIELDS:
                continue
            candidate = parse_storage_candidate(value, _depth=_depth + 1)
            if candidate:
                return candidate
        return ""

    if isinstance(raw, list):
        for item in raw:
            candidate = parse_storage_candidate(item, _depth=_depth + 1)
            if candidate:
                return candidate
        return ""

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return extract_phone_candidate(str(int(raw)))

    return ""


def unique_fragments(values: list[Any], limit: int = 380) -> list[str]:
    """Safe-text every fragment and keep first occurrences only."""
    out: list[str] = []
    seen: set[str] = set()
    for value in values or []:
        text = to_safe_text(value, limit)
        if not text or text in seen:
            continue
        seen.add(text)
        out.append(text)
    return out
