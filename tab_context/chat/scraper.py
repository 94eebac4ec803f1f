"""
Conversation scraper.

Turns raw message-row records (see chat.dom) into an ordered list of
`Message` objects, most recent last:

1. classify the content kind from media markers
2. run kind-specific enrichment (transcript, caption, file name, ...)
3. synthesize display text for non-text content
4. derive a stable id (DOM-native id, else content hash + position)
5. drop rows without signal that do not look like real message rows
"""

from __future__ import annotations

import logging
import re
from typing import Any

from ..text import normalize_lookup_token, to_safe_text, to_stable_hash, unique_fragments
from .dom import ChatDom
from .models import Message, ScrapeResult

logger = logging.getLogger("tab_context.chat.scraper")

DEFAULT_MESSAGE_LIMIT = 80

# (marker, kind) in classification priority order.
KIND_MARKERS: list[tuple[str, str]] = [
    ("hasAudio", "audio"),
    ("hasSticker", "sticker"),
    ("hasImage", "image"),
    ("hasDocument", "document"),
    ("hasVideo", "video"),
]

# Player/download chrome that shows up next to media, in either UI language.
UI_CHROME_PHRASES = frozenset(
    normalize_lookup_token(p)
    for p in (
        "play",
        "pause",
        "download",
        "play voice message",
        "pause voice message",
        "voice message",
        "audio",
        "forwarded",
        "reproducir",
        "pausar",
        "descargar",
        "reproducir mensaje de voz",
        "pausar mensaje de voz",
        "mensaje de voz",
        "reenviado",
        "image",
        "imagen",
        "video",
        "sticker",
        "document",
        "documento",
        "photo",
        "foto",
        "read",
        "delivered",
        "sent",
        "leído",
        "entregado",
        "enviado",
        "message reactions",
        "reacciones",
    )
)

_DURATION_RE = re.compile(r"\b(\d{1,2}:\d{2}(?::\d{2})?)\b")
_PRE_PLAIN_RE = re.compile(r"^\s*\[([^\]]*)\]\s*(.*?)\s*:?\s*$")

KIND_LABELS = {
    "audio": "Mensaje de voz",
    "image": "Imagen",
    "video": "Video",
    "sticker": "Sticker",
    "document": "Documento",
    "unknown": "Mensaje sin texto",
}


def is_ui_chrome(label: str) -> bool:
    token = normalize_lookup_token(label)
    if not token:
        return True
    if token in UI_CHROME_PHRASES:
        return True
    # Bare durations / clock times are player chrome too.
    return bool(_DURATION_RE.fullmatch(token))


def parse_pre_plain(raw: Any) -> tuple[str, str]:
    """Split "[10:31, 3/12/2024] Ana: " into (timestamp, author)."""
    text = to_safe_text(raw, 160)
    if not text:
        return "", ""
    match = _PRE_PLAIN_RE.match(text)
    if not match:
        return text[:96], ""
    timestamp = to_safe_text(match.group(1), 96)
    author = to_safe_text(match.group(2).rstrip(":"), 120)
    return timestamp, author


def classify_kind(raw: dict[str, Any], text: str) -> str:
    for marker, kind in KIND_MARKERS:
        if raw.get(marker):
            return kind
    caption = to_safe_text(raw.get("captionText"), 280)
    if raw.get("hasCaption") and caption:
        return "media_caption"
    if text:
        return "text"
    if raw.get("hasOtherMedia"):
        return "unknown"
    return "empty"


def _duration_of(raw: dict[str, Any]) -> str:
    direct = to_safe_text(raw.get("duration"), 16)
    match = _DURATION_RE.search(direct)
    if match:
        return match.group(1)
    for label in raw.get("labels") or []:
        match = _DURATION_RE.search(str(label or ""))
        if match:
            return match.group(1)
    return ""


def enrich(raw: dict[str, Any], kind: str, text: str) -> dict[str, str]:
    """Kind-specific extras. Only non-empty values are kept."""
    enriched: dict[str, str] = {}
    caption = to_safe_text(raw.get("captionText"), 280)
    image_alt = to_safe_text(raw.get("imageAlt"), 240)
    labels = unique_fragments(list(raw.get("labels") or []), 420)
    meaningful = [label for label in labels if not is_ui_chrome(label) and label != text]

    if kind == "audio":
        transcript = [label for label in meaningful if not _DURATION_RE.search(label) or len(label) > 24]
        if transcript:
            enriched["transcript"] = to_safe_text(" ".join(transcript), 420)
        duration = _duration_of(raw)
        if duration:
            enriched["audioDuration"] = duration
    elif kind in {"image", "sticker"}:
        if image_alt and not is_ui_chrome(image_alt):
            enriched["imageAlt"] = image_alt
            enriched["ocrText"] = image_alt
        elif meaningful:
            enriched["ocrText"] = to_safe_text(" ".join(meaningful), 420)
        if caption:
            enriched["mediaCaption"] = caption
    elif kind == "video":
        if caption:
            enriched["mediaCaption"] = caption
        duration = _duration_of(raw)
        if duration:
            enriched["audioDuration"] = duration
    elif kind == "document":
        file_name = to_safe_text(raw.get("fileName"), 240)
        if file_name:
            enriched["fileName"] = file_name
        if caption:
            enriched["mediaCaption"] = caption
    elif kind == "media_caption":
        enriched["mediaCaption"] = caption

    return enriched


def synthesize_text(kind: str, enriched: dict[str, str]) -> str:
    """Human-readable text for rows whose own text is empty."""
    caption = enriched.get("mediaCaption", "")
    if kind == "audio":
        if enriched.get("transcript"):
            return enriched["transcript"]
        duration = enriched.get("audioDuration")
        return f"{KIND_LABELS['audio']} ({duration})" if duration else KIND_LABELS["audio"]
    if kind == "document":
        name = enriched.get("fileName")
        if name:
            return f"{KIND_LABELS['document']}: {name}"
        return caption or KIND_LABELS["document"]
    if kind in {"image", "sticker"}:
        return caption or enriched.get("ocrText", "") or KIND_LABELS[kind]
    if kind == "video":
        return caption or KIND_LABELS["video"]
    if kind == "media_caption":
        return caption
    if kind == "unknown":
        return KIND_LABELS["unknown"]
    return ""


def message_id(raw: dict[str, Any], *, role: str, timestamp: str, kind: str, text: str, index: int) -> str:
    native = to_safe_text(raw.get("dataId"), 240)
    if native:
        return native
    timing = to_safe_text(raw.get("timeLabel"), 40)
    digest = to_stable_hash("|".join([role, timestamp, timing, kind, text]))
    return f"{role}-{digest}-{index}"


def parse_row(raw: dict[str, Any], index: int) -> Message | None:
    """Build one message from a raw row; None when the row carries no signal."""
    if not isinstance(raw, dict) or raw.get("error"):
        return None

    role = "me" if raw.get("outgoing") else "contact"
    own_text = to_safe_text(" ".join(unique_fragments(list(raw.get("textFragments") or []))), 800)
    kind = classify_kind(raw, own_text)
    if kind == "empty":
        return None

    enriched = enrich(raw, kind, own_text)
    text = own_text or to_safe_text(synthesize_text(kind, enriched), 800)
    if not text:
        return None
    if not own_text and not raw.get("looksLikeMessage"):
        # Media markers alone, outside anything row-shaped, are UI chrome.
        return None

    timestamp, author = parse_pre_plain(raw.get("prePlain"))
    if not timestamp:
        timestamp = to_safe_text(raw.get("timeLabel"), 96)

    return Message(
        id=message_id(raw, role=role, timestamp=timestamp, kind=kind, text=text, index=index),
        role=role,
        text=text,
        timestamp=timestamp,
        kind=kind,
        author=author if role == "contact" else "",
        enriched=enriched,
    )


def parse_rows(payload: dict[str, Any], limit: int = DEFAULT_MESSAGE_LIMIT) -> ScrapeResult:
    rows = payload.get("rows") if isinstance(payload, dict) else None
    rows = rows if isinstance(rows, list) else []
    strategy = str(payload.get("strategy") or "") if isinstance(payload, dict) else ""

    messages: list[Message] = []
    dropped = 0
    for index, raw in enumerate(rows):
        try:
            message = parse_row(raw, index)
        except Exception as exc:  # noqa: BLE001
            logger.debug("message row %d skipped: %s", index, exc)
            message = None
        if message is None:
            dropped += 1
            continue
        messages.append(message)

    cap = max(1, int(limit or DEFAULT_MESSAGE_LIMIT))
    if len(messages) > cap:
        messages = messages[len(messages) - cap :]
    return ScrapeResult(messages=messages, strategy=strategy, row_count=len(rows), dropped=dropped)


def scrape_messages(dom: ChatDom, limit: int = DEFAULT_MESSAGE_LIMIT) -> ScrapeResult:
    return parse_rows(dom.read_message_rows(), limit)
