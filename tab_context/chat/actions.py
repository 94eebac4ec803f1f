"""
Chat action executor: send, open and archive with verification loops.

Every wait goes through `poll_until` with the timeouts in `ChatSettings`.
Hard failures (missing composer, unknown chat, missing menu) raise
`SiteHandlerError`; outcomes that may have had a side effect (unconfirmed
send/open) are returned as results so the caller can decide on retries.

Send flow:
  verify identity -> duplicate window -> already present -> compose
  -> dispatch (send control, else Enter) -> confirm in re-scraped tail
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any

from ..errors import SiteHandlerError
from ..polling import PollResult, poll_until
from ..text import normalize_lookup_token, normalize_phone, phones_match, to_safe_text
from .collector import SITE, read_current_chat
from .dom import ChatDom
from .inbox import InboxMatch, filter_inbox, normalize_prefer, normalize_scope, rank_matches, read_inbox
from .models import CurrentChat, InboxEntry, Message
from .scraper import scrape_messages
from .state import ChatRuntime

logger = logging.getLogger("tab_context.chat.actions")

MAX_TEXT_LENGTH = 4096
SEARCH_INBOX_LIMIT = 200
CANDIDATES_REPORTED = 5
IDENTITY_SCRAPE_LIMIT = 20

ARCHIVE_LABELS = ("archive chat", "archive", "archivar chat", "archivar")
UNARCHIVE_LABELS = ("unarchive chat", "unarchive", "desarchivar chat", "desarchivar")


def _has_word(token: str, words: tuple[str, ...]) -> bool:
    return any(re.search(rf"(?<![a-z]){re.escape(word)}(?![a-z])", token) for word in words)


def classify_menu_label(label: Any) -> str:
    """'archive', 'unarchive' or '' for one context-menu label."""
    token = normalize_lookup_token(label)
    if not token:
        return ""
    if _has_word(token, UNARCHIVE_LABELS):
        return "unarchive"
    if _has_word(token, ARCHIVE_LABELS):
        return "archive"
    return ""


def outgoing_tail(messages: list[Message]) -> list[Message]:
    """Own messages after the last contact message."""
    tail: list[Message] = []
    for message in reversed(messages):
        if message.role != "me":
            break
        tail.append(message)
    tail.reverse()
    return tail


def send_fingerprint(chat: CurrentChat, text: str) -> str:
    # chat.key comes from the header only; channel_id can change after the first send.
    return f"{chat.key or chat.channel_id}::{normalize_lookup_token(text)}"


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ChatActionExecutor:
    def __init__(self, dom: ChatDom, runtime: ChatRuntime) -> None:
        self.dom = dom
        self.runtime = runtime

    @property
    def settings(self):
        return self.runtime.settings

    def _poll(self, predicate, timeout: float, cancel: threading.Event | None = None) -> PollResult:
        return poll_until(
            predicate,
            timeout=timeout,
            interval=self.settings.poll_interval,
            cancel=cancel,
            clock=self.runtime.clock,
            sleep=self.runtime.sleep,
        )

    def _error(self, action: str, reason: str, suggestion: str = "", **details: Any) -> SiteHandlerError:
        return SiteHandlerError(site=SITE, action=action, reason=reason, suggestion=suggestion, details=details)

    def current_chat(self) -> CurrentChat:
        scrape = scrape_messages(self.dom, IDENTITY_SCRAPE_LIMIT)
        return read_current_chat(self.dom, scrape.messages)

    # ------------------------------------------------------------------
    # send

    def _composer_text(self) -> str:
        state = self.dom.composer_state() or {}
        return str(state.get("text") or "")

    def _composer_holds(self, text: str) -> bool:
        return normalize_lookup_token(self._composer_text()) == normalize_lookup_token(text)

    def _send_ready(self) -> bool:
        state = self.dom.send_button_state() or {}
        return bool(state.get("found") and state.get("enabled"))

    def _own_matches(self, messages: list[Message], target: str) -> list[Message]:
        return [m for m in messages if m.role == "me" and normalize_lookup_token(m.text) == target]

    def send_message(
        self,
        text: Any,
        *,
        expected_phone: Any = "",
        dedupe_window: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        body = str(text or "").strip()
        if not body:
            raise self._error("sendMessage", "Message text is empty", "Pass a non-empty `text`")
        if len(body) > MAX_TEXT_LENGTH:
            raise self._error(
                "sendMessage",
                f"Message text is too long ({len(body)} > {MAX_TEXT_LENGTH})",
                "Split the message into smaller parts",
            )
        settings = self.settings
        target = normalize_lookup_token(body)

        expected = normalize_phone(expected_phone)
        seen: dict[str, Any] = {"chat": CurrentChat()}
        if expected:

            def identity_matches():
                chat = self.current_chat()
                seen["chat"] = chat
                return chat if chat.phone and phones_match(chat.phone, expected) else None

            identity = self._poll(identity_matches, settings.identity_timeout, cancel)
            if not identity.ok:
                chat = seen["chat"]
                reason = "phone_mismatch" if chat.phone else "phone_not_detected"
                logger.warning("send blocked: %s expected=%s current=%s", reason, expected, chat.phone or "-")
                return {
                    "ok": False,
                    "error": "Open chat does not match the expected phone"
                    if chat.phone
                    else "Could not detect the phone of the open chat",
                    "result": {
                        "sent": False,
                        "reason": reason,
                        "expectedPhone": expected,
                        "currentPhone": chat.phone,
                        "chat": chat.to_dict(),
                        "wait": identity.to_dict(),
                    },
                }
            chat = identity.value
        else:
            chat = self.current_chat()

        fingerprint = send_fingerprint(chat, body)
        if self.runtime.is_recent_send(fingerprint, dedupe_window):
            logger.info("send suppressed (duplicate window) chat=%s len=%d", chat.channel_id or chat.key, len(body))
            return {
                "ok": True,
                "result": {
                    "sent": False,
                    "duplicatePrevented": True,
                    "reason": "duplicate_window",
                    "chat": chat.to_dict(),
                },
            }

        before = scrape_messages(self.dom, settings.message_limit).messages
        if self._own_matches(outgoing_tail(before), target):
            self.runtime.remember_send(fingerprint)
            logger.info("send skipped (already present) chat=%s len=%d", chat.channel_id or chat.key, len(body))
            return {
                "ok": True,
                "result": {
                    "sent": False,
                    "duplicatePrevented": True,
                    "alreadyPresent": True,
                    "reason": "already_present",
                    "chat": chat.to_dict(),
                },
            }

        composer = self._poll(lambda: (self.dom.composer_state() or {}).get("found"), settings.composer_timeout, cancel)
        if not composer.ok:
            raise self._error(
                "sendMessage",
                "Message composer not found",
                "Open a chat first",
                wait=composer.to_dict(),
                chat=chat.to_dict(),
            )

        self.dom.focus_composer()
        insert_method = "native"
        try:
            self.dom.insert_text_native(body)
        except Exception as exc:  # noqa: BLE001
            logger.debug("native insert failed: %s", exc)
        if not self._composer_holds(body):
            insert_method = "replace"
            self.dom.replace_composer_text(body)
            if not self._composer_holds(body):
                raise self._error(
                    "sendMessage",
                    "Composer text did not converge",
                    "Clear the composer and retry",
                    composerText=to_safe_text(self._composer_text(), 200),
                )

        before_ids = {m.id for m in before}
        before_count = len(self._own_matches(before, target))

        dispatch = ""
        ready = self._poll(self._send_ready, settings.send_button_timeout, cancel)
        if ready.ok and self.dom.click_send_button():
            dispatch = "button"
        else:
            self.dom.press_enter()
            dispatch = "enter"
            if self._composer_holds(body):
                again = self._poll(self._send_ready, settings.enter_fallback_timeout, cancel)
                if again.ok and self.dom.click_send_button():
                    dispatch = "enter+button"

        def confirmed():
            messages = scrape_messages(self.dom, settings.message_limit).messages
            own = self._own_matches(messages, target)
            fresh = [m for m in own if m.id not in before_ids]
            if fresh:
                return fresh[-1]
            if len(own) > before_count:
                return own[-1]
            return None

        confirm = self._poll(confirmed, settings.confirm_timeout, cancel)
        if confirm.ok:
            self.runtime.remember_send(fingerprint)
            logger.info(
                "sent chat=%s len=%d insert=%s dispatch=%s", chat.channel_id or chat.key, len(body), insert_method, dispatch
            )
            return {
                "ok": True,
                "result": {
                    "sent": True,
                    "confirmed": True,
                    "messageId": confirm.value.id,
                    "chat": chat.to_dict(),
                    "insertMethod": insert_method,
                    "dispatch": dispatch,
                    "wait": confirm.to_dict(),
                },
            }

        still_in_composer = self._composer_holds(body)
        result = {
            "sent": False,
            "confirmed": False,
            "chat": chat.to_dict(),
            "insertMethod": insert_method,
            "dispatch": dispatch,
            "wait": confirm.to_dict(),
        }
        if still_in_composer:
            logger.warning("send failed: text still in composer chat=%s", chat.channel_id or chat.key)
            result["reason"] = "still_in_composer"
            return {"ok": False, "error": "Message was not sent; text is still in the composer", "result": result}

        # Composer cleared: the message probably left; block an immediate resend.
        self.runtime.remember_send(fingerprint)
        logger.warning("send unconfirmed chat=%s dispatch=%s", chat.channel_id or chat.key, dispatch)
        result["reason"] = "not_confirmed"
        result["composerCleared"] = True
        return {"ok": False, "error": "Message dispatch could not be confirmed", "result": result}

    # ------------------------------------------------------------------
    # open

    def _chat_is(self, chat: CurrentChat, entry: InboxEntry, phone: str) -> bool:
        wanted_phone = phone or entry.phone
        if wanted_phone and chat.phone:
            return phones_match(chat.phone, wanted_phone)
        title = normalize_lookup_token(chat.title)
        return bool(title) and title == (entry.normalized_title or normalize_lookup_token(entry.title))

    def _select(
        self, action: str, entries: list[InboxEntry], query: str, phone: str, chat_index: int | None, prefer: str
    ) -> tuple[InboxMatch, list[InboxMatch]]:
        if chat_index is not None:
            if chat_index < 0 or chat_index >= len(entries):
                raise self._error(
                    action,
                    f"chatIndex {chat_index} is out of range",
                    "Use getInbox to list chats",
                    candidates=len(entries),
                )
            entry = entries[chat_index]
            match = InboxMatch(entry=entry, score=0.0, matched_by="index")
            return match, [match]
        if not query and not phone:
            raise self._error(action, "query, phone or chatIndex is required", "Pass a chat title or phone number")
        matches = rank_matches(entries, query, prefer=prefer, phone=phone)
        if not matches:
            raise self._error(
                action,
                "No chat matched the query",
                "Check the title or phone; use getInbox to list chats",
                query=query,
                phone=phone,
                candidates=len(entries),
            )
        return matches[0], matches

    def open_chat(
        self,
        *,
        query: Any = "",
        phone: Any = "",
        chat_index: Any = None,
        prefer: Any = "",
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        query = to_safe_text(query, 180)
        phone = normalize_phone(phone)
        index = _int_or_none(chat_index)
        entries = read_inbox(self.dom, SEARCH_INBOX_LIMIT)
        match, matches = self._select("openChat", entries, query, phone, index, normalize_prefer(prefer))
        entry = match.entry
        candidates = [m.to_dict() for m in matches[:CANDIDATES_REPORTED]]

        current = self.current_chat()
        if self._chat_is(current, entry, phone):
            return {
                "ok": True,
                "result": {
                    "opened": True,
                    "alreadyOpen": True,
                    "confirmed": True,
                    "entry": match.to_dict(),
                    "candidates": candidates,
                    "chat": current.to_dict(),
                },
            }

        if not self.dom.click_inbox_row(entry.rank):
            raise self._error(
                "openChat",
                "Inbox row is no longer visible",
                "Scroll the chat list or retry",
                entry=match.to_dict(),
            )

        seen: dict[str, CurrentChat] = {"chat": current}

        def opened():
            chat = self.current_chat()
            seen["chat"] = chat
            return chat if self._chat_is(chat, entry, phone) else None

        wait = self._poll(opened, self.settings.open_timeout, cancel)
        chat = wait.value if wait.ok else seen["chat"]
        logger.info("open chat=%s confirmed=%s via=%s", entry.title, wait.ok, match.matched_by)
        return {
            "ok": True,
            "result": {
                "opened": True,
                "alreadyOpen": False,
                "confirmed": wait.ok,
                "entry": match.to_dict(),
                "candidates": candidates,
                "chat": chat.to_dict(),
                "wait": wait.to_dict(),
            },
        }

    def open_chat_and_send(
        self,
        text: Any,
        *,
        query: Any = "",
        phone: Any = "",
        chat_index: Any = None,
        prefer: Any = "",
        dedupe_window: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        if not str(text or "").strip():
            raise self._error("openChatAndSendMessage", "Message text is empty", "Pass a non-empty `text`")
        opened = self.open_chat(query=query, phone=phone, chat_index=chat_index, prefer=prefer, cancel=cancel)
        open_result = opened["result"]
        expected = normalize_phone(phone) or normalize_phone(open_result["entry"].get("phone"))
        if not open_result["confirmed"] and not expected:
            # Without a phone to re-check, an unconfirmed open could send to the wrong chat.
            return {
                "ok": False,
                "error": "Chat open could not be confirmed; message not sent",
                "result": {"sent": False, "reason": "open_unconfirmed", "open": open_result},
            }
        sent = self.send_message(text, expected_phone=expected, dedupe_window=dedupe_window, cancel=cancel)
        return {**sent, "result": {**sent.get("result", {}), "open": open_result}}

    # ------------------------------------------------------------------
    # archive

    def _locate(self, entry: InboxEntry) -> InboxEntry | None:
        """Re-find `entry` in a fresh inbox read; ranks shift as rows move."""
        wanted = entry.normalized_title or normalize_lookup_token(entry.title)
        for candidate in read_inbox(self.dom, SEARCH_INBOX_LIMIT):
            if candidate.normalized_title != wanted:
                continue
            if entry.phone_digits and candidate.phone_digits and candidate.phone_digits != entry.phone_digits:
                continue
            return candidate
        return None

    def archive_entry(self, entry: InboxEntry, cancel: threading.Event | None = None) -> dict[str, Any]:
        settings = self.settings
        if self.dom.open_row_menu(entry.rank):
            menu_via = "button"
        elif self.dom.context_click_inbox_row(entry.rank):
            menu_via = "contextmenu"
        else:
            raise self._error("archiveChats", "Inbox row is no longer visible", "Retry", title=entry.title)

        menu = self._poll(lambda: self.dom.read_menu_actions() or None, settings.menu_timeout, cancel)
        if not menu.ok:
            raise self._error(
                "archiveChats",
                "Chat menu did not open",
                "Retry; the chat list may be re-rendering",
                title=entry.title,
                menuVia=menu_via,
            )

        actions = menu.value
        labels = [str(a.get("label") or "") for a in actions]
        kinds = [classify_menu_label(label) for label in labels]
        if "archive" not in kinds:
            self.dom.dismiss_menu()
            if "unarchive" in kinds:
                return {"title": entry.title, "archived": False, "alreadyArchived": True, "menuVia": menu_via}
            raise self._error(
                "archiveChats",
                "Archive action not found in chat menu",
                "The menu layout may have changed",
                title=entry.title,
                labels=labels,
            )

        position = kinds.index("archive")
        action_index = _int_or_none(actions[position].get("index"))
        if not self.dom.click_menu_action(position if action_index is None else action_index):
            raise self._error("archiveChats", "Archive action could not be clicked", "Retry", title=entry.title)

        gone = self._poll(lambda: self._locate(entry) is None, settings.archive_timeout, cancel)
        logger.info("archive chat=%s confirmed=%s via=%s", entry.title, gone.ok, menu_via)
        return {
            "title": entry.title,
            "archived": True,
            "confirmed": gone.ok,
            "menuVia": menu_via,
        }

    def archive_chats(
        self,
        *,
        scope: Any = "all",
        query: Any = "",
        chat_index: Any = None,
        limit: Any = None,
        dry_run: bool = False,
        archive_all: bool = False,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        scope = normalize_scope(scope)
        query = to_safe_text(query, 180)
        index = _int_or_none(chat_index)
        cap = _int_or_none(limit)
        entries = read_inbox(self.dom, SEARCH_INBOX_LIMIT)

        if index is not None:
            if index < 0 or index >= len(entries):
                raise self._error(
                    "archiveChats", f"chatIndex {index} is out of range", "Use getInbox", candidates=len(entries)
                )
            targets = [entries[index]]
        else:
            if scope == "all" and not query and not archive_all:
                raise self._error(
                    "archiveChats",
                    "Refusing to archive the whole inbox",
                    "Pass a query, a scope (groups/contacts) or all=true",
                )
            targets = filter_inbox(entries, scope=scope, query=query)
        if cap is not None and cap > 0:
            targets = targets[:cap]

        summary = {"scope": scope, "query": query, "matched": len(targets), "candidates": len(entries)}
        if dry_run:
            return {
                "ok": True,
                "result": {**summary, "dryRun": True, "items": [e.to_dict() for e in targets]},
            }
        if not targets:
            return {"ok": True, "result": {**summary, "archived": 0, "alreadyArchived": 0, "failed": 0, "items": []}}

        items: list[dict[str, Any]] = []
        for target in targets:
            if cancel is not None and cancel.is_set():
                items.append({"title": target.title, "archived": False, "error": "cancelled"})
                continue
            current = self._locate(target)
            if current is None:
                items.append({"title": target.title, "archived": False, "error": "not_found"})
                continue
            try:
                items.append(self.archive_entry(current, cancel))
            except SiteHandlerError as exc:
                items.append({"title": target.title, "archived": False, "error": exc.reason, "details": exc.details})

        archived = sum(1 for item in items if item.get("archived"))
        already = sum(1 for item in items if item.get("alreadyArchived"))
        failed = sum(1 for item in items if item.get("error"))
        result = {**summary, "archived": archived, "alreadyArchived": already, "failed": failed, "items": items}
        if failed:
            return {"ok": False, "error": f"{failed} of {len(items)} chats could not be archived", "result": result}
        return {"ok": True, "result": result}
