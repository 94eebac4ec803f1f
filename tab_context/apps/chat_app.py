"""
Chat web app handler.

Wires the chat subsystem into the site-handler surface:
- collect_context -> ContextCollector (identity, message tail, inbox, sync)
- observe_context_changes -> ChangeObserver + context signature comparison
- run_action -> ChatActionExecutor and read-only lookups

One `ChatRuntime` per handler instance holds all mutable state. DOM access
is serialized with a re-entrant lock because the observer thread and
action calls share one page.
"""

from __future__ import annotations

import logging
import threading
import time
import urllib.parse
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from ..chat.actions import ChatActionExecutor
from ..chat.collector import SITE, ContextCollector, context_signature, read_current_chat, read_my_number
from ..chat.dom import CdpChatDom, ChatDom
from ..chat.inbox import filter_inbox, normalize_prefer, normalize_scope, rank_matches, read_inbox
from ..chat.scraper import scrape_messages
from ..chat.state import ChatRuntime, ChatSettings
from ..config import TabContextConfig
from ..errors import SiteHandlerError
from ..observer import ChangeObserver
from ..page import PageSession
from ..storage import JsonFileStorage, KeyValueStorage, MemoryStorage, PageLocalStorage
from .base import ChangeCallback, Disposer, SiteHandler

logger = logging.getLogger("tab_context.chat")


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _limit(value: Any, default: int, ceiling: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(n, ceiling))


def _seconds(value: Any) -> float | None:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def ledger_storage(config: TabContextConfig, page: PageSession | None = None) -> KeyValueStorage:
    backend = config.ledger_backend
    if backend == "page" and page is not None:
        return PageLocalStorage(page)
    if backend == "memory":
        return MemoryStorage()
    return JsonFileStorage(config.data_dir)


class ChatAppHandler(SiteHandler):
    name = SITE
    priority = 100

    def __init__(
        self,
        dom: ChatDom,
        runtime: ChatRuntime | None = None,
        config: TabContextConfig | None = None,
        *,
        observer_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or TabContextConfig()
        self.dom = dom
        self.runtime = runtime or ChatRuntime.in_memory(settings=ChatSettings.from_config(self.config))
        self.collector = ContextCollector(dom, self.runtime)
        self.executor = ChatActionExecutor(dom, self.runtime)
        self.observer_clock = observer_clock
        self._lock = threading.RLock()
        self._observers: list[ChangeObserver] = []
        self._actions: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            "getMyNumber": self._get_my_number,
            "getCurrentChat": self._get_current_chat,
            "readMessages": self._read_messages,
            "getListMessages": self._read_messages,
            "getInbox": self._get_inbox,
            "getListInbox": self._get_inbox,
            "sendMessage": self._send_message,
            "openChat": self._open_chat,
            "openChatByQuery": self._open_chat,
            "openChatAndSendMessage": self._open_and_send,
            "openAndSendMessage": self._open_and_send,
            "archiveChats": self._archive_chats,
            "archiveListChats": self._archive_chats,
            "archiveGroups": self._archive_groups,
            "getAutomationPack": self._automation_pack,
        }

    @classmethod
    def match(cls, *, url: str, config: TabContextConfig) -> bool:
        parsed = urllib.parse.urlparse(str(url or ""))
        if parsed.scheme not in ("http", "https"):
            return False
        return config.is_chat_host(parsed.hostname or "")

    @classmethod
    def create(cls, *, page: PageSession, config: TabContextConfig) -> ChatAppHandler:
        runtime = ChatRuntime.for_storage(ledger_storage(config, page), settings=ChatSettings.from_config(config))
        return cls(CdpChatDom(page), runtime, config)

    def actions(self) -> list[str]:
        return sorted(self._actions)

    # ------------------------------------------------------------------
    # context

    def collect_context(self, *, text_limit: int | None = None) -> dict[str, Any]:
        try:
            with self._lock:
                return self.collector.collect(text_limit)
        except Exception as exc:  # noqa: BLE001
            logger.warning("chat context failed: %s", exc)
            return {
                "site": self.name,
                "url": "",
                "title": "",
                "description": "",
                "textExcerpt": "",
                "details": {"error": str(exc) or exc.__class__.__name__},
            }

    def signature(self) -> str:
        return context_signature(self.collect_context())

    def observe_context_changes(self, on_change: ChangeCallback) -> Disposer:
        # Each listener compares against its own baseline, taken at registration.
        last = {"signature": self.signature()}

        def changed(reason: str) -> bool:
            signature = self.signature()
            if signature == last["signature"]:
                return False
            logger.debug("context changed (%s): %s", reason, signature)
            last["signature"] = signature
            return True

        def read_signals() -> dict[str, Any]:
            with self._lock:
                return self.dom.change_signals()

        observer = ChangeObserver(
            read_signals=read_signals,
            evaluate=changed,
            on_change=on_change,
            prefix=self.name,
            debounce=self.config.debounce,
            heartbeat=self.config.heartbeat,
            clock=self.observer_clock,
        )
        self._observers.append(observer)
        observer.start()

        def dispose() -> None:
            observer.dispose()
            with suppress(ValueError):
                self._observers.remove(observer)

        return dispose

    def close(self) -> None:
        for observer in list(self._observers):
            observer.dispose()
        self._observers.clear()

    # ------------------------------------------------------------------
    # actions

    def run_action(self, action: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
        name = str(action or "").strip()
        handler = self._actions.get(name)
        if handler is None:
            return {
                "ok": False,
                "error": f"Unknown chat action: {name or '<empty>'}",
                "details": {"available": self.actions()},
            }
        params = args if isinstance(args, dict) else {}
        try:
            with self._lock:
                return handler(params)
        except SiteHandlerError as exc:
            logger.info("action_error action=%s reason=%s", exc.action, exc.reason)
            return exc.to_result()
        except Exception as exc:  # noqa: BLE001
            logger.exception("chat action %s failed", name)
            return {"ok": False, "error": str(exc) or exc.__class__.__name__}

    def _get_my_number(self, args: dict[str, Any]) -> dict[str, Any]:
        number = read_my_number(self.dom)
        return {"ok": True, "result": {"myNumber": number, "found": bool(number)}}

    def _get_current_chat(self, args: dict[str, Any]) -> dict[str, Any]:
        scrape = scrape_messages(self.dom, self.runtime.settings.message_limit)
        chat = read_current_chat(self.dom, scrape.messages)
        last_id = scrape.messages[-1].id if scrape.messages else ""
        return {"ok": True, "result": {**chat.to_dict(), "lastMessageId": last_id, "isOpen": bool(chat.title)}}

    def _read_messages(self, args: dict[str, Any]) -> dict[str, Any]:
        settings = self.runtime.settings
        limit = _limit(args.get("limit"), settings.message_limit, 500)
        snap = self.collector.snapshot(message_limit=limit, inbox_limit=1)
        return {
            "ok": True,
            "result": {
                "chat": snap.chat.to_dict(),
                "messages": [m.to_dict() for m in snap.messages],
                "sync": snap.sync.to_dict(),
                "scrape": snap.scrape.diagnostics(),
            },
        }

    def _get_inbox(self, args: dict[str, Any]) -> dict[str, Any]:
        settings = self.runtime.settings
        limit = _limit(args.get("limit"), settings.inbox_limit, 500)
        scope = normalize_scope(args.get("scope"))
        query = str(args.get("query") or "").strip()
        phone = str(args.get("phone") or "").strip()
        entries = filter_inbox(read_inbox(self.dom, limit), scope=scope)
        if query or phone:
            items = [m.to_dict() for m in rank_matches(entries, query, prefer=normalize_prefer(args.get("prefer")), phone=phone)]
        else:
            items = [e.to_dict() for e in entries]
        return {"ok": True, "result": {"scope": scope, "query": query, "count": len(items), "items": items}}

    def _send_message(self, args: dict[str, Any]) -> dict[str, Any]:
        return self.executor.send_message(
            args.get("text", args.get("message")),
            expected_phone=args.get("expectedPhone") or args.get("phone") or "",
            dedupe_window=_seconds(args.get("dedupeWindow")),
        )

    def _open_chat(self, args: dict[str, Any]) -> dict[str, Any]:
        return self.executor.open_chat(
            query=args.get("query") or args.get("title") or args.get("name") or "",
            phone=args.get("phone") or "",
            chat_index=args.get("chatIndex"),
            prefer=args.get("prefer") or "",
        )

    def _open_and_send(self, args: dict[str, Any]) -> dict[str, Any]:
        return self.executor.open_chat_and_send(
            args.get("text", args.get("message")),
            query=args.get("query") or args.get("title") or args.get("name") or "",
            phone=args.get("phone") or "",
            chat_index=args.get("chatIndex"),
            prefer=args.get("prefer") or "",
            dedupe_window=_seconds(args.get("dedupeWindow")),
        )

    def _archive_chats(self, args: dict[str, Any], *, scope: str | None = None) -> dict[str, Any]:
        return self.executor.archive_chats(
            scope=scope or args.get("scope") or "all",
            query=args.get("query") or args.get("phone") or "",
            chat_index=args.get("chatIndex"),
            limit=args.get("limit"),
            dry_run=_bool(args.get("dryRun")),
            archive_all=_bool(args.get("all")),
        )

    def _archive_groups(self, args: dict[str, Any]) -> dict[str, Any]:
        return self._archive_chats(args, scope="groups")

    def _automation_pack(self, args: dict[str, Any]) -> dict[str, Any]:
        settings = self.runtime.settings
        snap = self.collector.snapshot(
            message_limit=_limit(args.get("messageLimit"), settings.message_limit, 500),
            inbox_limit=_limit(args.get("inboxLimit"), settings.inbox_limit, 500),
        )
        result: dict[str, Any] = {
            "site": self.name,
            "url": snap.url,
            "myNumber": snap.my_number,
            "currentChat": snap.chat.to_dict(),
            "messages": [m.to_dict() for m in snap.messages],
            "inbox": [e.to_dict() for e in snap.inbox],
            "sync": snap.sync.to_dict(),
        }
        if snap.errors:
            result["errors"] = dict(snap.errors)
        return {"ok": True, "result": result}
