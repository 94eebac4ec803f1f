from __future__ import annotations

from typing import Any

import pytest

CONTACT = "34600111222@c.us"


def msg_row(data_id: str = "", text: str = "", *, outgoing: bool = False, **extra: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "dataId": data_id,
        "outgoing": outgoing,
        "textFragments": [text] if text else [],
        "prePlain": "",
        "timeLabel": "",
        "labels": [],
        "looksLikeMessage": True,
    }
    row.update(extra)
    return row


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


DEFAULT_MENU = ["Archive chat", "Mute notifications", "Delete chat"]


class FakeChatDom:
    """In-memory chat page implementing the ChatDom port."""

    def __init__(self) -> None:
        self.strategy = "msg-container"
        self.channel = CONTACT
        self.rows: list[dict[str, Any]] = []
        self.header: dict[str, Any] = {"title": "Ana", "subtitle": "", "breadcrumb": "", "urlPhone": "", "open": True}
        self.inbox: list[dict[str, Any]] = []
        self.chats: dict[str, dict[str, Any]] = {}
        self.storage: dict[str, Any] = {}
        self.meta: dict[str, Any] = {"url": "https://web.whatsapp.com/", "title": "WhatsApp"}
        self.signals: dict[str, Any] = {"seq": 0, "hash": "", "visibility": "visible", "focus": 0}

        self.composer_found = True
        self.composer = ""
        self.native_insert = True
        self.send_button_found = True
        self.send_enabled = True
        self.enter_sends = True
        self.deliver = True
        self.open_switches = True
        self.row_menu_button = True
        self.menus: dict[str, list[str]] = {}
        self.menu_for: str | None = None
        self.archived: list[str] = []

        self.calls: list[str] = []
        self._seq = 0

    # -- setup helpers

    def add_chat(self, title: str, *, channel: str = "", phone_in_title: bool = False, rows=None, group=False):
        self.inbox.append(
            {
                "title": title,
                "previewCandidates": [],
                "dataId": channel,
                "groupHint": group,
                "unread": 0,
            }
        )
        self.chats[title] = {"channel": channel, "rows": list(rows or [])}

    def open(self, title: str) -> None:
        chat = self.chats[title]
        self.header = {**self.header, "title": title}
        self.channel = chat["channel"]
        self.rows = chat["rows"]

    # -- readers

    def read_message_rows(self) -> dict[str, Any]:
        self.calls.append("read_message_rows")
        return {"strategy": self.strategy, "rows": [dict(r) for r in self.rows]}

    def read_chat_header(self) -> dict[str, Any]:
        return dict(self.header)

    def read_inbox_rows(self) -> list[dict[str, Any]]:
        return [{**r, "index": i} for i, r in enumerate(self.inbox)]

    def read_identity_storage(self) -> dict[str, Any]:
        return dict(self.storage)

    def page_meta(self) -> dict[str, Any]:
        return dict(self.meta)

    def change_signals(self) -> dict[str, Any]:
        return dict(self.signals)

    # -- actuators

    def _ready(self) -> bool:
        return self.send_button_found and self.send_enabled and bool(self.composer)

    def _deliver(self) -> None:
        if not self.deliver or not self.composer:
            return
        self._seq += 1
        self.rows.append(msg_row(f"true_{self.channel}_OUT{self._seq}", self.composer, outgoing=True))
        self.composer = ""

    def composer_state(self) -> dict[str, Any]:
        return {"found": self.composer_found, "text": self.composer}

    def focus_composer(self) -> bool:
        self.calls.append("focus_composer")
        return self.composer_found

    def insert_text_native(self, text: str) -> bool:
        self.calls.append("insert_text_native")
        if not self.native_insert:
            return False
        self.composer += text
        return True

    def replace_composer_text(self, text: str) -> bool:
        self.calls.append("replace_composer_text")
        self.composer = text
        return True

    def send_button_state(self) -> dict[str, Any]:
        return {"found": self.send_button_found, "enabled": self._ready()}

    def click_send_button(self) -> bool:
        self.calls.append("click_send_button")
        if not self._ready():
            return False
        self._deliver()
        return True

    def press_enter(self) -> None:
        self.calls.append("press_enter")
        if self.enter_sends:
            self._deliver()

    def click_inbox_row(self, index: int) -> bool:
        self.calls.append(f"click_inbox_row:{index}")
        if index < 0 or index >= len(self.inbox):
            return False
        if self.open_switches:
            self.open(self.inbox[index]["title"])
        return True

    def open_row_menu(self, index: int) -> bool:
        self.calls.append(f"open_row_menu:{index}")
        if not self.row_menu_button or index >= len(self.inbox):
            return False
        self.menu_for = self.inbox[index]["title"]
        return True

    def context_click_inbox_row(self, index: int) -> bool:
        self.calls.append(f"context_click_inbox_row:{index}")
        if index >= len(self.inbox):
            return False
        self.menu_for = self.inbox[index]["title"]
        return True

    def read_menu_actions(self) -> list[dict[str, Any]]:
        if self.menu_for is None:
            return []
        labels = self.menus.get(self.menu_for, DEFAULT_MENU)
        return [{"index": i, "label": label} for i, label in enumerate(labels)]

    def click_menu_action(self, index: int) -> bool:
        self.calls.append(f"click_menu_action:{index}")
        if self.menu_for is None:
            return False
        labels = self.menus.get(self.menu_for, DEFAULT_MENU)
        label = labels[index].lower()
        if "archive" in label and "unarchive" not in label:
            self.archived.append(self.menu_for)
            self.inbox = [r for r in self.inbox if r["title"] != self.menu_for]
        self.menu_for = None
        return True

    def dismiss_menu(self) -> None:
        self.calls.append("dismiss_menu")
        self.menu_for = None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dom() -> FakeChatDom:
    return FakeChatDom()


@pytest.fixture
def runtime(clock: FakeClock):
    from tab_context.chat.state import ChatRuntime

    return ChatRuntime.in_memory(clock=clock, sleep=clock.sleep)
