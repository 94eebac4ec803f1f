from __future__ import annotations

import pytest
from conftest import CONTACT, msg_row


def _executor(dom, runtime):
    from tab_context.chat.actions import ChatActionExecutor

    return ChatActionExecutor(dom, runtime)


def _inbox(dom) -> None:
    dom.header = {"title": "Luis", "subtitle": "", "breadcrumb": "", "urlPhone": ""}
    dom.rows = []
    dom.add_chat("Ana Gomez", channel="34611000222@c.us", rows=[msg_row("false_34611000222@c.us_G1", "hey")])
    dom.add_chat("Ana", channel=CONTACT, rows=[msg_row(f"false_{CONTACT}_A1", "hola")])
    dom.add_chat("Familia", channel="120363000@g.us", group=True)
    dom.add_chat("Trabajo", channel="120363111@g.us", group=True)


def test_open_picks_exact_title_and_confirms(dom, runtime) -> None:
    _inbox(dom)
    res = _executor(dom, runtime).open_chat(query="ana")
    assert res["ok"] is True
    result = res["result"]
    assert result["entry"]["title"] == "Ana"
    assert result["confirmed"] is True
    assert result["alreadyOpen"] is False
    assert result["chat"]["phone"] == "34600111222"
    assert [c["title"] for c in result["candidates"]] == ["Ana", "Ana Gomez"]
    assert "click_inbox_row:1" in dom.calls


def test_open_already_open_chat_does_not_click(dom, runtime) -> None:
    _inbox(dom)
    dom.open("Ana")
    res = _executor(dom, runtime).open_chat(phone="+34600111222")
    assert res["result"]["alreadyOpen"] is True
    assert not [c for c in dom.calls if c.startswith("click_inbox_row")]


def test_open_by_index_and_unconfirmed_open(dom, runtime) -> None:
    _inbox(dom)
    dom.open_switches = False
    res = _executor(dom, runtime).open_chat(chat_index=0)
    assert res["ok"] is True
    assert res["result"]["entry"]["matchedBy"] == "index"
    assert res["result"]["confirmed"] is False
    assert res["result"]["wait"]["ok"] is False


def test_open_unknown_chat_reports_candidates(dom, runtime) -> None:
    from tab_context.errors import SiteHandlerError

    _inbox(dom)
    executor = _executor(dom, runtime)
    with pytest.raises(SiteHandlerError) as excinfo:
        executor.open_chat(query="zzz")
    assert excinfo.value.details["candidates"] == 4

    with pytest.raises(SiteHandlerError):
        executor.open_chat(chat_index=9)
    with pytest.raises(SiteHandlerError):
        executor.open_chat()


def test_open_and_send(dom, runtime) -> None:
    _inbox(dom)
    res = _executor(dom, runtime).open_chat_and_send("nos vemos", query="Ana")
    assert res["ok"] is True
    assert res["result"]["sent"] is True
    assert res["result"]["open"]["confirmed"] is True
    assert dom.chats["Ana"]["rows"][-1]["textFragments"] == ["nos vemos"]


def test_open_and_send_fails_closed_when_open_is_unconfirmed(dom, runtime) -> None:
    _inbox(dom)
    dom.open_switches = False
    res = _executor(dom, runtime).open_chat_and_send("hola a todos", query="Familia")
    assert res["ok"] is False
    assert res["result"]["reason"] == "open_unconfirmed"
    assert "insert_text_native" not in dom.calls


def test_menu_label_classification() -> None:
    from tab_context.chat.actions import classify_menu_label

    assert classify_menu_label("Archive chat") == "archive"
    assert classify_menu_label("Archivar chat") == "archive"
    assert classify_menu_label("Unarchive chat") == "unarchive"
    assert classify_menu_label("Desarchivar chat") == "unarchive"
    assert classify_menu_label("Archived chats") == ""
    assert classify_menu_label("Mute notifications") == ""


def test_archive_groups(dom, runtime) -> None:
    _inbox(dom)
    res = _executor(dom, runtime).archive_chats(scope="groups")
    assert res["ok"] is True
    result = res["result"]
    assert result["matched"] == 2
    assert result["archived"] == 2
    assert result["failed"] == 0
    assert dom.archived == ["Familia", "Trabajo"]
    assert all(item["confirmed"] for item in result["items"])
    assert [r["title"] for r in dom.inbox] == ["Ana Gomez", "Ana"]


def test_archive_dry_run_does_not_touch_the_page(dom, runtime) -> None:
    _inbox(dom)
    res = _executor(dom, runtime).archive_chats(query="ana", dry_run=True)
    assert res["result"]["dryRun"] is True
    assert [item["title"] for item in res["result"]["items"]] == ["Ana Gomez", "Ana"]
    assert dom.archived == []
    assert not [c for c in dom.calls if c.startswith(("open_row_menu", "context_click"))]


def test_archive_reports_already_archived_and_uses_context_menu(dom, runtime) -> None:
    _inbox(dom)
    dom.row_menu_button = False
    dom.menus["Familia"] = ["Unarchive chat", "Delete chat"]
    res = _executor(dom, runtime).archive_chats(scope="groups")
    items = {item["title"]: item for item in res["result"]["items"]}
    assert items["Familia"]["alreadyArchived"] is True
    assert items["Familia"]["archived"] is False
    assert items["Trabajo"]["menuVia"] == "contextmenu"
    assert res["result"]["alreadyArchived"] == 1
    assert res["result"]["archived"] == 1
    assert "dismiss_menu" in dom.calls


def test_archive_missing_action_is_a_per_item_failure(dom, runtime) -> None:
    _inbox(dom)
    dom.menus["Trabajo"] = ["Mute notifications"]
    res = _executor(dom, runtime).archive_chats(scope="groups")
    assert res["ok"] is False
    assert res["result"]["failed"] == 1
    failed = [item for item in res["result"]["items"] if item.get("error")]
    assert failed[0]["details"]["labels"] == ["Mute notifications"]


def test_archive_refuses_whole_inbox(dom, runtime) -> None:
    from tab_context.errors import SiteHandlerError

    _inbox(dom)
    with pytest.raises(SiteHandlerError):
        _executor(dom, runtime).archive_chats()
    res = _executor(dom, runtime).archive_chats(archive_all=True, limit=1)
    assert res["result"]["archived"] == 1
    assert dom.archived == ["Ana Gomez"]
