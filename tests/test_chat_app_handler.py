from __future__ import annotations

from conftest import CONTACT, msg_row


def _handler(dom, runtime, **kwargs):
    from tab_context.apps.chat_app import ChatAppHandler
    from tab_context.config import TabContextConfig

    return ChatAppHandler(dom, runtime, TabContextConfig(ledger_backend="memory"), **kwargs)


def test_match_uses_configured_chat_hosts() -> None:
    from tab_context.apps.chat_app import ChatAppHandler
    from tab_context.config import TabContextConfig

    cfg = TabContextConfig()
    assert ChatAppHandler.match(url="https://web.whatsapp.com/", config=cfg)
    assert not ChatAppHandler.match(url="https://example.com/web.whatsapp.com", config=cfg)
    assert not ChatAppHandler.match(url="file:///web.whatsapp.com", config=cfg)
    custom = TabContextConfig(chat_hosts=["chat.example.org"])
    assert ChatAppHandler.match(url="https://beta.chat.example.org/inbox", config=custom)


def test_unknown_action_resolves_not_ok(dom, runtime) -> None:
    res = _handler(dom, runtime).run_action("deleteEverything", {})
    assert res["ok"] is False
    assert "deleteEverything" in res["error"]
    assert "sendMessage" in res["details"]["available"]


def test_structured_errors_and_crashes_never_escape(dom, runtime) -> None:
    handler = _handler(dom, runtime)
    res = handler.run_action("sendMessage", {"text": ""})
    assert res == {"ok": False, "error": "Message text is empty", "suggestion": "Pass a non-empty `text`"}

    def boom():
        raise RuntimeError("target closed")

    dom.read_inbox_rows = boom
    crashed = handler.run_action("getInbox", {})
    assert crashed == {"ok": False, "error": "target closed"}


def test_read_actions(dom, runtime) -> None:
    dom.storage = {"last-wid-md": '"34611000111:3@c.us"'}
    dom.rows = [msg_row(f"false_{CONTACT}_A1", "hola"), msg_row(f"true_{CONTACT}_A2", "ey", outgoing=True)]
    dom.add_chat("Familia", channel="120363000@g.us", group=True)
    dom.add_chat("Ana", channel=CONTACT)
    handler = _handler(dom, runtime)

    assert handler.run_action("getMyNumber")["result"] == {"myNumber": "34611000111", "found": True}

    current = handler.run_action("getCurrentChat")["result"]
    assert current["channelId"] == CONTACT
    assert current["lastMessageId"] == f"true_{CONTACT}_A2"

    messages = handler.run_action("getListMessages", {"limit": 1})["result"]
    assert [m["id"] for m in messages["messages"]] == [f"true_{CONTACT}_A2"]
    assert messages["sync"]["knownMessageCount"] == 1

    inbox = handler.run_action("getListInbox", {"scope": "groups"})["result"]
    assert [i["title"] for i in inbox["items"]] == ["Familia"]
    ranked = handler.run_action("getInbox", {"query": "ana"})["result"]
    assert ranked["items"][0]["matchedBy"] == "exact"

    pack = handler.run_action("getAutomationPack")["result"]
    assert pack["myNumber"] == "34611000111"
    assert pack["currentChat"]["phone"] == "34600111222"
    assert len(pack["messages"]) == 2
    assert len(pack["inbox"]) == 2


def test_send_and_archive_aliases(dom, runtime) -> None:
    dom.add_chat("Familia", channel="120363000@g.us", group=True)
    dom.add_chat("Ana", channel=CONTACT)
    handler = _handler(dom, runtime)

    sent = handler.run_action("sendMessage", {"message": "hola"})
    assert sent["ok"] is True and sent["result"]["sent"] is True

    dry = handler.run_action("archiveGroups", {"dryRun": "true"})
    assert dry["result"]["dryRun"] is True
    assert dry["result"]["scope"] == "groups"

    done = handler.run_action("archiveListChats", {"scope": "groups"})
    assert done["result"]["archived"] == 1


def test_collect_context_never_raises(dom, runtime) -> None:
    from tab_context.chat.collector import ContextCollector

    handler = _handler(dom, runtime)

    def broken(self, text_limit=None):
        raise RuntimeError("collector bug")

    handler.collector.collect = broken.__get__(handler.collector, ContextCollector)
    context = handler.collect_context()
    assert context["site"] == "chat"
    assert context["details"]["error"] == "collector bug"


def test_observer_is_quiet_until_the_chat_changes(dom, runtime, monkeypatch) -> None:
    from tab_context.observer import ChangeObserver

    monkeypatch.setattr(ChangeObserver, "start", lambda self: self.dispose)
    dom.rows = [msg_row(f"false_{CONTACT}_A1", "hola")]
    handler = _handler(dom, runtime)
    # Settle the sync ledger so collecting again changes nothing.
    handler.collect_context()
    handler.collect_context()

    first: list[str] = []
    second: list[str] = []
    handler.observe_context_changes(first.append)
    handler.observe_context_changes(second.append)
    a, b = handler._observers

    assert a.pump(0.0) == [] and b.pump(0.0) == []
    assert a.pump(2.0) == [] and b.pump(2.0) == []
    assert first == [] and second == []

    dom.rows.append(msg_row(f"false_{CONTACT}_A2", "sigues?"))
    assert a.pump(4.0) == ["chat_poll"]
    # The first listener's check does not consume the change for the second.
    assert b.pump(4.0) == ["chat_poll"]
    assert first == ["chat_poll"] and second == ["chat_poll"]


def test_observer_is_wired_and_disposed(dom, runtime) -> None:
    handler = _handler(dom, runtime)
    disposer = handler.observe_context_changes(lambda reason: None)
    keep = handler.observe_context_changes(lambda reason: None)
    assert len(handler._observers) == 2
    disposer()
    disposer()
    assert len(handler._observers) == 1
    handler.close()
    assert handler._observers == []
    keep()


def test_send_passes_dedupe_window_through(dom, runtime, clock) -> None:
    handler = _handler(dom, runtime)
    assert handler.run_action("sendMessage", {"text": "hola"})["result"]["sent"] is True

    clock.advance(10.0)
    default = handler.run_action("sendMessage", {"text": "hola"})
    assert default["result"]["reason"] == "already_present"

    clock.advance(10.0)
    widened = handler.run_action("sendMessage", {"text": "hola", "dedupeWindow": "60"})
    assert widened["result"]["reason"] == "duplicate_window"


def test_create_picks_ledger_backend(tmp_path) -> None:
    from tab_context.apps.chat_app import ledger_storage
    from tab_context.config import TabContextConfig
    from tab_context.storage import JsonFileStorage, MemoryStorage, PageLocalStorage

    assert isinstance(ledger_storage(TabContextConfig(ledger_backend="memory")), MemoryStorage)
    file_backend = ledger_storage(TabContextConfig(ledger_backend="file", data_dir=str(tmp_path)))
    assert isinstance(file_backend, JsonFileStorage)
    assert file_backend.directory == tmp_path
    assert isinstance(ledger_storage(TabContextConfig(ledger_backend="page"), page=object()), PageLocalStorage)
