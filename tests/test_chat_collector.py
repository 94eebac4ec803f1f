from __future__ import annotations

from conftest import CONTACT, msg_row


def test_channel_identity_priority() -> None:
    from tab_context.chat.collector import resolve_channel_identity
    from tab_context.chat.models import Message

    messages = [Message(id=f"false_{CONTACT}_A1", role="contact", text="hola")]
    assert resolve_channel_identity(messages, "+34 600", "Ana").channel_id == CONTACT
    assert resolve_channel_identity([], "+34 600 111 222", "Ana").channel_id == "phone:34600111222"
    by_title = resolve_channel_identity([], "", "  José  ")
    assert (by_title.channel_id, by_title.source) == ("title:jose", "title")
    assert not resolve_channel_identity([], "", "")


def test_chat_phone_resolution_order(dom) -> None:
    from tab_context.chat.collector import read_current_chat

    dom.header = {"title": "Ana", "subtitle": "+34 611 222 333", "breadcrumb": "", "urlPhone": "34699000111"}
    assert read_current_chat(dom).phone == "34699000111"

    dom.header = {"title": "Ana", "subtitle": "+34 611 222 333", "breadcrumb": "tel 34 622 333 444"}
    chat = read_current_chat(dom)
    assert chat.phone == "+34611222333"
    assert chat.key == "+34611222333"
    assert chat.type == "direct"


def test_current_chat_takes_phone_from_message_channel(dom) -> None:
    from tab_context.chat.collector import read_current_chat
    from tab_context.chat.scraper import scrape_messages

    dom.rows = [msg_row(f"false_{CONTACT}_A1", "hola")]
    chat = read_current_chat(dom, scrape_messages(dom).messages)
    assert chat.channel_id == CONTACT
    assert chat.channel_source == "message"
    assert chat.phone == "34600111222"

    dom.header = {"title": "Familia"}
    dom.rows = [msg_row("false_120363000@g.us_B1_34611@c.us", "hola")]
    group = read_current_chat(dom, scrape_messages(dom).messages)
    assert group.type == "group"
    assert group.key == "Familia"


def test_my_number_from_storage_keys(dom) -> None:
    from tab_context.chat.collector import read_my_number

    assert read_my_number(dom) == ""
    dom.storage = {"some-wid-cache": '{"user": "34600999888"}'}
    assert read_my_number(dom) == "34600999888"
    dom.storage["last-wid-md"] = '"34611000111:12@c.us"'
    assert read_my_number(dom) == "34611000111"


def test_collect_is_idempotent_and_reports_sync(dom, runtime) -> None:
    from tab_context.chat.collector import ContextCollector

    dom.rows = [
        msg_row(f"false_{CONTACT}_A1", "hola"),
        msg_row(f"true_{CONTACT}_A2", "buenas", outgoing=True),
        msg_row("", "", hasAudio=True, duration="0:07"),
    ]
    collector = ContextCollector(dom, runtime)
    first = collector.collect()
    second = collector.collect()

    ids_first = [m["id"] for m in first["details"]["messages"]]
    ids_second = [m["id"] for m in second["details"]["messages"]]
    assert ids_first == ids_second
    assert len(ids_first) == 3

    assert first["site"] == "chat"
    assert first["details"]["sync"]["missingMessageCount"] == 3
    assert first["details"]["sync"]["isLastMessageSynced"] is False
    assert second["details"]["sync"]["isLastMessageSynced"] is True
    assert first["textExcerpt"].splitlines() == [
        "Contacto: hola",
        "Yo: buenas",
        "Contacto: Mensaje de voz (0:07)",
    ]


def test_signature_ignores_rerenders_but_sees_new_messages(dom, runtime) -> None:
    from tab_context.chat.collector import ContextCollector, context_signature

    dom.rows = [msg_row(f"false_{CONTACT}_A1", "hola", timeLabel="10:31")]
    collector = ContextCollector(dom, runtime)
    collector.collect()
    base = context_signature(collector.collect())

    dom.rows[0]["timeLabel"] = "10:31 "
    dom.signals["seq"] += 5
    assert context_signature(collector.collect()) == base

    dom.rows.append(msg_row(f"false_{CONTACT}_A2", "sigues?"))
    changed = collector.collect()
    assert context_signature(changed) != base
    # Re-collecting settles the sync counters, which changes the signature once more.
    settled = context_signature(collector.collect())
    assert settled == context_signature(collector.collect())


def test_chat_switch_is_reported_as_transition(dom, runtime) -> None:
    from tab_context.chat.collector import ContextCollector

    dom.add_chat("Ana", channel=CONTACT, rows=[msg_row(f"false_{CONTACT}_A1", "hola")])
    dom.add_chat("Luis", channel="34655000111@c.us", rows=[msg_row("false_34655000111@c.us_B1", "ey")])
    dom.open("Ana")
    collector = ContextCollector(dom, runtime)
    assert "transition" not in collector.collect()["details"]

    dom.open("Luis")
    details = collector.collect()["details"]
    assert details["transition"]["from"]["channelId"] == CONTACT
    assert details["transition"]["to"]["channelId"] == "34655000111@c.us"


def test_failing_part_degrades_only_that_part(dom, runtime) -> None:
    from tab_context.chat.collector import ContextCollector

    def broken():
        raise RuntimeError("inbox pane detached")

    dom.read_inbox_rows = broken
    dom.rows = [msg_row(f"false_{CONTACT}_A1", "hola")]
    context = ContextCollector(dom, runtime).collect(text_limit=50)
    assert context["details"]["errors"] == {"inbox": "inbox pane detached"}
    assert context["details"]["inbox"] == []
    assert len(context["details"]["messages"]) == 1
