from __future__ import annotations

from conftest import msg_row


def test_text_rows_keep_order_role_and_native_ids() -> None:
    from tab_context.chat.scraper import parse_rows

    payload = {
        "strategy": "msg-container",
        "rows": [
            msg_row("false_34600111222@c.us_A1", "hola"),
            msg_row("true_34600111222@c.us_A2", "que tal", outgoing=True),
        ],
    }
    res = parse_rows(payload)
    assert [m.role for m in res.messages] == ["contact", "me"]
    assert [m.id for m in res.messages] == ["false_34600111222@c.us_A1", "true_34600111222@c.us_A2"]
    assert all(m.kind == "text" for m in res.messages)
    assert res.diagnostics() == {"strategy": "msg-container", "rowCount": 2, "dropped": 0}


def test_fallback_ids_are_stable_across_passes() -> None:
    from tab_context.chat.scraper import parse_rows

    rows = [msg_row("", "hola", timeLabel="10:31"), msg_row("", "hola", timeLabel="10:31")]
    first = parse_rows({"rows": rows})
    second = parse_rows({"rows": [dict(r) for r in rows]})
    assert [m.id for m in first.messages] == [m.id for m in second.messages]
    # Same content at different positions still gets distinct ids.
    assert first.messages[0].id != first.messages[1].id
    assert first.messages[0].id.startswith("contact-")


def test_audio_row_synthesizes_text_and_filters_player_chrome() -> None:
    from tab_context.chat.scraper import parse_row

    raw = msg_row("a1", "", hasAudio=True, labels=["Play", "Reproducir mensaje de voz", "0:12"], duration="0:12")
    message = parse_row(raw, 0)
    assert message is not None
    assert message.kind == "audio"
    assert message.text == "Mensaje de voz (0:12)"
    assert message.enriched == {"audioDuration": "0:12"}


def test_audio_transcript_becomes_text() -> None:
    from tab_context.chat.scraper import parse_row

    raw = msg_row("a2", "", hasAudio=True, labels=["Pausar", "Nos vemos a las cinco en la plaza"])
    message = parse_row(raw, 0)
    assert message is not None
    assert message.enriched["transcript"] == "Nos vemos a las cinco en la plaza"
    assert message.text == "Nos vemos a las cinco en la plaza"


def test_document_and_image_enrichment() -> None:
    from tab_context.chat.scraper import parse_row

    doc = parse_row(msg_row("d1", "", hasDocument=True, fileName="factura.pdf"), 0)
    assert doc is not None
    assert doc.kind == "document"
    assert doc.text == "Documento: factura.pdf"
    assert doc.enriched["fileName"] == "factura.pdf"

    image = parse_row(msg_row("i1", "", hasImage=True, imageAlt="Recibo del taller"), 1)
    assert image is not None
    assert image.kind == "image"
    assert image.enriched["ocrText"] == "Recibo del taller"
    assert image.text == "Recibo del taller"

    captioned = parse_row(msg_row("i2", "mira esto", hasImage=True, hasCaption=True, captionText="mira esto"), 2)
    assert captioned is not None
    assert captioned.kind == "image"
    assert captioned.text == "mira esto"
    assert captioned.enriched["mediaCaption"] == "mira esto"


def test_kind_priority_audio_over_image() -> None:
    from tab_context.chat.scraper import classify_kind

    assert classify_kind({"hasAudio": True, "hasImage": True}, "") == "audio"
    assert classify_kind({"hasSticker": True, "hasDocument": True}, "") == "sticker"
    assert classify_kind({"hasCaption": True, "captionText": "hi"}, "hi") == "media_caption"
    assert classify_kind({}, "hi") == "text"
    assert classify_kind({"hasOtherMedia": True}, "") == "unknown"
    assert classify_kind({}, "") == "empty"


def test_rows_without_signal_are_dropped() -> None:
    from tab_context.chat.scraper import parse_rows

    rows = [
        msg_row("x1", ""),
        msg_row("x2", "", hasImage=True, looksLikeMessage=False),
        {"error": "detached"},
        "not a row",
        msg_row("x3", "real"),
    ]
    res = parse_rows({"strategy": "data-id", "rows": rows})
    assert [m.id for m in res.messages] == ["x3"]
    assert res.dropped == 4
    assert res.row_count == 5


def test_group_author_and_timestamp_from_pre_plain() -> None:
    from tab_context.chat.scraper import parse_pre_plain, parse_row

    assert parse_pre_plain("[10:31, 3/12/2024] Ana Gomez: ") == ("10:31, 3/12/2024", "Ana Gomez")
    assert parse_pre_plain("") == ("", "")

    contact = parse_row(msg_row("g1", "hola grupo", prePlain="[10:31, 3/12/2024] Ana: "), 0)
    assert contact is not None
    assert contact.author == "Ana"
    assert contact.timestamp == "10:31, 3/12/2024"

    mine = parse_row(msg_row("g2", "hola", outgoing=True, prePlain="[10:32, 3/12/2024] Yo: "), 1)
    assert mine is not None
    assert mine.author == ""


def test_cap_keeps_the_most_recent_tail() -> None:
    from tab_context.chat.scraper import parse_rows

    rows = [msg_row(f"m{i}", f"text {i}") for i in range(100)]
    res = parse_rows({"rows": rows}, limit=80)
    assert len(res.messages) == 80
    assert res.messages[0].id == "m20"
    assert res.messages[-1].id == "m99"


def test_scrape_messages_reads_through_dom(dom) -> None:
    from tab_context.chat.scraper import scrape_messages

    dom.rows = [msg_row("m1", "uno"), msg_row("m2", "dos", outgoing=True)]
    res = scrape_messages(dom, 1)
    assert [m.id for m in res.messages] == ["m2"]
    assert res.messages[0].to_dict()["role"] == "me"
