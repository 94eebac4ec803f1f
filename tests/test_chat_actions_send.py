from __future__ import annotations

import pytest
from conftest import CONTACT, msg_row

COMPOSER_CALLS = {"focus_composer", "insert_text_native", "replace_composer_text", "click_send_button", "press_enter"}


def _executor(dom, runtime):
    from tab_context.chat.actions import ChatActionExecutor

    return ChatActionExecutor(dom, runtime)


def test_send_confirms_new_outgoing_message(dom, runtime) -> None:
    res = _executor(dom, runtime).send_message("hola")
    assert res["ok"] is True
    result = res["result"]
    assert result["sent"] is True
    assert result["confirmed"] is True
    assert result["insertMethod"] == "native"
    assert result["dispatch"] == "button"
    assert result["messageId"] == f"true_{CONTACT}_OUT1"
    assert dom.composer == ""


def test_second_identical_send_within_window_is_suppressed(dom, runtime, clock) -> None:
    executor = _executor(dom, runtime)
    assert executor.send_message("hola")["result"]["sent"] is True

    clock.advance(1.0)
    again = executor.send_message("hola")
    assert again["ok"] is True
    assert again["result"]["sent"] is False
    assert again["result"]["duplicatePrevented"] is True
    assert again["result"]["reason"] == "duplicate_window"
    assert len([r for r in dom.rows if r["outgoing"]]) == 1


def test_identity_guard_blocks_wrong_chat_without_touching_composer(dom, runtime) -> None:
    dom.header["urlPhone"] = "34699999999"
    res = _executor(dom, runtime).send_message("hola", expected_phone="+34600111222")
    assert res["ok"] is False
    assert res["result"]["reason"] == "phone_mismatch"
    assert res["result"]["currentPhone"] == "34699999999"
    assert COMPOSER_CALLS.isdisjoint(dom.calls)
    assert dom.composer == ""


def test_identity_guard_reports_undetected_phone(dom, runtime, clock) -> None:
    res = _executor(dom, runtime).send_message("hola", expected_phone="+34600111222")
    assert res["result"]["reason"] == "phone_not_detected"
    assert COMPOSER_CALLS.isdisjoint(dom.calls)
    # Waited for the identity timeout on the fake clock.
    assert clock.now - 1000.0 >= runtime.settings.identity_timeout - 1e-6


def test_identity_guard_accepts_suffix_match(dom, runtime) -> None:
    dom.header["urlPhone"] = "600111222"
    res = _executor(dom, runtime).send_message("hola", expected_phone="+34 600 111 222")
    assert res["ok"] is True
    assert res["result"]["sent"] is True


def test_text_already_sent_last_is_not_resent(dom, runtime) -> None:
    dom.rows = [msg_row(f"false_{CONTACT}_A1", "hola?"), msg_row(f"true_{CONTACT}_A2", "Hola", outgoing=True)]
    res = _executor(dom, runtime).send_message("hola")
    assert res["ok"] is True
    assert res["result"]["reason"] == "already_present"
    assert res["result"]["sent"] is False
    assert COMPOSER_CALLS.isdisjoint(dom.calls)


def test_text_sent_before_a_reply_is_sent_again(dom, runtime) -> None:
    dom.rows = [msg_row(f"true_{CONTACT}_A1", "hola", outgoing=True), msg_row(f"false_{CONTACT}_A2", "hola")]
    res = _executor(dom, runtime).send_message("hola")
    assert res["result"]["sent"] is True


def test_falls_back_to_content_replacement(dom, runtime) -> None:
    dom.native_insert = False
    res = _executor(dom, runtime).send_message("hola")
    assert res["result"]["insertMethod"] == "replace"
    assert "replace_composer_text" in dom.calls
    assert res["result"]["sent"] is True


def test_falls_back_to_enter_when_send_control_missing(dom, runtime) -> None:
    dom.send_button_found = False
    res = _executor(dom, runtime).send_message("hola")
    assert res["ok"] is True
    assert res["result"]["dispatch"] == "enter"
    assert "press_enter" in dom.calls


def test_enter_then_send_control(dom, runtime) -> None:
    dom.send_enabled = False
    dom.enter_sends = False
    original = dom.press_enter

    def press_enter() -> None:
        original()
        dom.send_enabled = True

    dom.press_enter = press_enter
    res = _executor(dom, runtime).send_message("hola")
    assert res["result"]["dispatch"] == "enter+button"
    assert res["result"]["sent"] is True


def test_unsent_text_left_in_composer_is_a_failure(dom, runtime) -> None:
    dom.deliver = False
    res = _executor(dom, runtime).send_message("hola")
    assert res["ok"] is False
    assert res["result"]["reason"] == "still_in_composer"
    assert res["result"]["confirmed"] is False


def test_cleared_but_unconfirmed_send_blocks_immediate_retry(dom, runtime) -> None:
    dom._deliver = lambda: setattr(dom, "composer", "")
    executor = _executor(dom, runtime)
    res = executor.send_message("hola")
    assert res["ok"] is False
    assert res["result"]["reason"] == "not_confirmed"
    assert res["result"]["composerCleared"] is True

    retry = executor.send_message("hola")
    assert retry["result"]["duplicatePrevented"] is True


def test_missing_composer_raises_structured_error(dom, runtime) -> None:
    from tab_context.errors import SiteHandlerError

    dom.composer_found = False
    with pytest.raises(SiteHandlerError) as excinfo:
        _executor(dom, runtime).send_message("hola")
    assert excinfo.value.reason == "Message composer not found"
    assert excinfo.value.to_result()["ok"] is False


def test_empty_text_is_rejected(dom, runtime) -> None:
    from tab_context.errors import SiteHandlerError

    with pytest.raises(SiteHandlerError):
        _executor(dom, runtime).send_message("   ")
