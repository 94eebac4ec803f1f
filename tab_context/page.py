"""Page session: evaluate JavaScript and synthesize input on one tab."""

from __future__ import annotations

import json
import logging
from typing import Any

from .cdp import CdpConnection, CdpError, pick_target
from .config import TabContextConfig

logger = logging.getLogger("tab_context.page")

_KEY_CODES = {
    "Enter": 13,
    "Tab": 9,
    "Escape": 27,
    "Backspace": 8,
}

# Installed once per document. Counts DOM mutations and records
# visibility/hash/focus so a poller can detect change cheaply.
CHANGE_SIGNALS_JS = r"""
(() => {
  const KEY = '__tabContextSignals';
  let state = window[KEY];
  if (!state || state.doc !== document) {
    state = { doc: document, seq: 0, hash: location.hash, visibility: document.visibilityState, focus: 0 };
    window[KEY] = state;
    try {
      const observer = new MutationObserver(() => { state.seq += 1; });
      observer.observe(document.documentElement || document, { childList: true, subtree: true, characterData: true });
    } catch (e) {
      // ignore
    }
    window.addEventListener('hashchange', () => { state.hash = location.hash; });
    document.addEventListener('visibilitychange', () => { state.visibility = document.visibilityState; });
    window.addEventListener('focus', () => { state.focus += 1; });
  }
  return {
    seq: state.seq,
    hash: String(location.hash || ''),
    visibility: String(document.visibilityState || ''),
    focus: state.focus,
    url: String(location.href || ''),
  };
})()
"""


class PageSession:
    """A CDP connection bound to one page target."""

    def __init__(self, conn: CdpConnection, *, target: dict[str, Any] | None = None) -> None:
        self.conn = conn
        self.target = target or {}
        self._runtime_enabled = False

    @classmethod
    def connect(cls, config: TabContextConfig, url_hint: str | None = None) -> PageSession:
        target = pick_target(config, url_hint)
        conn = CdpConnection(str(target["webSocketDebuggerUrl"]), timeout=config.cdp_timeout)
        logger.info("attached to target %s (%s)", target.get("id"), target.get("url"))
        return cls(conn, target=target)

    def close(self) -> None:
        self.conn.close()

    def evaluate(self, expression: str) -> Any:
        """Evaluate JavaScript and return the JSON value (undefined/null -> None)."""
        if not self._runtime_enabled:
            try:
                self.conn.send("Runtime.enable")
                self._runtime_enabled = True
            except CdpError:
                pass
        result = self.conn.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        if result.get("exceptionDetails"):
            details = result["exceptionDetails"]
            text = details.get("exception", {}).get("description") or details.get("text") or "evaluation failed"
            raise CdpError(str(text))
        value = result.get("result")
        if not isinstance(value, dict):
            return None
        if value.get("type") == "undefined":
            return None
        if value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value")

    def call(self, template: str, **params: Any) -> Any:
        """Evaluate `template` with `__NAME__` placeholders replaced by JSON values."""
        js = template
        for name, value in params.items():
            js = js.replace(f"__{name.upper()}__", json.dumps(value, ensure_ascii=False))
        return self.evaluate(js)

    def url(self) -> str:
        return str(self.evaluate("window.location.href") or "")

    def _mouse(self, kind: str, x: float, y: float, button: str = "none", click_count: int = 0) -> dict[str, Any]:
        return {
            "method": "Input.dispatchMouseEvent",
            "params": {"type": kind, "x": x, "y": y, "button": button, "clickCount": click_count},
        }

    def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        self.conn.send_many(
            [
                self._mouse("mousePressed", x, y, button, click_count),
                self._mouse("mouseReleased", x, y, button, click_count),
            ]
        )

    def pointer_click(self, x: float, y: float) -> None:
        """Hover then click, the sequence list rows react to."""
        self.conn.send_many(
            [
                self._mouse("mouseMoved", x, y),
                self._mouse("mousePressed", x, y, "left", 1),
                self._mouse("mouseReleased", x, y, "left", 1),
            ]
        )

    def hover(self, x: float, y: float) -> None:
        self.conn.send_many([self._mouse("mouseMoved", x, y)])

    def context_click(self, x: float, y: float) -> None:
        self.conn.send_many(
            [
                self._mouse("mouseMoved", x, y),
                self._mouse("mousePressed", x, y, "right", 1),
                self._mouse("mouseReleased", x, y, "right", 1),
            ]
        )

    def press_key(self, key: str) -> None:
        key_code = _KEY_CODES.get(key, ord(key[0].upper()) if len(key) == 1 else 0)
        base = {"key": key, "code": key, "windowsVirtualKeyCode": key_code}
        down: dict[str, Any] = {"type": "keyDown", **base}
        if key == "Enter":
            down["text"] = "\r"
        self.conn.send_many(
            [
                {"method": "Input.dispatchKeyEvent", "params": down},
                {"method": "Input.dispatchKeyEvent", "params": {"type": "keyUp", **base}},
            ]
        )

    def change_signals(self) -> dict[str, Any]:
        value = self.evaluate(CHANGE_SIGNALS_JS)
        return value if isinstance(value, dict) else {}
