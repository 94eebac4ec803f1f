"""Low-level Chrome DevTools Protocol transport.

- CdpConnection: WebSocket connection with id-correlated responses
- list_targets / pick_target: discover page targets on the debugging port
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.parse
from contextlib import suppress
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen

import websocket

from .config import TabContextConfig

logger = logging.getLogger("tab_context.cdp")


class CdpError(Exception):
    pass


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws_url: str, timeout: float = 5.0):
        try:
            self.ws = websocket.create_connection(ws_url, timeout=timeout, suppress_origin=True)
        except Exception as exc:  # noqa: BLE001
            raise CdpError(f"Cannot connect to {ws_url}: {exc}") from exc
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        # One request in flight at a time; the observer thread shares the socket.
        self._lock = threading.RLock()

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send CDP command and wait for response."""
        with self._lock:
            msg_id = self._next_id
            self._next_id += 1

            msg: dict[str, Any] = {"id": msg_id, "method": method}
            if params:
                msg["params"] = params

            try:
                self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
                self.ws.send(json.dumps(msg))
            except Exception as exc:  # noqa: BLE001
                raise CdpError(str(exc)) from exc

            return self._recv_until(msg_id)

    def send_many(self, commands: list[dict[str, Any]]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for cmd in commands:
            method = cmd.get("method")
            if not isinstance(method, str) or not method.strip():
                raise CdpError("send_many: each command must include a non-empty 'method'")
            params = cmd.get("params") if isinstance(cmd.get("params"), dict) else None
            out.append(self.send(method, params))
        return out

    def _recv_until(self, expected_id: int) -> dict[str, Any]:
        """Wait for response with specific ID."""
        deadline = time.time() + self.timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise CdpError("CDP response timed out")

            # Keep the socket timeout small so the deadline is enforced here.
            try:
                self.ws.settimeout(min(0.5, remaining))
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                msg = str(exc).lower()
                if isinstance(exc, TimeoutError) or "timed out" in msg:
                    continue
                raise CdpError(str(exc)) from exc

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue

            if isinstance(data, dict) and data.get("id") == expected_id:
                if "error" in data:
                    raise CdpError(str(data["error"]))
                result = data.get("result")
                return result if isinstance(result, dict) else {}

    def close(self) -> None:
        with suppress(Exception):
            self.ws.close()


def _http_json(url: str, timeout: float) -> Any:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise CdpError("Only http/https are supported")
    req = Request(url, headers={"User-Agent": "tab-context/1.0"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            body = resp.read(2_000_000)
    except (TimeoutError, URLError, OSError) as exc:
        raise CdpError(str(exc)) from exc
    try:
        return json.loads(body.decode(errors="replace"))
    except json.JSONDecodeError as exc:
        raise CdpError(f"Invalid JSON from {url}") from exc


def list_targets(config: TabContextConfig) -> list[dict[str, Any]]:
    """Return the page targets exposed on the debugging port."""
    data = _http_json(f"{config.cdp_base_url}/json", config.cdp_timeout)
    if not isinstance(data, list):
        return []
    return [t for t in data if isinstance(t, dict) and t.get("type") == "page" and t.get("webSocketDebuggerUrl")]


def pick_target(config: TabContextConfig, url_hint: str | None = None) -> dict[str, Any]:
    """Choose the page target whose URL contains the hint (else the first page)."""
    targets = list_targets(config)
    if not targets:
        raise CdpError(f"No page targets on {config.cdp_base_url}")

    hints = [h for h in (url_hint, config.target_hint) if h]
    hints.extend(config.chat_hosts)
    for hint in hints:
        needle = str(hint).strip().lower()
        if not needle:
            continue
        for target in targets:
            if needle in str(target.get("url") or "").lower():
                return target
    return targets[0]
