"""
JSON-lines relay for the tab context host.

Reads one request per stdin line and writes one response per stdout line:

  {"id": 1, "type": "getTabContext", "textLimit": 1800}
  {"id": 2, "type": "siteAction", "site": "chat", "action": "getInbox", "args": {}}
  {"id": 3, "type": "ping"}

Change notifications are written unprompted as
{"type": "tabContextPush", "reason": ..., "context": ...}.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from typing import Any

from .cdp import CdpError
from .config import TabContextConfig
from .host import TabContextHost
from .page import PageSession

logger = logging.getLogger("tab_context")

_write_lock = threading.Lock()


def _write_message(payload: dict[str, Any]) -> None:
    line = (json.dumps(payload, ensure_ascii=False) + "\n").encode()
    with _write_lock:
        sys.stdout.buffer.write(line)
        sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Next request; None at EOF, {} for blank or unparsable lines."""
    line = sys.stdin.buffer.readline()
    if not line:
        return None
    line = line.strip()
    if not line:
        return {}
    try:
        msg = json.loads(line.decode())
    except ValueError as exc:
        logger.warning("bad request line: %s", exc)
        return {}
    return msg if isinstance(msg, dict) else {}


class Relay:
    """Routes relay requests to a `TabContextHost`."""

    def __init__(self, host: TabContextHost) -> None:
        self.host = host

    def handle(self, message: dict[str, Any]) -> dict[str, Any] | None:
        if not message:
            return None
        request_id = message.get("id")
        kind = str(message.get("type") or "")

        if kind == "ping":
            body: dict[str, Any] = {"ok": True, "pong": True}
        elif kind == "getTabContext":
            body = {"ok": True, "context": self.host.get_tab_context(message.get("textLimit"))}
        elif kind == "siteAction":
            args = message.get("args")
            body = self.host.run_site_action(
                message.get("action"), args if isinstance(args, dict) else {}, site=message.get("site") or ""
            )
        else:
            body = {"ok": False, "error": f"Unknown request type: {kind or '<empty>'}"}
        return {"id": request_id, **body}


def main() -> None:
    """Main entry point for the relay."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    config = TabContextConfig.from_env()
    try:
        page = PageSession.connect(config, config.target_hint or None)
    except CdpError as exc:
        logger.error("cannot attach to a page at %s: %s", config.cdp_base_url, exc)
        sys.exit(2)

    host = TabContextHost(page, config)
    relay = Relay(host)
    try:
        host.start(_write_message)
        while True:
            message = _read_message()
            if message is None:
                break
            response = relay.handle(message)
            if response is not None:
                _write_message(response)
    except KeyboardInterrupt:
        pass
    finally:
        host.close()
        page.close()


if __name__ == "__main__":
    main()
