"""Durable key-value backends for small JSON records.

Design
- One JSON document per key.
- Atomic writes: write temp file then replace.
- Best-effort reads: missing or corrupt data reads as None (fail-soft).
"""

from __future__ import annotations

import json
import os
import re
import shutil
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .page import PageSession


class KeyValueStorage(Protocol):
    def read(self, key: str) -> Any: ...

    def write(self, key: str, value: Any) -> None: ...


class MemoryStorage:
    def __init__(self) -> None:
        self.items: dict[str, str] = {}
        self.writes = 0

    def read(self, key: str) -> Any:
        raw = self.items.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def write(self, key: str, value: Any) -> None:
        self.items[key] = json.dumps(value, ensure_ascii=True, sort_keys=True)
        self.writes += 1


_UNSAFE_KEY_RE = re.compile(r"[^A-Za-z0-9._-]+")


class JsonFileStorage:
    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        name = _UNSAFE_KEY_RE.sub("_", str(key or "").strip()) or "default"
        return self.directory / f"{name}.json"

    def read(self, key: str) -> Any:
        p = self.path_for(key)
        try:
            if not p.exists() or not p.is_file():
                return None
            return json.loads(p.read_text(encoding="utf-8", errors="replace"))
        except Exception:
            return None

    def write(self, key: str, value: Any) -> None:
        p = self.path_for(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(value, ensure_ascii=True, indent=2, sort_keys=True)

        tmp = p.with_suffix(p.suffix + ".tmp")
        bak = p.with_suffix(p.suffix + ".bak")
        try:
            if p.exists() and p.is_file():
                shutil.copyfile(p, bak)
        except OSError:
            # Backup is best-effort.
            pass

        tmp.write_text(text, encoding="utf-8")
        with suppress(Exception):
            os.chmod(tmp, 0o600)
        tmp.replace(p)


_LS_READ_JS = """
(() => {
  try {
    return window.localStorage.getItem(__KEY__);
  } catch (e) {
    return null;
  }
})()
"""

_LS_WRITE_JS = """
(() => {
  window.localStorage.setItem(__KEY__, __VALUE__);
  return true;
})()
"""


class PageLocalStorage:
    """Stores records in the page's own localStorage (survives reloads of that origin)."""

    def __init__(self, page: PageSession) -> None:
        self.page = page

    def read(self, key: str) -> Any:
        try:
            raw = self.page.call(_LS_READ_JS, key=key)
        except Exception:
            return None
        if not isinstance(raw, str) or not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def write(self, key: str, value: Any) -> None:
        self.page.call(_LS_WRITE_JS, key=key, value=json.dumps(value, ensure_ascii=True))
