from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _repo_root() -> Path:
    # tab_context/config.py -> repo root is parents[1]
    return Path(__file__).resolve().parents[1]


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


DEFAULT_CHAT_HOSTS: list[str] = ["web.whatsapp.com"]


@dataclass
class TabContextConfig:
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    cdp_timeout: float = 5.0
    target_hint: str = ""
    ledger_backend: str = "file"
    data_dir: str = field(default_factory=lambda: str(_repo_root() / "data" / "tab_context"))
    chat_hosts: list[str] = field(default_factory=lambda: list(DEFAULT_CHAT_HOSTS))
    dedupe_window: float = 6.0
    debounce: float = 0.2
    heartbeat: float = 2.0
    identity_timeout: float = 2.2
    confirm_timeout: float = 2.6
    open_timeout: float = 2.5
    message_limit: int = 80
    inbox_limit: int = 40

    @staticmethod
    def normalize_ledger_backend(raw: str | None) -> str:
        backend = (raw or "").strip().lower()
        if backend in {"page", "localstorage", "local_storage"}:
            return "page"
        if backend in {"memory", "mem", "none"}:
            return "memory"
        return "file"

    @classmethod
    def from_env(cls) -> TabContextConfig:
        hosts_raw = os.environ.get("TAB_CONTEXT_CHAT_HOSTS", "")
        hosts = [h.strip().lower() for h in hosts_raw.split(",") if h.strip()]
        data_dir = os.environ.get("TAB_CONTEXT_DATA_DIR", "")
        return cls(
            cdp_host=os.environ.get("TAB_CONTEXT_CDP_HOST", "127.0.0.1").strip() or "127.0.0.1",
            cdp_port=_env_int("TAB_CONTEXT_CDP_PORT", 9222),
            cdp_timeout=max(0.5, _env_float("TAB_CONTEXT_CDP_TIMEOUT", 5.0)),
            target_hint=os.environ.get("TAB_CONTEXT_TARGET", "").strip(),
            ledger_backend=cls.normalize_ledger_backend(os.environ.get("TAB_CONTEXT_LEDGER")),
            data_dir=expand_path(data_dir) if data_dir.strip() else str(_repo_root() / "data" / "tab_context"),
            chat_hosts=hosts or list(DEFAULT_CHAT_HOSTS),
            dedupe_window=max(0.0, _env_float("TAB_CONTEXT_DEDUPE_WINDOW", 6.0)),
            debounce=max(0.0, _env_float("TAB_CONTEXT_DEBOUNCE", 0.2)),
            heartbeat=max(0.2, _env_float("TAB_CONTEXT_HEARTBEAT", 2.0)),
            identity_timeout=max(0.1, _env_float("TAB_CONTEXT_IDENTITY_TIMEOUT", 2.2)),
            confirm_timeout=max(0.1, _env_float("TAB_CONTEXT_CONFIRM_TIMEOUT", 2.6)),
            open_timeout=max(0.1, _env_float("TAB_CONTEXT_OPEN_TIMEOUT", 2.5)),
            message_limit=max(1, _env_int("TAB_CONTEXT_MESSAGE_LIMIT", 80)),
            inbox_limit=max(1, _env_int("TAB_CONTEXT_INBOX_LIMIT", 40)),
        )

    @property
    def cdp_base_url(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"

    def is_chat_host(self, host: str) -> bool:
        host = (host or "").strip().lower().rstrip(".")
        if not host:
            return False
        for raw_allowed in self.chat_hosts:
            allowed = (raw_allowed or "").strip().lower().lstrip(".").rstrip(".")
            if not allowed:
                continue
            if host == allowed or host.endswith("." + allowed):
                return True
        return False
