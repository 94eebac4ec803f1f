"""Structured handler errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SiteHandlerError(Exception):
    """Structured error raised inside site handlers; never escapes `run_action`."""

    site: str
    action: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        text = f"[{self.site}] {self.action} failed: {self.reason}"
        return f"{text}. Suggestion: {self.suggestion}" if self.suggestion else text

    def to_result(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": False, "error": self.reason}
        if self.suggestion:
            out["suggestion"] = self.suggestion
        if self.details:
            out["details"] = self.details
        return out
