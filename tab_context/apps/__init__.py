"""
Site handlers: one capability surface per kind of page.

- generic: any page (title, meta description, text excerpt)
- chat: the chat web app (conversation, inbox, send/open/archive)
"""

from __future__ import annotations

from .base import SiteHandler, SiteHandlerError
from .registry import SiteRegistry, SiteSelection, site_registry

__all__ = ["SiteHandler", "SiteHandlerError", "SiteRegistry", "SiteSelection", "site_registry"]
