"""
Tab context automation layer.

Reads the state of specific web applications open in a browser tab and
drives their UI on behalf of an external assistant. Pages are reached
over the Chrome DevTools Protocol; each supported site has a handler that
exposes the same capability set:

- collect_context(text_limit) -> context snapshot
- observe_context_changes(on_change) -> disposer
- run_action(action, args) -> {ok, result?, error?}
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
