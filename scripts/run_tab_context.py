#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[tab-context] cdp={os.environ.get('TAB_CONTEXT_CDP_HOST', '127.0.0.1')}:"
    f"{os.environ.get('TAB_CONTEXT_CDP_PORT', '9222')} | "
    f"target={os.environ.get('TAB_CONTEXT_TARGET', 'auto')} | "
    f"ledger={os.environ.get('TAB_CONTEXT_LEDGER', 'file')}",
    file=sys.stderr,
)

from tab_context.main import main  # noqa: E402

if __name__ == "__main__":
    main()
