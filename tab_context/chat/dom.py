"""
DOM port of the chat-app handler.

`ChatDom` is everything the handler knows about the host page: readers that
return plain JSON records, and actuators that synthesize user interaction.
`CdpChatDom` implements it with small JavaScript snippets evaluated in the
page plus CDP input events; tests provide an in-memory implementation.

Raw message row record (read_message_rows()["rows"][i]):
    dataId, outgoing, textFragments, prePlain, timeLabel,
    hasAudio, hasSticker, hasImage, hasDocument, hasVideo, hasCaption,
    hasOtherMedia, captionText, fileName, duration, imageAlt, labels,
    looksLikeMessage
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..page import PageSession


class ChatDom(Protocol):
    # Readers
    def read_message_rows(self) -> dict[str, Any]: ...

    def read_chat_header(self) -> dict[str, Any]: ...

    def read_inbox_rows(self) -> list[dict[str, Any]]: ...

    def read_identity_storage(self) -> dict[str, Any]: ...

    def page_meta(self) -> dict[str, Any]: ...

    def change_signals(self) -> dict[str, Any]: ...

    # Actuators
    def composer_state(self) -> dict[str, Any]: ...

    def focus_composer(self) -> bool: ...

    def insert_text_native(self, text: str) -> bool: ...

    def replace_composer_text(self, text: str) -> bool: ...

    def send_button_state(self) -> dict[str, Any]: ...

    def click_send_button(self) -> bool: ...

    def press_enter(self) -> None: ...

    def click_inbox_row(self, index: int) -> bool: ...

    def open_row_menu(self, index: int) -> bool: ...

    def context_click_inbox_row(self, index: int) -> bool: ...

    def read_menu_actions(self) -> list[dict[str, Any]]: ...

    def click_menu_action(self, index: int) -> bool: ...

    def dismiss_menu(self) -> None: ...


# Message-row strategies, most specific first. The first one that yields
# rows wins and its name is reported for diagnostics.
MESSAGE_ROW_STRATEGIES: list[tuple[str, str]] = [
    ("msg-container", 'div[data-testid="msg-container"]'),
    ("conversation-row", '#main [role="application"] [role="row"], #main div[role="row"]'),
    ("data-id", "#main [data-id]"),
]

_STRATEGIES_JS = "[" + ",".join(f"[{name!r}, {sel!r}]" for name, sel in MESSAGE_ROW_STRATEGIES) + "]"

READ_MESSAGE_ROWS_JS = r"""
(() => {
  const strategies = __STRATEGIES__;
  const safe = (v, n) => String(v || '').replace(/\s+/g, ' ').trim().slice(0, n || 600);
  let rows = [];
  let strategy = '';
  for (const [name, selector] of strategies) {
    let found = [];
    try { found = Array.from(document.querySelectorAll(selector)); } catch (e) { found = []; }
    if (found.length) { rows = found; strategy = name; break; }
  }
  const has = (row, sel) => { try { return !!row.querySelector(sel); } catch (e) { return false; } };
  const texts = (row, sel, n) => {
    const out = [];
    try {
      for (const node of row.querySelectorAll(sel)) {
        const t = safe(node.textContent, n || 380);
        if (t) out.push(t);
      }
    } catch (e) { /* ignore */ }
    return out;
  };
  const attrs = (row, sel, attr, n) => {
    const out = [];
    try {
      for (const node of row.querySelectorAll(sel)) {
        const t = safe(node.getAttribute(attr), n || 240);
        if (t) out.push(t);
      }
    } catch (e) { /* ignore */ }
    return out;
  };
  const out = [];
  for (const row of rows) {
    try {
      const idHost = row.closest('[data-id]') || row.querySelector('[data-id]');
      const dataId = safe(row.getAttribute('data-id') || (idHost ? idHost.getAttribute('data-id') : ''), 240);
      const outgoing = !!(row.closest('.message-out') || row.classList.contains('message-out') || has(row, '.message-out'));
      const prePlainNode = row.querySelector('[data-pre-plain-text]');
      const captionNode = row.querySelector('[data-testid="media-caption"]');
      const docNode = row.querySelector('[data-testid="document-thumb"], [data-icon*="document"]');
      let fileName = '';
      if (docNode) {
        const host = docNode.closest('[title]') || row.querySelector('[data-testid="document-name"], span[title]');
        fileName = safe(host ? (host.getAttribute('title') || host.textContent) : '', 240);
      }
      const durations = texts(row, '[data-testid="audio-duration"], [data-testid="media-duration"]', 16);
      out.push({
        dataId,
        outgoing,
        textFragments: texts(row, 'span.selectable-text span, div.copyable-text span.selectable-text', 380),
        prePlain: safe(prePlainNode ? prePlainNode.getAttribute('data-pre-plain-text') : '', 160),
        timeLabel: (texts(row, '[data-testid="msg-meta"] span', 40)[0] || ''),
        hasAudio: has(row, 'audio, [data-testid="audio-play"], [data-icon="audio-play"], [data-icon="ptt-play"], [data-testid="ptt-status"]'),
        hasSticker: has(row, '[data-testid="sticker"], img[data-testid="sticker-img"]'),
        hasImage: has(row, '[data-testid="image-thumb"], img[src^="blob:"], [data-testid="media-url-provider"] img'),
        hasDocument: !!docNode,
        hasVideo: has(row, 'video, [data-testid="video-content"], [data-icon="media-play"], [data-icon="video-pip"]'),
        hasCaption: !!captionNode,
        hasOtherMedia: has(row, '[data-testid="poll"], [data-testid="location"], [data-testid="vcard"], [data-icon="location"]'),
        captionText: safe(captionNode ? captionNode.textContent : '', 280),
        fileName,
        duration: durations[0] || '',
        imageAlt: (attrs(row, 'img[alt]', 'alt', 240)[0] || ''),
        labels: attrs(row, '[aria-label]', 'aria-label', 240).concat(texts(row, '[data-testid="transcription"], [data-testid="ptt-transcript"]', 420)),
        looksLikeMessage: !!(dataId || prePlainNode || row.closest('.message-in, .message-out') || has(row, '.message-in, .message-out')),
      });
    } catch (e) {
      out.push({ error: String(e && e.message || e) });
    }
  }
  return { strategy, rows: out };
})()
""".replace("__STRATEGIES__", _STRATEGIES_JS)

READ_CHAT_HEADER_JS = r"""
(() => {
  const safe = (v, n) => String(v || '').replace(/\s+/g, ' ').trim().slice(0, n || 240);
  const selectors = [
    '[data-testid="conversation-info-header-chat-title"]',
    '#main header [role="button"] span[dir="auto"]',
    '#main header span[title]',
    'header span[title]',
  ];
  let title = '';
  for (const sel of selectors) {
    const node = document.querySelector(sel);
    if (!node) continue;
    title = safe(node.getAttribute('title') || node.textContent, 240);
    if (title) break;
  }
  const subtitleNode = document.querySelector('[data-testid="chat-subtitle"], #main header span[title]:not(:first-child)');
  const breadcrumb = document.querySelector('[data-testid="chatlist-header"]');
  let urlPhone = '';
  try { urlPhone = new URLSearchParams(location.search).get('phone') || ''; } catch (e) { urlPhone = ''; }
  return {
    title,
    subtitle: safe(subtitleNode ? (subtitleNode.getAttribute('title') || subtitleNode.textContent) : '', 240),
    breadcrumb: safe(breadcrumb ? breadcrumb.textContent : '', 240),
    urlPhone: safe(urlPhone, 40),
    open: !!document.querySelector('#main'),
  };
})()
"""

READ_INBOX_ROWS_JS = r"""
(() => {
  const safe = (v, n) => String(v || '').replace(/\s+/g, ' ').trim().slice(0, n || 220);
  const items = Array.from(document.querySelectorAll('#pane-side [role="listitem"], #pane-side [role="row"]'));
  return items.map((item, index) => {
    const titleNode = item.querySelector('span[title]');
    const previews = [];
    for (const node of item.querySelectorAll('div[dir="ltr"], span[dir="auto"], span[dir="ltr"]')) {
      const t = safe(node.textContent, 220);
      if (t) previews.push(t);
    }
    const idHost = item.querySelector('[data-id]');
    const unreadNode = item.querySelector('[data-testid="icon-unread-count"], span[aria-label*="unread" i], span[aria-label*="no leído" i]');
    return {
      index,
      title: safe(titleNode ? (titleNode.getAttribute('title') || titleNode.textContent) : '', 180),
      previewCandidates: previews.slice(0, 8),
      dataId: safe(idHost ? idHost.getAttribute('data-id') : '', 200),
      groupHint: !!item.querySelector('[data-icon="default-group"], [data-testid="default-group"]'),
      unread: parseInt((unreadNode && unreadNode.textContent) || '0', 10) || 0,
    };
  });
})()
"""

READ_IDENTITY_STORAGE_JS = r"""
(() => {
  const out = {};
  const known = ['last-wid-md', 'last-wid', 'lastKnownPhone'];
  try {
    for (const key of known) {
      const v = localStorage.getItem(key);
      if (v !== null) out[key] = v;
    }
    for (let i = 0; i < localStorage.length && Object.keys(out).length < 30; i += 1) {
      const key = localStorage.key(i);
      if (!key || key in out) continue;
      if (!key.includes('wid') && !key.includes('phone')) continue;
      out[key] = localStorage.getItem(key);
    }
  } catch (e) { /* ignore */ }
  return out;
})()
"""

PAGE_META_JS = r"""
(() => ({ url: String(location.href || ''), title: String(document.title || '').replace(/\s+/g, ' ').trim().slice(0, 280) }))()
"""

_COMPOSER_FIND_JS = r"""
const __findComposer = () => {
  const selectors = [
    'footer div[contenteditable="true"][role="textbox"]',
    'footer div[contenteditable="true"][data-tab]',
    '#main div[contenteditable="true"][role="textbox"]',
  ];
  for (const sel of selectors) {
    const el = document.querySelector(sel);
    if (el) return el;
  }
  return null;
};
"""

COMPOSER_STATE_JS = (
    "(() => {"
    + _COMPOSER_FIND_JS
    + r"""
  const el = __findComposer();
  if (!el) return { found: false, text: '' };
  return { found: true, text: String(el.innerText || el.textContent || '').replace(/\s+/g, ' ').trim() };
})()"""
)

FOCUS_COMPOSER_JS = (
    "(() => {"
    + _COMPOSER_FIND_JS
    + r"""
  const el = __findComposer();
  if (!el) return false;
  el.focus();
  return document.activeElement === el || el.contains(document.activeElement);
})()"""
)

INSERT_NATIVE_JS = (
    "(() => {"
    + _COMPOSER_FIND_JS
    + r"""
  const el = __findComposer();
  if (!el) return false;
  el.focus();
  try {
    document.execCommand('selectAll', false, null);
    return !!document.execCommand('insertText', false, __TEXT__);
  } catch (e) {
    return false;
  }
})()"""
)

REPLACE_COMPOSER_JS = (
    "(() => {"
    + _COMPOSER_FIND_JS
    + r"""
  const el = __findComposer();
  if (!el) return false;
  el.focus();
  el.textContent = __TEXT__;
  el.dispatchEvent(new InputEvent('input', { bubbles: true, cancelable: true, data: __TEXT__, inputType: 'insertText' }));
  return true;
})()"""
)

_SEND_FIND_JS = r"""
const __findSend = () => {
  const selectors = [
    'footer button[data-testid="compose-btn-send"]',
    'footer button[data-testid="send"]',
    'footer button[aria-label="Send"]',
    'footer button[aria-label="Enviar"]',
  ];
  for (const sel of selectors) {
    const el = document.querySelector(sel);
    if (el) return el;
  }
  const icon = document.querySelector('footer span[data-icon="send"], footer span[data-icon="wds-ic-send-filled"]');
  return icon ? (icon.closest('button') || icon.closest('[role="button"]')) : null;
};
const __rect = (el) => { const r = el.getBoundingClientRect(); return { x: r.x + r.width / 2, y: r.y + r.height / 2, w: r.width, h: r.height }; };
"""

SEND_BUTTON_STATE_JS = (
    "(() => {"
    + _SEND_FIND_JS
    + r"""
  const el = __findSend();
  if (!el) return { found: false, enabled: false };
  const disabled = !!(el.disabled || el.getAttribute('aria-disabled') === 'true');
  const box = __rect(el);
  return { found: true, enabled: !disabled && box.w > 0 && box.h > 0, label: String(el.getAttribute('aria-label') || ''), box };
})()"""
)

_ROW_FIND_JS = r"""
const __rows = () => Array.from(document.querySelectorAll('#pane-side [role="listitem"], #pane-side [role="row"]'));
const __rowBox = (index) => {
  const row = __rows()[index];
  if (!row) return null;
  try { row.scrollIntoView({ block: 'center', inline: 'nearest' }); } catch (e) { /* ignore */ }
  const r = row.getBoundingClientRect();
  if (!(r.width > 0 && r.height > 0)) return null;
  return { x: r.x + Math.min(r.width / 2, 160), y: r.y + r.height / 2 };
};
"""

ROW_BOX_JS = "(() => {" + _ROW_FIND_JS + "\n  return __rowBox(__INDEX__);\n})()"

ROW_MENU_BUTTON_JS = (
    "(() => {"
    + _ROW_FIND_JS
    + r"""
  const row = __rows()[__INDEX__];
  if (!row) return null;
  const btn = row.querySelector('[data-testid="icon-down-context"], [data-icon="down-context"], span[data-icon="down"], button[aria-label*="menu" i]');
  if (!btn) return null;
  const host = btn.closest('button') || btn;
  const r = host.getBoundingClientRect();
  if (!(r.width > 0 && r.height > 0)) return null;
  return { x: r.x + r.width / 2, y: r.y + r.height / 2 };
})()"""
)

_MENU_ITEMS_JS = r"""
const __menuItems = () => {
  const selectors = ['[role="application"] li', '[role="menu"] [role="menuitem"]', '[role="menu"] li', 'div[data-animate-dropdown-item] '];
  const visible = (el) => { const r = el.getBoundingClientRect(); return r.width > 0 && r.height > 0; };
  for (const sel of selectors) {
    let nodes = [];
    try { nodes = Array.from(document.querySelectorAll(sel)).filter(visible); } catch (e) { nodes = []; }
    if (nodes.length) return nodes;
  }
  return [];
};
"""

READ_MENU_ACTIONS_JS = (
    "(() => {"
    + _MENU_ITEMS_JS
    + r"""
  return __menuItems().map((el, index) => ({
    index,
    label: String(el.getAttribute('aria-label') || el.innerText || el.textContent || '').replace(/\s+/g, ' ').trim().slice(0, 120),
  }));
})()"""
)

MENU_ACTION_BOX_JS = (
    "(() => {"
    + _MENU_ITEMS_JS
    + r"""
  const el = __menuItems()[__INDEX__];
  if (!el) return null;
  const r = el.getBoundingClientRect();
  return { x: r.x + r.width / 2, y: r.y + r.height / 2 };
})()"""
)


def _box(value: Any) -> tuple[float, float] | None:
    if not isinstance(value, dict):
        return None
    try:
        return float(value["x"]), float(value["y"])
    except (KeyError, TypeError, ValueError):
        return None


class CdpChatDom:
    """`ChatDom` over a live page."""

    def __init__(self, page: PageSession) -> None:
        self.page = page

    def read_message_rows(self) -> dict[str, Any]:
        value = self.page.evaluate(READ_MESSAGE_ROWS_JS)
        return value if isinstance(value, dict) else {"strategy": "", "rows": []}

    def read_chat_header(self) -> dict[str, Any]:
        value = self.page.evaluate(READ_CHAT_HEADER_JS)
        return value if isinstance(value, dict) else {}

    def read_inbox_rows(self) -> list[dict[str, Any]]:
        value = self.page.evaluate(READ_INBOX_ROWS_JS)
        return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []

    def read_identity_storage(self) -> dict[str, Any]:
        value = self.page.evaluate(READ_IDENTITY_STORAGE_JS)
        return value if isinstance(value, dict) else {}

    def page_meta(self) -> dict[str, Any]:
        value = self.page.evaluate(PAGE_META_JS)
        return value if isinstance(value, dict) else {}

    def change_signals(self) -> dict[str, Any]:
        return self.page.change_signals()

    def composer_state(self) -> dict[str, Any]:
        value = self.page.evaluate(COMPOSER_STATE_JS)
        return value if isinstance(value, dict) else {"found": False, "text": ""}

    def focus_composer(self) -> bool:
        return bool(self.page.evaluate(FOCUS_COMPOSER_JS))

    def insert_text_native(self, text: str) -> bool:
        return bool(self.page.call(INSERT_NATIVE_JS, text=text))

    def replace_composer_text(self, text: str) -> bool:
        return bool(self.page.call(REPLACE_COMPOSER_JS, text=text))

    def send_button_state(self) -> dict[str, Any]:
        value = self.page.evaluate(SEND_BUTTON_STATE_JS)
        return value if isinstance(value, dict) else {"found": False, "enabled": False}

    def click_send_button(self) -> bool:
        state = self.send_button_state()
        point = _box(state.get("box"))
        if not state.get("enabled") or point is None:
            return False
        self.page.click(*point)
        return True

    def press_enter(self) -> None:
        self.focus_composer()
        self.page.press_key("Enter")

    def click_inbox_row(self, index: int) -> bool:
        point = _box(self.page.call(ROW_BOX_JS, index=int(index)))
        if point is None:
            return False
        self.page.pointer_click(*point)
        return True

    def open_row_menu(self, index: int) -> bool:
        row_point = _box(self.page.call(ROW_BOX_JS, index=int(index)))
        if row_point is None:
            return False
        # The menu chevron only renders while the row is hovered.
        self.page.hover(*row_point)
        point = _box(self.page.call(ROW_MENU_BUTTON_JS, index=int(index)))
        if point is None:
            return False
        self.page.pointer_click(*point)
        return True

    def context_click_inbox_row(self, index: int) -> bool:
        point = _box(self.page.call(ROW_BOX_JS, index=int(index)))
        if point is None:
            return False
        self.page.context_click(*point)
        return True

    def read_menu_actions(self) -> list[dict[str, Any]]:
        value = self.page.evaluate(READ_MENU_ACTIONS_JS)
        return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []

    def click_menu_action(self, index: int) -> bool:
        point = _box(self.page.call(MENU_ACTION_BOX_JS, index=int(index)))
        if point is None:
            return False
        self.page.pointer_click(*point)
        return True

    def dismiss_menu(self) -> None:
        self.page.press_key("Escape")
