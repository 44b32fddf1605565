"""In-page scripts and the ordered page-query strategies.

The scripts only read the DOM and hand plain data back; URL matching, JSON
decoding and merging happen here in Python. Each detail-page strategy returns
an optional ``RawPageData`` and ``query_page`` merges them first-non-empty-wins
per field, in strategy order.
"""

from __future__ import annotations

import json
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from . import config
from .logging_utils import _scraper_event
from .models import DiscoveredLink, RawPageData, SideChannelMetadata
from .selectors import GALLERY_SELECTORS, PAGE_TEXT_HINTS, GallerySelectors
from .session import BrowserSession

ITEM_COUNT_SCRIPT = "() => document.querySelectorAll('img').length"
SCROLL_HEIGHT_SCRIPT = "() => document.body.scrollHeight"
SCROLL_TO_BOTTOM_SCRIPT = "() => window.scrollTo(0, document.body.scrollHeight)"

COLLECT_LINKS_SCRIPT = """
(hints) => {
  const embeds = Array.from(document.querySelectorAll(hints.embed)).map((el) => ({
    itemId: el.getAttribute(hints.embedIdAttribute),
    hash: el.getAttribute(hints.embedHashAttribute),
  }));
  const anchors = Array.from(document.querySelectorAll(hints.itemAnchor))
    .map((a) => a.href)
    .filter(Boolean);
  const dataItems = Array.from(document.querySelectorAll(hints.dataItem)).map((el) => {
    let hash = null;
    for (const attr of hints.dataHashAttributes) {
      hash = hash || el.getAttribute(attr);
    }
    return { itemId: el.getAttribute('data-image-id'), hash };
  });
  return { embeds, anchors, dataItems };
}
"""

THUMBNAILS_SCRIPT = """
(hints) => Array.from(document.querySelectorAll(hints.embed))
  .map((embed) => {
    const img = embed.querySelector('img');
    return {
      itemId: embed.getAttribute(hints.embedIdAttribute),
      src: img ? (img.src || img.getAttribute('data-src')) : null,
    };
  })
  .filter((entry) => entry.itemId && entry.src)
"""

# Marks the chosen control with a data attribute so it can be clicked through a
# plain selector afterwards.
FIND_PAGINATION_CONTROL_SCRIPT = """
(hints) => {
  const candidates = Array.from(document.querySelectorAll(hints.candidates));
  const usable = (el) => {
    if (el.hasAttribute('disabled') || el.getAttribute('aria-disabled') === 'true') return false;
    const rect = el.getBoundingClientRect();
    const viewHeight = window.innerHeight || document.documentElement.clientHeight;
    const viewWidth = window.innerWidth || document.documentElement.clientWidth;
    const inView = rect.top >= 0 && rect.left >= 0 && rect.bottom <= viewHeight * 2 &&
      rect.right <= viewWidth && rect.width > 0 && rect.height > 0;
    if (!inView) return false;
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden' && style.opacity !== '0';
  };
  const mark = (el, priority) => {
    document.querySelectorAll('[data-harvester-control]').forEach((old) => old.removeAttribute('data-harvester-control'));
    el.setAttribute('data-harvester-control', '1');
    return { selector: '[data-harvester-control="1"]', text: (el.textContent || '').trim(), priority };
  };
  for (const el of candidates) {
    const text = (el.textContent || '').toLowerCase().trim();
    const aria = (el.getAttribute('aria-label') || '').toLowerCase().trim();
    const isNext = hints.nextLabels.some((label) => text === label || aria === label || text.startsWith(label));
    if (isNext && usable(el)) return mark(el, 'next');
  }
  for (const el of candidates) {
    const text = (el.textContent || '').toLowerCase();
    const classes = Array.from(el.classList || []);
    const aria = (el.getAttribute('aria-label') || '').toLowerCase();
    const byText = hints.loadMoreTexts.some((hint) => text.includes(hint));
    const byClass = classes.some((cls) => hints.loadMoreClassHints.some((hint) => cls.includes(hint)));
    const byAria = hints.loadMoreAriaHints.some((hint) => aria.includes(hint));
    if ((byText || byClass || byAria) && usable(el)) return mark(el, 'load_more');
  }
  return null;
}
"""

METADATA_READY_SCRIPT = """
() => {
  const scripts = Array.from(document.querySelectorAll('script'));
  const hasNextData = scripts.some((s) => s.id === '__NEXT_DATA__' || (s.textContent || '').includes('props'));
  const hasMetadata = scripts.some((s) => {
    const text = s.textContent || '';
    return text.includes('photographer') || text.includes('metadata');
  });
  const embed = document.querySelector('smartframe-embed');
  const hasShadowContent = !!(embed && embed.shadowRoot && embed.shadowRoot.querySelector('li'));
  return hasNextData || hasMetadata || hasShadowContent;
}
"""

_LABEL_VALUES_JS = """
  const labelValues = (root) => {
    const pairs = [];
    root.querySelectorAll('li').forEach((li) => {
      const strong = li.querySelector('strong');
      if (!strong) return;
      const label = (strong.textContent || '').replace(':', '').trim();
      const button = li.querySelector('button');
      let value = null;
      if (button) value = button.textContent;
      else if (strong.nextSibling) value = strong.nextSibling.textContent;
      if (label && value) pairs.push([label, value]);
    });
    return pairs;
  };
"""

SHADOW_DOM_SCRIPT = (
    "(hints) => {"
    + _LABEL_VALUES_JS
    + """
  const embed = document.querySelector(hints.embed);
  const root = embed ? embed.shadowRoot : null;
  if (!root) return null;
  const text = (el) => (el && el.textContent ? el.textContent : null);
  return {
    title: text(root.querySelector('h1, h2, [class*="title"], [data-title]')),
    caption: text(root.querySelector('p, div[class*="caption"], [class*="description"]')),
    labelValues: labelValues(root),
  };
}
"""
)

LIGHT_DOM_SCRIPT = (
    "(hints) => {"
    + _LABEL_VALUES_JS
    + """
  const result = { title: null, caption: null, contentPartner: null, keywords: [], labelValues: [] };
  const h1 = document.querySelector('h1');
  if (h1 && h1.textContent) result.title = h1.textContent;
  for (const selector of hints.captionCandidates) {
    const el = document.querySelector(selector);
    const text = el && el.textContent ? el.textContent.trim() : '';
    if (text.length > 20 && (text.includes('Credit:') || /\\d{2}\\.\\d{2}\\.\\d{2}/.test(text) || text.includes(' - '))) {
      result.caption = text;
      break;
    }
  }
  const marker = document.querySelector('h6.headline');
  if (marker && (marker.textContent || '').toLowerCase().includes(hints.contentPartnerMarker)) {
    const partner = marker.parentElement ? marker.parentElement.querySelector('h2.headline') : null;
    if (partner && partner.textContent) result.contentPartner = partner.textContent.trim();
  }
  document.querySelectorAll('h2').forEach((h2) => {
    if (!(h2.textContent || '').toLowerCase().includes('keyword') || !h2.parentElement) return;
    h2.parentElement.querySelectorAll('button[type="button"]').forEach((button) => {
      const keyword = (button.textContent || '').trim();
      if (keyword && !keyword.includes('SmartFrame') && !keyword.includes('View all')) {
        result.keywords.push(keyword);
      }
    });
  });
  result.labelValues = labelValues(document);
  return result;
}
"""
)

SCRIPT_TEXT_SCRIPT = """
(selector) => {
  const el = document.querySelector(selector);
  return el ? el.textContent : null;
}
"""

CANDIDATE_SCRIPTS_SCRIPT = """
(hints) => Array.from(document.querySelectorAll('script'))
  .map((s) => s.textContent || '')
  .filter((text) => text.length >= 100 && hints.some((hint) => text.includes(hint)))
"""

_H1_AGENCY_RE = re.compile(r"^(WENN|Getty|AFP|Reuters|Shutterstock)$", re.IGNORECASE)
_JSON_PARSE_RE = re.compile(r"JSON\.parse\(['\"](.+)['\"]\)", re.DOTALL)
_EMBEDDED_OBJECT_RE = re.compile(r"\{[\s\S]*\"photographer\"[\s\S]*\}")
_NEXT_DATA_PATHS = (
    ("props", "pageProps", "image", "metadata"),
    ("props", "pageProps", "metadata"),
    ("props", "pageProps", "image"),
    ("props", "image", "metadata"),
    ("pageProps", "image", "metadata"),
)
_NESTED_METADATA_KEYS = ("metadata", "image", "imageData")


def _selector_hints(selectors: GallerySelectors) -> Dict[str, Any]:
    return {
        "embed": selectors.embed,
        "embedIdAttribute": selectors.embed_id_attribute,
        "embedHashAttribute": selectors.embed_hash_attribute,
        "itemAnchor": selectors.item_anchor,
        "dataItem": selectors.data_item,
        "dataHashAttributes": list(selectors.data_hash_attributes),
        "candidates": selectors.pagination_candidates,
        "nextLabels": list(selectors.next_labels),
        "loadMoreTexts": list(selectors.load_more_texts),
        "loadMoreClassHints": list(selectors.load_more_class_hints),
        "loadMoreAriaHints": list(selectors.load_more_aria_hints),
        "captionCandidates": list(selectors.caption_candidates),
        "contentPartnerMarker": selectors.content_partner_marker,
    }


# --- Gallery page ----------------------------------------------------------


def item_url(collection_hash: str, item_id: str) -> str:
    return config.ITEM_URL_TEMPLATE.format(hash=collection_hash, item_id=item_id)


def _item_path_re() -> re.Pattern:
    return re.compile(re.escape(config.ITEM_PATH_MARKER) + r"([^/]+)/([^/?#]+)")


def links_from_snapshot(snapshot: Optional[Dict[str, Any]]) -> List[DiscoveredLink]:
    """Turn the raw output of ``COLLECT_LINKS_SCRIPT`` into links, one per item id."""

    if not snapshot:
        return []
    links: Dict[str, DiscoveredLink] = {}

    for entry in snapshot.get("embeds") or []:
        item_id, collection_hash = entry.get("itemId"), entry.get("hash")
        if item_id and collection_hash:
            links[item_id] = DiscoveredLink(item_id, item_url(collection_hash, item_id), collection_hash)

    pattern = _item_path_re()
    for href in snapshot.get("anchors") or []:
        match = pattern.search(href or "")
        if match and match.group(2) not in links:
            collection_hash, item_id = match.group(1), match.group(2)
            links[item_id] = DiscoveredLink(item_id, href, collection_hash)

    for entry in snapshot.get("dataItems") or []:
        item_id, collection_hash = entry.get("itemId"), entry.get("hash")
        if item_id and collection_hash and item_id not in links:
            links[item_id] = DiscoveredLink(item_id, item_url(collection_hash, item_id), collection_hash)

    return list(links.values())


async def collect_links(
    session: BrowserSession, selectors: GallerySelectors = GALLERY_SELECTORS
) -> List[DiscoveredLink]:
    snapshot = await session.evaluate(COLLECT_LINKS_SCRIPT, _selector_hints(selectors))
    return links_from_snapshot(snapshot)


async def collect_thumbnails(
    session: BrowserSession, selectors: GallerySelectors = GALLERY_SELECTORS
) -> Dict[str, str]:
    entries = await session.evaluate(THUMBNAILS_SCRIPT, _selector_hints(selectors)) or []
    return {entry["itemId"]: entry["src"] for entry in entries}


async def item_count(session: BrowserSession) -> int:
    return int(await session.evaluate(ITEM_COUNT_SCRIPT) or 0)


async def scroll_height(session: BrowserSession) -> int:
    return int(await session.evaluate(SCROLL_HEIGHT_SCRIPT) or 0)


async def scroll_to_bottom(session: BrowserSession) -> None:
    await session.evaluate(SCROLL_TO_BOTTOM_SCRIPT)


async def find_pagination_control(
    session: BrowserSession, selectors: GallerySelectors = GALLERY_SELECTORS
) -> Optional[Dict[str, Any]]:
    """Return ``{selector, text, priority}`` for a usable next/load-more control."""

    return await session.evaluate(FIND_PAGINATION_CONTROL_SCRIPT, _selector_hints(selectors))


# --- Detail page -----------------------------------------------------------


def _pairs(raw: Iterable[Any]) -> List[tuple]:
    pairs = []
    for entry in raw or []:
        if isinstance(entry, (list, tuple)) and len(entry) == 2 and entry[0] and entry[1]:
            pairs.append((str(entry[0]), str(entry[1])))
    return pairs


async def shadow_dom_strategy(session: BrowserSession) -> Optional[RawPageData]:
    data = await session.evaluate(SHADOW_DOM_SCRIPT, _selector_hints(GALLERY_SELECTORS))
    if not data:
        return None
    return RawPageData(
        title=data.get("title"),
        caption=data.get("caption"),
        label_values=_pairs(data.get("labelValues")),
    )


async def light_dom_strategy(session: BrowserSession) -> Optional[RawPageData]:
    data = await session.evaluate(LIGHT_DOM_SCRIPT, _selector_hints(GALLERY_SELECTORS))
    if not data:
        return None
    title = data.get("title")
    if title and _H1_AGENCY_RE.match(title.strip()):
        title = None
    return RawPageData(
        title=title,
        caption=data.get("caption"),
        label_values=_pairs(data.get("labelValues")),
        keywords=[str(k) for k in data.get("keywords") or [] if k],
        content_partner=data.get("contentPartner"),
    )


def metadata_from_next_data(text: Optional[str]) -> Optional[SideChannelMetadata]:
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    for path in _NEXT_DATA_PATHS:
        node: Any = parsed
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if isinstance(node, dict):
            metadata = SideChannelMetadata.from_payload(node)
            if metadata is not None:
                return metadata
    return None


def _unescape_js_string(value: str) -> str:
    return (
        value.replace('\\"', '"')
        .replace("\\'", "'")
        .replace("\\\\", "\\")
        .replace("\\n", "\n")
        .replace("\\r", "\r")
        .replace("\\t", "\t")
    )


def parse_script_payload(content: str) -> Any:
    """Decode a JSON payload from an inline script body, or return ``None``."""

    stripped = content.strip()
    try:
        if stripped.startswith("{"):
            return json.loads(stripped)
        if "JSON.parse" in content:
            match = _JSON_PARSE_RE.search(content)
            return json.loads(_unescape_js_string(match.group(1))) if match else None
        match = _EMBEDDED_OBJECT_RE.search(content)
        return json.loads(match.group(0)) if match else None
    except ValueError:
        return None


def find_metadata_object(node: Any) -> Optional[Dict[str, Any]]:
    """Find the first object carrying a credit and a title/caption."""

    if isinstance(node, list):
        for item in node:
            found = find_metadata_object(item)
            if found is not None:
                return found
        return None
    if not isinstance(node, dict):
        return None
    if (node.get("photographer") or node.get("credit")) and (node.get("title") or node.get("caption")):
        return node
    for key in _NESTED_METADATA_KEYS:
        found = find_metadata_object(node.get(key))
        if found is not None:
            return found
    return None


async def next_data_strategy(session: BrowserSession) -> Optional[RawPageData]:
    text = await session.evaluate(SCRIPT_TEXT_SCRIPT, GALLERY_SELECTORS.next_data_script)
    metadata = metadata_from_next_data(text)
    return RawPageData(embedded=metadata) if metadata else None


async def script_json_strategy(session: BrowserSession) -> Optional[RawPageData]:
    scripts = await session.evaluate(CANDIDATE_SCRIPTS_SCRIPT, list(PAGE_TEXT_HINTS.metadata_script))
    for content in scripts or []:
        found = find_metadata_object(parse_script_payload(content))
        metadata = SideChannelMetadata.from_payload(found) if found else None
        if metadata is not None:
            return RawPageData(embedded=metadata)
    return None


PageQueryStrategy = Callable[[BrowserSession], Awaitable[Optional[RawPageData]]]

DEFAULT_STRATEGIES: Sequence[PageQueryStrategy] = (
    shadow_dom_strategy,
    light_dom_strategy,
    next_data_strategy,
    script_json_strategy,
)


def merge_raw(into: RawPageData, found: RawPageData) -> None:
    """Fill fields of ``into`` that are still empty from ``found``."""

    if not into.title and found.title:
        into.title = found.title
    if not into.caption and found.caption:
        into.caption = found.caption
    if not into.content_partner and found.content_partner:
        into.content_partner = found.content_partner
    if not into.keywords and found.keywords:
        into.keywords = list(found.keywords)
    if into.embedded is None and found.embedded is not None:
        into.embedded = found.embedded
    known = {label.lower() for label, _ in into.label_values}
    for label, value in found.label_values:
        if label.lower() not in known:
            into.label_values.append((label, value))
            known.add(label.lower())


async def query_page(
    session: BrowserSession, strategies: Sequence[PageQueryStrategy] = DEFAULT_STRATEGIES
) -> RawPageData:
    raw = RawPageData()
    for strategy in strategies:
        found = await strategy(session)
        if found is not None:
            merge_raw(raw, found)
    _scraper_event(
        "state",
        phase="page_query",
        labels=len(raw.label_values),
        has_title=bool(raw.title),
        has_caption=bool(raw.caption),
        has_embedded=raw.embedded is not None,
    )
    return raw


def is_error_page(raw: RawPageData) -> bool:
    title = (raw.title or "").lower().strip()
    return any(indicator in title for indicator in PAGE_TEXT_HINTS.error_page)


def has_no_metadata(raw: RawPageData) -> bool:
    return (
        not raw.label_values
        and raw.embedded is None
        and len((raw.title or "").strip()) < 3
        and len((raw.caption or "").strip()) < 10
    )


__all__ = [
    "DEFAULT_STRATEGIES",
    "METADATA_READY_SCRIPT",
    "PageQueryStrategy",
    "collect_links",
    "collect_thumbnails",
    "find_metadata_object",
    "find_pagination_control",
    "has_no_metadata",
    "is_error_page",
    "item_count",
    "item_url",
    "light_dom_strategy",
    "links_from_snapshot",
    "merge_raw",
    "metadata_from_next_data",
    "next_data_strategy",
    "parse_script_payload",
    "query_page",
    "script_json_strategy",
    "scroll_height",
    "scroll_to_bottom",
    "shadow_dom_strategy",
]
