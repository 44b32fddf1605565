"""Selectors and text hints for the gallery and item detail pages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class GallerySelectors:
    """Site-specific selector hints consumed by the in-page query scripts.

    Items are surfaced three ways on gallery pages: as embed elements carrying
    the image and customer ids, as plain anchors to the detail page, and as
    generic elements with ``data-image-id``. All three are probed and merged.
    """

    embed: str = "smartframe-embed"
    embed_id_attribute: str = "image-id"
    embed_hash_attribute: str = "customer-id"
    item_anchor: str = 'a[href*="/search/image/"]'
    data_item: str = "[data-image-id]"
    data_hash_attributes: Tuple[str, ...] = ("data-customer-id", "data-hash")
    thumbnail: str = "smartframe-embed img"
    # Any match on the entry page means the gallery has rendered.
    gallery_ready: str = 'smartframe-embed, .sf-thumbnail, [data-testid="image-card"]'
    pagination_candidates: str = "button, a"
    next_labels: Tuple[str, ...] = ("next",)
    load_more_texts: Tuple[str, ...] = ("load more", "show more", "load all")
    load_more_class_hints: Tuple[str, ...] = ("load", "pagination")
    load_more_aria_hints: Tuple[str, ...] = ("load", "more")
    caption_candidates: Tuple[str, ...] = (
        "section p",
        "p.text-iy-midnight-400",
        "div.text-iy-midnight-400",
        'p[class*="midnight"]',
        'p[class*="caption"]',
        "article p",
        "main p",
    )
    content_partner_marker: str = "smartframe content partner"
    next_data_script: str = "script#__NEXT_DATA__"


@dataclass(frozen=True)
class PageTextHints:
    """Lower-case substrings used to classify rendered page text."""

    error_page: Tuple[str, ...] = (
        "502 bad gateway",
        "503 service unavailable",
        "500 internal server error",
        "504 gateway timeout",
        "429 too many requests",
        "error occurred",
        "page not found",
        "access denied",
        "rate limit exceeded",
    )
    metadata_script: Tuple[str, ...] = ("photographer", "metadata", "caption", "copyright")


GALLERY_SELECTORS = GallerySelectors()
PAGE_TEXT_HINTS = PageTextHints()

__all__ = [
    "GALLERY_SELECTORS",
    "GallerySelectors",
    "PAGE_TEXT_HINTS",
    "PageTextHints",
]
