"""Turn raw page fragments into ExtractionRecord fields.

Sources are applied in priority order and a field set by an earlier source is
never overwritten by a later one:

1. explicit label/value pairs
2. heuristics over the free-form caption (credit, location-date line, markers)
3. title selection over the caption lines
4. the structured side-channel payload, if any

The display caption is synthesized last from the fields that ended up set.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup

from .date_utils import normalize_date
from .models import RawPageData, SideChannelMetadata

MAX_TEXT_LENGTH = 200
MAX_TEXT_LINES = 3

_INJECTION_MARKERS = re.compile(r"\b(script|iframe|onclick|onerror|onload)\b", re.IGNORECASE)
_UI_STRINGS: Tuple[str, ...] = (
    "add to board",
    "copy link",
    "copy embed",
    "google tag manager",
    "smartframe content partner",
)
_PARTIAL_TAG_START_RE = re.compile(r"^<[^>]*")
_PARTIAL_TAG_END_RE = re.compile(r"[^<]*>$")

_CREDIT_RE = re.compile(
    r"(?:Credit|Photographer|Photo(?:\s+Credit)?|©|Copyright)(?:\s*\([^)]+\))?:\s*([^\n]+)",
    re.IGNORECASE,
)
_CREDIT_PREFIX_RE = re.compile(r"^\s*\([^)]+\)\s*:\s*")
_LOCATION_DATE_RE = re.compile(r"^(.+?)\s+[-–]\s+(\d{2}\.\d{2}\.\d{2,4})$")
_LOCATION_DATE_PREFIX_RE = re.compile(r"^.+?\s+[-–]\s+\d{2}\.\d{2}")
_WHERE_RE = re.compile(r"Where:\s*([^\n]+)", re.IGNORECASE)
_WHEN_RE = re.compile(r"When:\s*([^\n]+)", re.IGNORECASE)
_FEATURING_RE = re.compile(r"Featuring:\s*([^\n]+)", re.IGNORECASE)
_TAG_SPLIT_RE = re.compile(r"[,;]")

_NARRATIVE_WORDS: Tuple[str, ...] = (
    "the",
    "crew",
    "team",
    "squad",
    "group",
    "cast",
    "staff",
    "members",
    "players",
    "fans",
    "crowd",
    "audience",
)
_LOCATION_KEYWORDS: Tuple[str, ...] = (
    "street",
    "avenue",
    "road",
    "boulevard",
    "center",
    "centre",
    "stadium",
    "arena",
    "park",
    "hall",
    "square",
    "building",
)
_KNOWN_AGENCIES = re.compile(
    r"^(WENN|Getty|AFP|Reuters|AP|Press Association|PA|Shutterstock|Alamy|Corbis"
    r"|WireImage|FilmMagic|GC Images|Splash News|DPA|EPA|Xinhua|Sipa)$",
    re.IGNORECASE,
)
_TITLE_SKIP_MARKERS: Tuple[str, ...] = ("Credit:", "Where:", "When:")

# Lower-cased label -> record field. Labels missing here are ignored.
_LABEL_FIELDS: Dict[str, str] = {}
for _field, _labels in (
    ("photographer", ("photographer", "credit", "photo credit", "by", "author", "shot by", "photo by")),
    ("image_size", ("image size", "size", "dimensions", "resolution")),
    ("file_size", ("file size", "filesize")),
    ("country", ("country", "nation")),
    ("city", ("city", "location", "place", "where")),
    ("date", ("date", "date taken", "when", "date created", "created")),
    ("title", ("event", "title", "headline", "event title")),
    ("comments", ("caption", "description", "desc")),
    ("featuring", ("featuring", "people", "subject", "subjects", "person", "who")),
    ("tags", ("tags", "keywords", "keyword")),
    ("copyright", ("copyright", "©", "rights")),
):
    for _label in _labels:
        _LABEL_FIELDS[_label] = _field


def strip_markup(text: str) -> str:
    """Drop tags and entities, then any tag fragments left at either end."""

    if "<" in text or "&" in text:
        text = BeautifulSoup(text, "html5lib").get_text()
    cleaned = _PARTIAL_TAG_START_RE.sub("", text)
    cleaned = _PARTIAL_TAG_END_RE.sub("", cleaned)
    return cleaned.replace("<", "").replace(">", "").strip()


def sanitize_text(text: Any) -> Optional[str]:
    """Return cleaned text, or ``None`` when the value is unusable as metadata."""

    if text is None:
        return None
    text = str(text)
    if not text.strip():
        return None

    lowered = text.lower()
    if _INJECTION_MARKERS.search(text):
        return None
    if any(marker in lowered for marker in _UI_STRINGS):
        return None

    cleaned = strip_markup(text)
    if len(cleaned) > MAX_TEXT_LENGTH:
        return None
    if len(cleaned.split("\n")) > MAX_TEXT_LINES:
        return None
    return cleaned or None


def looks_like_location(text: str) -> bool:
    lowered = text.lower()
    for word in _NARRATIVE_WORDS:
        if f" {word} " in lowered or lowered.startswith(f"{word} ") or lowered.endswith(f" {word}"):
            return False

    if "," in text:
        return True

    words = text.split()
    capitalised = [word for word in words if word[:1].isupper()]
    if words and len(capitalised) >= len(words) * 0.5:
        return True

    return any(keyword in lowered for keyword in _LOCATION_KEYWORDS)


def is_agency_slug(text: str) -> bool:
    stripped = text.strip()
    if _KNOWN_AGENCIES.match(stripped):
        return True
    words = stripped.split()
    return (
        0 < len(words) <= 3
        and stripped == stripped.upper()
        and "A" <= stripped[0] <= "Z"
    )


def select_title(lines: Iterable[str]) -> Optional[str]:
    """Pick the first caption line that is not a marker, location-date or agency slug."""

    for line in lines:
        if any(marker in line for marker in _TITLE_SKIP_MARKERS):
            continue
        if _LOCATION_DATE_PREFIX_RE.match(line):
            continue
        if is_agency_slug(line):
            continue
        return sanitize_text(line)
    return None


def _split_location(text: str) -> Tuple[Optional[str], Optional[str]]:
    if "," not in text:
        return sanitize_text(text), None
    parts = [part.strip() for part in text.split(",")]
    return sanitize_text(parts[0]), sanitize_text(", ".join(parts[1:]))


def _dedupe(values: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return list(seen)


class _Fields:
    """First-write-wins field accumulator."""

    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}

    def get(self, name: str) -> Any:
        return self.values.get(name)

    def offer(self, name: str, value: Any) -> None:
        if value is None or value == "":
            return
        if self.values.get(name) is None:
            self.values[name] = value

    def offer_date(self, value: Optional[str]) -> None:
        if not value or self.values.get("date") is not None:
            return
        self.values["date"] = value
        self.values["date_taken"] = normalize_date(value) or value


def _apply_label_values(fields: _Fields, pairs: Iterable[Tuple[str, str]]) -> None:
    for raw_label, raw_value in pairs:
        label = (raw_label or "").strip().rstrip(":").strip().lower()
        value = sanitize_text(raw_value)
        target = _LABEL_FIELDS.get(label)
        if not value or target is None:
            continue

        if target == "photographer":
            fields.offer("photographer", value)
            fields.offer("authors", value)
            if "©" in value or "Copyright" in value:
                fields.offer("copyright", value)
        elif target == "date":
            fields.offer_date(value)
        elif target == "title":
            fields.offer("title", value)
            fields.offer("match_event", value)
        elif target == "tags":
            tags = [tag.strip() for tag in _TAG_SPLIT_RE.split(value) if tag.strip()]
            if tags and not fields.get("tags"):
                fields.values["tags"] = tags
        else:
            fields.offer(target, value)


def _apply_caption_heuristics(fields: _Fields, caption: str) -> None:
    credit_match = _CREDIT_RE.search(caption)
    if credit_match:
        credit = sanitize_text(credit_match.group(1))
        if credit:
            credit = _CREDIT_PREFIX_RE.sub("", credit).strip()
            credit = re.sub(r"^:\s*", "", credit).strip()
        if credit:
            fields.offer("photographer", credit)
            fields.offer("authors", credit)
            fields.offer("copyright", credit)

    for line in (line.strip() for line in caption.split("\n")):
        match = _LOCATION_DATE_RE.match(line)
        if not match or fields.get("date") is not None:
            continue
        location, date_text = match.group(1).strip(), match.group(2).strip()
        if not looks_like_location(location):
            continue
        city, country = _split_location(location)
        fields.offer("city", city)
        fields.offer("country", country)
        fields.offer_date(date_text)

    where_match = _WHERE_RE.search(caption)
    if where_match:
        location = sanitize_text(where_match.group(1))
        if location:
            city, country = _split_location(location)
            fields.offer("city", city)
            fields.offer("country", country)

    when_match = _WHEN_RE.search(caption)
    if when_match:
        fields.offer_date(sanitize_text(when_match.group(1)))

    featuring_match = _FEATURING_RE.search(caption)
    if featuring_match:
        fields.offer("featuring", sanitize_text(featuring_match.group(1)))


def _apply_side_channel(fields: _Fields, embedded: SideChannelMetadata) -> None:
    fields.offer("photographer", sanitize_text(embedded.photographer))
    fields.offer("authors", fields.get("photographer"))
    fields.offer("image_size", sanitize_text(embedded.dimensions))
    fields.offer("file_size", sanitize_text(embedded.file_size))
    fields.offer("country", sanitize_text(embedded.country))
    fields.offer("city", sanitize_text(embedded.city))
    fields.offer_date(sanitize_text(embedded.date))
    fields.offer("title", sanitize_text(embedded.title or embedded.event_title))
    fields.offer("match_event", fields.get("title"))
    fields.offer("featuring", sanitize_text(embedded.featuring))
    fields.offer("copyright", sanitize_text(embedded.copyright))
    fields.offer("content_partner", sanitize_text(embedded.content_partner))
    if embedded.tags:
        fields.values["tags"] = _dedupe(list(fields.get("tags") or []) + list(embedded.tags))


def build_display_caption(values: Dict[str, Any]) -> Optional[str]:
    """Compose the export caption from normalized fields only."""

    lines: List[str] = []
    if values.get("title"):
        lines.append(values["title"])
    if values.get("featuring"):
        lines.append(f"Featuring: {values['featuring']}")

    location = ", ".join(part for part in (values.get("city"), values.get("country")) if part)
    when = values.get("date_taken")
    if location and when:
        lines.append(f"{location} - {when}")
    elif location:
        lines.append(location)
    elif when:
        lines.append(when)

    if values.get("photographer"):
        lines.append(f"Credit: {values['photographer']}")
    copyright_text = values.get("copyright")
    if copyright_text and copyright_text != values.get("photographer"):
        lines.append(f"Copyright: {copyright_text}")
    return "\n".join(lines) or None


def normalize(raw: RawPageData) -> Dict[str, Any]:
    """Return ExtractionRecord field values derived from ``raw``.

    Only populated fields are present in the result; ``tags`` is always a list.
    """

    fields = _Fields()
    caption_text = strip_markup(raw.caption).strip() if raw.caption else None
    caption_text = caption_text or None

    fields.offer("raw_caption", caption_text)
    fields.offer("content_partner", sanitize_text(raw.content_partner))
    keywords = [tag for tag in (sanitize_text(k) for k in raw.keywords) if tag]
    if keywords:
        fields.values["tags"] = keywords

    _apply_label_values(fields, raw.label_values)
    fields.offer("comments", caption_text)

    page_title = sanitize_text(raw.title)
    fields.offer("title", page_title)
    fields.offer("match_event", fields.get("title") or sanitize_text(caption_text))

    if caption_text:
        _apply_caption_heuristics(fields, caption_text)
        if fields.get("title") is None:
            lines = [line.strip() for line in caption_text.split("\n") if line.strip()]
            fields.offer("title", select_title(lines))
        if fields.get("title") is None:
            fields.offer("title", fields.get("match_event") or sanitize_text(caption_text))

    if raw.embedded is not None:
        _apply_side_channel(fields, raw.embedded)

    if fields.get("date") and not fields.get("date_taken"):
        fields.values["date_taken"] = normalize_date(fields.get("date")) or fields.get("date")

    result = dict(fields.values)
    result.setdefault("tags", [])
    caption = build_display_caption(result)
    if caption:
        result["caption"] = caption
    return result


__all__ = [
    "MAX_TEXT_LENGTH",
    "MAX_TEXT_LINES",
    "build_display_caption",
    "is_agency_slug",
    "looks_like_location",
    "normalize",
    "sanitize_text",
    "select_title",
    "strip_markup",
]
