"""Data model shared by the discovery, extraction and retry stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from . import config
from .date_utils import normalize_date


@dataclass
class ScrapeConfig:
    """Per-job knobs accepted from the CLI and the web API."""

    max_images: int = 0
    extract_details: bool = True
    auto_scroll: bool = True
    scroll_delay_ms: int = config.DEFAULT_SCROLL_DELAY_MS
    concurrency: int = field(default_factory=lambda: config.DEFAULT_CONCURRENCY)
    random_delay_min_ms: int = 0
    random_delay_max_ms: int = 2000
    stagger_tab_delay: bool = True
    max_retry_rounds: int = field(default_factory=lambda: config.DEFAULT_MAX_RETRY_ROUNDS)
    # 0 disables the discovery time budget.
    job_timeout_seconds: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ScrapeConfig":
        """Build a config from loosely typed input, ignoring unknown keys.

        Raises ``ValueError`` when a known key cannot be coerced.
        """

        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, raw in data.items():
            if key not in known or raw is None:
                continue
            default = known[key].default
            if isinstance(default, bool):
                if isinstance(raw, str):
                    values[key] = raw.strip().lower() in {"1", "true", "yes", "on"}
                else:
                    values[key] = bool(raw)
            else:
                try:
                    values[key] = int(raw)
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"{key} must be an integer") from exc
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DiscoveredLink:
    item_id: str
    canonical_url: str
    collection_hash: str = ""


_RECORD_TEXT_FIELDS: Tuple[str, ...] = (
    "thumbnail_url",
    "title",
    "caption",
    "raw_caption",
    "featuring",
    "comments",
    "copyright",
    "date",
    "date_taken",
    "authors",
    "content_partner",
    "photographer",
    "country",
    "city",
    "image_size",
    "file_size",
    "match_event",
)


@dataclass
class ExtractionRecord:
    item_id: str
    source_url: str
    collection_hash: str = ""
    thumbnail_url: Optional[str] = None
    title: Optional[str] = None
    caption: Optional[str] = None
    raw_caption: Optional[str] = None
    featuring: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    comments: Optional[str] = None
    copyright: Optional[str] = None
    date: Optional[str] = None
    date_taken: Optional[str] = None
    authors: Optional[str] = None
    content_partner: Optional[str] = None
    photographer: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    image_size: Optional[str] = None
    file_size: Optional[str] = None
    match_event: Optional[str] = None

    @classmethod
    def partial(cls, link: DiscoveredLink, thumbnail_url: Optional[str] = None) -> "ExtractionRecord":
        """Return an identifiers-only record for ``link``."""

        return cls(
            item_id=link.item_id,
            source_url=link.canonical_url,
            collection_hash=link.collection_hash,
            thumbnail_url=thumbnail_url or None,
        )

    def apply(self, values: Mapping[str, Any], *, overwrite: bool = True) -> None:
        """Copy populated ``values`` onto this record.

        With ``overwrite`` false only fields that are still unknown are filled.
        Empty strings and empty tag lists never replace anything.
        """

        for name in _RECORD_TEXT_FIELDS:
            value = values.get(name)
            if value is None or value == "":
                continue
            if overwrite or getattr(self, name) is None:
                setattr(self, name, value)

        tags = values.get("tags")
        if tags and (overwrite or not self.tags):
            self.tags = list(tags)

    def has_meaningful_content(self, required: Iterable[str] = config.MEANINGFUL_FIELDS) -> bool:
        return any(getattr(self, name, None) for name in required)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FailureRecord:
    item_id: str
    url: str
    reason: str
    attempts: int
    timestamp_utc: str
    http_status: Optional[int] = None
    retry_round: Optional[int] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProxyEndpoint:
    host: str
    port: int
    protocol: str = "http"
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def key(self) -> str:
        # Credentials are not part of the identity.
        return f"{self.protocol}://{self.host}:{self.port}"


@dataclass
class ProxyHealth:
    endpoint_key: str
    total_uses: int = 0
    successes: int = 0
    consecutive_failures: int = 0
    is_healthy: bool = True
    last_used_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None

    def snapshot(self) -> "ProxyHealth":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("last_used_at", "last_success_at", "last_failure_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data


class JobPhase(str, Enum):
    INITIALIZING = "initializing"
    DISCOVERING = "discovering"
    EXTRACTING = "extracting"
    RETRYING = "retrying"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobRunState:
    job_id: str
    phase: JobPhase = JobPhase.INITIALIZING
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    total: int = 0
    retry_round: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data


# Alias tables for JSON payloads found in page scripts or captured network
# responses. The first alias present with a usable value wins.
_SIDE_CHANNEL_ALIASES: Dict[str, Tuple[str, ...]] = {
    "item_id": ("imageId", "image_id", "id"),
    "photographer": ("photographer", "credit", "byline", "author"),
    "dimensions": ("dimensions", "imageSize", "size"),
    "file_size": ("fileSize", "file_size"),
    "country": ("country", "countryCode", "location.country"),
    "city": ("city", "location.city", "location"),
    "date": ("date", "dateCreated", "dateTaken", "created", "created_at"),
    "event_title": ("eventTitle", "event", "matchEvent"),
    "title": ("title", "headline", "name"),
    "caption": ("caption", "description"),
    "featuring": ("featuring", "people", "subject"),
    "copyright": ("copyright", "copyrightNotice", "credit"),
    "comments": ("comments", "notes"),
    "authors": ("authors", "author", "photographer"),
    "content_partner": ("contentPartner", "provider"),
}
_SIDE_CHANNEL_TAG_KEYS: Tuple[str, ...] = ("tags", "keywords", "categories")


def _lookup(payload: Mapping[str, Any], path: str) -> Any:
    current: Any = payload
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _scalar_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, tuple, bool)):
        return None
    text = str(value).strip()
    return text or None


@dataclass
class SideChannelMetadata:
    """Metadata recovered from a JSON payload outside the rendered DOM."""

    item_id: Optional[str] = None
    photographer: Optional[str] = None
    dimensions: Optional[str] = None
    file_size: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    date: Optional[str] = None
    event_title: Optional[str] = None
    title: Optional[str] = None
    caption: Optional[str] = None
    featuring: Optional[str] = None
    copyright: Optional[str] = None
    comments: Optional[str] = None
    authors: Optional[str] = None
    content_partner: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["SideChannelMetadata"]:
        """Map a decoded JSON object onto known fields; other keys are ignored."""

        if not isinstance(payload, Mapping):
            return None

        values: Dict[str, Any] = {}
        for name, aliases in _SIDE_CHANNEL_ALIASES.items():
            for alias in aliases:
                text = _scalar_text(_lookup(payload, alias))
                if text:
                    values[name] = text
                    break

        tags: List[str] = []
        for key in _SIDE_CHANNEL_TAG_KEYS:
            raw = payload.get(key)
            if isinstance(raw, (list, tuple)):
                tags = [str(t).strip() for t in raw if t is not None and str(t).strip()]
                break

        if not values and not tags:
            return None
        return cls(tags=tags, **values)

    def to_record_fields(self) -> Dict[str, Any]:
        """Return the payload expressed as ExtractionRecord field names."""

        return {
            "photographer": self.photographer,
            "authors": self.authors or self.photographer,
            "image_size": self.dimensions,
            "file_size": self.file_size,
            "country": self.country,
            "city": self.city,
            "date": self.date,
            "date_taken": (normalize_date(self.date) or self.date) if self.date else None,
            "title": self.title,
            "match_event": self.event_title or self.title or self.caption,
            "raw_caption": self.caption,
            "comments": self.comments or self.caption,
            "featuring": self.featuring,
            "copyright": self.copyright,
            "content_partner": self.content_partner,
            "tags": list(self.tags),
        }


@dataclass
class RawPageData:
    """Unprocessed fragments returned by the page-query strategies."""

    title: Optional[str] = None
    caption: Optional[str] = None
    label_values: List[Tuple[str, str]] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    content_partner: Optional[str] = None
    embedded: Optional[SideChannelMetadata] = None


__all__ = [
    "DiscoveredLink",
    "ExtractionRecord",
    "FailureRecord",
    "JobPhase",
    "JobRunState",
    "ProxyEndpoint",
    "ProxyHealth",
    "RawPageData",
    "ScrapeConfig",
    "SideChannelMetadata",
]
