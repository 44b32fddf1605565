from __future__ import annotations

from typing import Any, Dict, Optional

from . import config
from .models import SideChannelMetadata
from .utils import log_line


def is_metadata_url(url: str) -> bool:
    return config.METADATA_URL_HOST in url and any(
        fragment in url for fragment in config.METADATA_URL_PATHS
    )


class MetadataCache:
    """Item id -> metadata captured from in-flight JSON responses.

    Filled by the Playwright ``response`` listener of every session in a job
    and read before page-level extraction of the matching item.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, SideChannelMetadata] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def store(self, payload: Any) -> Optional[str]:
        """Cache ``payload`` under its item id; return the id, or ``None`` if skipped."""

        metadata = SideChannelMetadata.from_payload(payload)
        if metadata is None or not metadata.item_id:
            return None
        self._entries[metadata.item_id] = metadata
        return metadata.item_id

    def get(self, item_id: str) -> Optional[SideChannelMetadata]:
        return self._entries.get(item_id)

    async def handle_response(self, response: Any) -> None:
        url = response.url
        if not is_metadata_url(url):
            return
        content_type = (response.headers or {}).get("content-type", "")
        if "application/json" not in content_type:
            return
        try:
            payload = await response.json()
        except Exception:  # noqa: BLE001
            # Bodies can be unavailable for redirects or already-closed pages.
            return
        item_id = self.store(payload)
        if item_id:
            log_line(f"[CAPTURE] Cached metadata for item {item_id}")


__all__ = ["MetadataCache", "is_metadata_url"]
