from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from . import config
from .logging_utils import _scraper_event
from .models import FailureRecord
from .utils import log_line, now_iso


class FailureLog:
    """Live failure table for one job, keyed by item id.

    A new failure for an item replaces the previous record and bumps
    ``attempts``; a later success removes it.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self._records: Dict[str, FailureRecord] = {}

    def record_failure(
        self,
        item_id: str,
        url: str,
        reason: str,
        *,
        http_status: Optional[int] = None,
        error_code: Optional[str] = None,
        retry_round: Optional[int] = None,
        attempts: Optional[int] = None,
    ) -> FailureRecord:
        previous = self._records.get(item_id)
        if attempts is None:
            attempts = previous.attempts + 1 if previous else 1
        record = FailureRecord(
            item_id=item_id,
            url=url,
            reason=reason,
            attempts=attempts,
            timestamp_utc=now_iso(),
            http_status=http_status,
            retry_round=retry_round,
            error_code=error_code,
        )
        self._records[item_id] = record
        _scraper_event(
            "state",
            phase="failure_log",
            kind="recorded",
            job_id=self.job_id,
            item_id=item_id,
            reason=reason,
            attempts=attempts,
            http_status=http_status,
            error_code=error_code,
            retry_round=retry_round,
        )
        return record

    def remove(self, item_id: str) -> bool:
        removed = self._records.pop(item_id, None) is not None
        if removed:
            _scraper_event(
                "state", phase="failure_log", kind="removed", job_id=self.job_id, item_id=item_id
            )
        return removed

    def get(self, item_id: str) -> Optional[FailureRecord]:
        return self._records.get(item_id)

    def failures(self) -> List[FailureRecord]:
        return list(self._records.values())

    def count(self) -> int:
        return len(self._records)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._records

    def render_report(self) -> str:
        lines = [
            f"Failed scrapes for job {self.job_id}",
            f"Generated: {now_iso()}",
            f"Total failures: {self.count()}",
            "=" * 60,
        ]
        for index, record in enumerate(self.failures(), start=1):
            lines.extend(
                [
                    f"{index}. Item ID: {record.item_id}",
                    f"   URL: {record.url}",
                    f"   Reason: {record.reason}",
                    f"   Attempts: {record.attempts}",
                    f"   HTTP status: {record.http_status if record.http_status is not None else 'n/a'}",
                    f"   Retry round: {record.retry_round if record.retry_round is not None else 'n/a'}",
                    f"   Timestamp: {record.timestamp_utc}",
                    "",
                ]
            )
        return "\n".join(lines)

    def write_report(self, directory: Optional[Path] = None) -> Optional[Path]:
        """Write the aggregated report; return its path, or ``None`` when empty."""

        if not self._records:
            return None
        target_dir = directory or config.FAILURE_LOG_DIR
        target_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        path = target_dir / f"failed_scrapes_{self.job_id}_{stamp}.txt"
        path.write_text(self.render_report(), encoding="utf-8")
        log_line(f"[FAILURES] {self.count()} failures written to {path}")
        return path


__all__ = ["FailureLog"]
