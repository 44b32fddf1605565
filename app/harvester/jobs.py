"""In-memory job registry backing the web surface."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .models import ExtractionRecord, JobRunState, ScrapeConfig
from .utils import now_iso


@dataclass
class JobEntry:
    job_id: str
    url: str
    scrape_config: ScrapeConfig
    state: JobRunState
    created_at: str = field(default_factory=now_iso)
    finished_at: Optional[str] = None
    progress: int = 0
    records: List[ExtractionRecord] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self, *, include_records: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "job_id": self.job_id,
            "url": self.url,
            "config": self.scrape_config.to_dict(),
            "created_at": self.created_at,
            "finished_at": self.finished_at,
            "progress": self.progress,
            "record_count": len(self.records),
            "failure_count": len(self.failures),
            **self.state.to_dict(),
        }
        if include_records:
            data["records"] = [record.to_dict() for record in self.records]
        return data


class JobSink:
    """Job-state sink writing orchestrator callbacks into one ``JobEntry``."""

    def __init__(self, store: "JobStore", job_id: str) -> None:
        self._store = store
        self._job_id = job_id

    def on_progress(self, attempted: int, succeeded: int, total: int) -> None:
        with self._store.lock:
            entry = self._store.entries[self._job_id]
            entry.progress = round(attempted / total * 100) if total else 100

    def on_complete(self, records: List[ExtractionRecord]) -> None:
        with self._store.lock:
            entry = self._store.entries[self._job_id]
            entry.records = list(records)
            entry.progress = 100
            entry.finished_at = now_iso()

    def on_error(self, message: str) -> None:
        with self._store.lock:
            entry = self._store.entries[self._job_id]
            entry.finished_at = now_iso()


class JobStore:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: Dict[str, JobEntry] = {}

    def create(self, url: str, scrape_config: ScrapeConfig) -> JobEntry:
        job_id = uuid.uuid4().hex[:12]
        entry = JobEntry(
            job_id=job_id,
            url=url,
            scrape_config=scrape_config,
            state=JobRunState(job_id=job_id),
        )
        with self.lock:
            self.entries[job_id] = entry
        return entry

    def sink(self, job_id: str) -> JobSink:
        return JobSink(self, job_id)

    def get(self, job_id: str, *, include_records: bool = True) -> Optional[Dict[str, Any]]:
        with self.lock:
            entry = self.entries.get(job_id)
            return entry.to_dict(include_records=include_records) if entry else None

    def record_failures(self, job_id: str, failures: List[Dict[str, Any]]) -> None:
        with self.lock:
            self.entries[job_id].failures = list(failures)

    def export_rows(self, job_id: str) -> Optional[Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]]:
        """Return ``(records, failures)`` as plain dicts, or ``None`` for unknown jobs."""

        with self.lock:
            entry = self.entries.get(job_id)
            if entry is None:
                return None
            return [record.to_dict() for record in entry.records], list(entry.failures)

    def list(self) -> List[Dict[str, Any]]:
        with self.lock:
            entries = sorted(self.entries.values(), key=lambda e: e.created_at, reverse=True)
            return [entry.to_dict() for entry in entries]


__all__ = ["JobEntry", "JobSink", "JobStore"]
