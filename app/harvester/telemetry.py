"""Per-job run telemetry written next to the failure reports."""

from __future__ import annotations

import json
import time
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config


class RunTelemetry:
    """Collect per-item outcomes for one job and dump them as JSON."""

    def __init__(self, job_id: str, *, url: str = "") -> None:
        self.job_id = job_id
        self.url = url
        self.started_at = time.time()
        self.entries: List[Dict[str, Any]] = []
        self.phases: List[Dict[str, Any]] = []
        self.summary: Dict[str, Any] = defaultdict(int)

    def mark_phase(self, phase: str) -> None:
        """Record that the job entered ``phase`` now."""

        self.phases.append({"phase": phase, "at": time.time()})

    def add(self, status: str, item_id: str, reason: str = "", **meta: Any) -> None:
        self.entries.append(
            {
                "status": status,
                "item_id": item_id,
                "reason": reason,
                **meta,
            }
        )
        self.summary[f"count_{status}"] += 1

    def _phase_durations(self) -> List[Dict[str, Any]]:
        marks = self.phases + [{"phase": None, "at": time.time()}]
        return [
            {"phase": current["phase"], "seconds": round(following["at"] - current["at"], 3)}
            for current, following in zip(marks, marks[1:])
        ]

    def finalize(self, extra: Optional[Dict[str, Any]] = None, directory: Optional[Path] = None) -> Path:
        payload = {
            "job_id": self.job_id,
            "url": self.url,
            "started_at": self.started_at,
            "ended_at": time.time(),
            "summary": dict(self.summary),
            "phases": self._phase_durations(),
            "entries": self.entries,
            **(extra or {}),
        }
        target_dir = directory or config.RUNS_DIR
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"run_{self.job_id}.json"
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        return path


__all__ = ["RunTelemetry"]
