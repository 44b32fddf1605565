from __future__ import annotations

import json
from pathlib import Path

from app.harvester import config
from app.harvester.telemetry import RunTelemetry


def test_finalize_writes_summary_and_phases() -> None:
    telemetry = RunTelemetry("job7", url="https://smartframe.com/gallery/demo")
    telemetry.mark_phase("discovering")
    telemetry.mark_phase("extracting")
    telemetry.add("ok", "item1")
    telemetry.add("failed", "item2", "HTTP 404", http_status=404)
    telemetry.add("ok", "item3")

    path = telemetry.finalize({"records": 3})

    assert path == config.RUNS_DIR / "run_job7.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["summary"] == {"count_ok": 2, "count_failed": 1}
    assert payload["records"] == 3
    assert [phase["phase"] for phase in payload["phases"]] == ["discovering", "extracting"]
    assert all(phase["seconds"] >= 0 for phase in payload["phases"])
    assert payload["entries"][1] == {
        "status": "failed",
        "item_id": "item2",
        "reason": "HTTP 404",
        "http_status": 404,
    }


def test_finalize_honours_directory(tmp_path: Path) -> None:
    path = RunTelemetry("job8").finalize(directory=tmp_path / "custom")

    assert path.parent == tmp_path / "custom"
    assert json.loads(path.read_text(encoding="utf-8"))["phases"] == []
