from __future__ import annotations

import importlib
import sys
from typing import List

import pytest

from app.harvester import config
from app.harvester.models import DiscoveredLink, ExtractionRecord, JobPhase


def _reload_main_module():
    if "app.main" in sys.modules:
        del sys.modules["app.main"]
    return importlib.import_module("app.main")


@pytest.fixture
def main_module(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, "MIN_FREE_MB", 0)
    main = _reload_main_module()
    started: List[tuple] = []
    monkeypatch.setattr(
        main, "_start_job_thread", lambda job_id, url, cfg: started.append((job_id, url, cfg))
    )
    main.started_jobs = started
    return main


def test_start_scrape_rejects_bad_urls(main_module) -> None:
    client = main_module.app.test_client()

    resp = client.post("/api/scrape", json={"url": "ftp://example.com/gallery"})

    assert resp.status_code == 400
    assert "url" in resp.get_json()["error"]
    assert main_module.started_jobs == []


def test_start_scrape_rejects_out_of_range_settings(main_module) -> None:
    client = main_module.app.test_client()

    resp = client.post(
        "/api/scrape", json={"url": "https://smartframe.com/gallery/demo", "concurrency": 50}
    )

    assert resp.status_code == 400
    assert "concurrency" in resp.get_json()["error"]

    resp = client.post(
        "/api/scrape", json={"url": "https://smartframe.com/gallery/demo", "max_images": "many"}
    )
    assert resp.status_code == 400


def test_start_scrape_creates_job(main_module) -> None:
    client = main_module.app.test_client()

    resp = client.post(
        "/api/scrape",
        json={"url": "https://smartframe.com/gallery/demo", "max_images": 10, "concurrency": 2},
    )

    assert resp.status_code == 202
    payload = resp.get_json()
    assert payload["status"] == "initializing"
    job_id, url, cfg = main_module.started_jobs[0]
    assert job_id == payload["job_id"]
    assert url == "https://smartframe.com/gallery/demo"
    assert cfg.max_images == 10
    assert cfg.concurrency == 2

    status = client.get(f"/api/scrape/{job_id}").get_json()
    assert status["phase"] == "initializing"
    assert status["records"] == []
    assert status["config"]["max_images"] == 10

    jobs = client.get("/api/jobs").get_json()["jobs"]
    assert [job["job_id"] for job in jobs] == [job_id]


def test_sink_updates_are_visible_through_the_api(main_module) -> None:
    client = main_module.app.test_client()
    job_id = client.post(
        "/api/scrape", json={"url": "https://smartframe.com/gallery/demo"}
    ).get_json()["job_id"]

    sink = main_module.JOBS.sink(job_id)
    sink.on_progress(5, 5, 10)
    assert client.get(f"/api/scrape/{job_id}").get_json()["progress"] == 50

    link = DiscoveredLink("item1", "https://smartframe.com/search/image/h/item1", "h")
    record = ExtractionRecord.partial(link)
    record.title = "Title"
    main_module.JOBS.entries[job_id].state.phase = JobPhase.COMPLETED
    sink.on_complete([record])

    status = client.get(f"/api/scrape/{job_id}").get_json()
    assert status["phase"] == "completed"
    assert status["progress"] == 100
    assert status["finished_at"]
    assert status["records"][0]["title"] == "Title"


def test_unknown_job_is_404(main_module) -> None:
    resp = main_module.app.test_client().get("/api/scrape/doesnotexist")
    assert resp.status_code == 404


def test_health_and_proxies_endpoints(main_module, monkeypatch: pytest.MonkeyPatch) -> None:
    client = main_module.app.test_client()

    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json()["ok"] is True

    proxies = client.get("/api/proxies").get_json()
    assert proxies == {"total": 0, "healthy": 0, "proxies": []}

    monkeypatch.setattr(config, "MIN_FREE_MB", -1)
    unhealthy = client.get("/api/health")
    assert unhealthy.status_code == 503
    assert unhealthy.get_json()["checks"]["config"]["ok"] is False


def test_failure_report_download(main_module) -> None:
    client = main_module.app.test_client()
    config.FAILURE_LOG_DIR.mkdir(parents=True, exist_ok=True)
    (config.FAILURE_LOG_DIR / "failed_scrapes_job_x.txt").write_text("report", encoding="utf-8")

    resp = client.get("/failures/failed_scrapes_job_x.txt")
    assert resp.status_code == 200
    assert resp.data == b"report"

    assert client.get("/failures/missing.txt").status_code == 404
    assert client.get("/failures/../secret.txt").status_code in {400, 404}


def test_logs_endpoint_returns_recent_lines(main_module) -> None:
    main_module.log_line("hello from the test")

    lines = main_module.app.test_client().get("/api/logs?limit=5").get_json()["lines"]

    assert any("hello from the test" in line for line in lines)


def test_export_endpoint(main_module) -> None:
    client = main_module.app.test_client()
    job_id = client.post(
        "/api/scrape", json={"url": "https://smartframe.com/gallery/demo"}
    ).get_json()["job_id"]
    link = DiscoveredLink("item1", "https://smartframe.com/search/image/h/item1", "h")
    record = ExtractionRecord.partial(link)
    record.title = "Title"
    main_module.JOBS.sink(job_id).on_complete([record])

    resp = client.get(f"/api/export/{job_id}")
    assert resp.status_code == 200
    assert resp.get_json()[0]["title"] == "Title"

    csv_resp = client.get(f"/api/export/{job_id}?format=csv")
    assert csv_resp.status_code == 200
    assert csv_resp.data.decode("utf-8").startswith("item_id,")

    assert client.get(f"/api/export/{job_id}?format=pdf").status_code == 400
    assert client.get("/api/export/unknown").status_code == 404
