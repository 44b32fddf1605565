from __future__ import annotations

import asyncio
import json
from typing import List

import pytest

from app.harvester import config
from app.harvester.models import DiscoveredLink, ExtractionRecord, JobPhase, RawPageData, ScrapeConfig
from app.harvester.navigation import NavigationError
from app.harvester.orchestrator import JobOrchestrator, ServiceContext, merge_records
from tests.fakes import GALLERY_URL, FakeBrowser, FakeSite, RecordingSink, SleepRecorder, no_sleep


def _orchestrator(site: FakeSite, browsers: List[FakeBrowser], sleep=no_sleep) -> JobOrchestrator:
    def factory(proxy_pool) -> FakeBrowser:
        browser = FakeBrowser(site)
        browsers.append(browser)
        return browser

    return JobOrchestrator(
        ServiceContext(),
        browser_factory=factory,
        strategies=[site.strategy],
        change_vpn_on_start=False,
        sleep=sleep,
    )


def _config(**overrides) -> ScrapeConfig:
    values = {"concurrency": 5, "stagger_tab_delay": False, "max_retry_rounds": 3}
    values.update(overrides)
    return ScrapeConfig(**values)


def test_transient_failures_recover_in_one_retry_round() -> None:
    site = FakeSite(items=10)
    site.script(site.url("item3"), 500, 500, 500)
    site.script(site.url("item7"), 500, 500, 500)
    browsers: List[FakeBrowser] = []
    sink = RecordingSink()
    orchestrator = _orchestrator(site, browsers)

    records = asyncio.run(orchestrator.run("job1", GALLERY_URL, _config(), sink))

    assert [record.item_id for record in records] == site.items
    assert all(record.title == f"Title for {record.item_id}" for record in records)
    assert orchestrator.retry_rounds_run == 1
    assert orchestrator.failure_log.count() == 0
    assert site.attempts(site.url("item3")) == 4
    assert site.attempts(site.url("item7")) == 4

    state = orchestrator.state
    assert state.phase == JobPhase.COMPLETED
    assert state.total == 10
    assert state.succeeded == 10
    assert state.failed == 0
    assert state.retry_round == 1

    assert sink.progress == [(5, 5, 10), (10, 10, 10)]
    assert len(sink.completed) == 1
    assert sink.errors == []
    assert browsers[0].started and browsers[0].closed

    run_file = config.RUNS_DIR / "run_job1.json"
    assert run_file.exists()
    summary = json.loads(run_file.read_text(encoding="utf-8"))
    assert summary["retry_rounds"] == 1
    assert summary["failure_report"] is None
    assert not list(config.FAILURE_LOG_DIR.glob("failed_scrapes_job1_*.txt"))


def test_terminal_and_persistent_failures_reach_the_report() -> None:
    site = FakeSite(items=6)
    site.script(site.url("item2"), 404)
    site.script(site.url("item5"), *([500] * 12))
    browsers: List[FakeBrowser] = []
    orchestrator = _orchestrator(site, browsers)

    records = asyncio.run(orchestrator.run("job2", GALLERY_URL, _config()))

    by_id = {record.item_id: record for record in records}
    assert len(records) == 6
    assert by_id["item2"].title is None
    assert by_id["item2"].source_url == site.url("item2")

    failure_log = orchestrator.failure_log
    missing = failure_log.get("item2")
    assert missing.reason == "HTTP 404"
    assert missing.attempts == 1
    assert site.attempts(site.url("item2")) == 1

    persistent = failure_log.get("item5")
    assert persistent.attempts == 4
    assert persistent.retry_round == 3
    assert site.attempts(site.url("item5")) == 12
    assert orchestrator.retry_rounds_run == 3

    assert orchestrator.state.succeeded == 4
    assert orchestrator.state.failed == 2

    reports = list(config.FAILURE_LOG_DIR.glob("failed_scrapes_job2_*.txt"))
    assert len(reports) == 1
    text = reports[0].read_text(encoding="utf-8")
    assert "Item ID: item2" in text
    assert "Item ID: item5" in text
    assert "Total failures: 2" in text


def test_entry_navigation_failure_fails_the_job() -> None:
    site = FakeSite(items=3)
    site.script(GALLERY_URL, 500, 500, 500)
    browsers: List[FakeBrowser] = []
    sink = RecordingSink()
    orchestrator = _orchestrator(site, browsers)

    with pytest.raises(NavigationError):
        asyncio.run(orchestrator.run("job3", GALLERY_URL, _config(), sink))

    assert orchestrator.state.phase == JobPhase.FAILED
    assert "HTTP 500" in orchestrator.state.error
    assert len(sink.errors) == 1
    assert sink.completed == []
    assert browsers[0].closed
    assert browsers[0].sessions[0].closed
    assert all(site.attempts(site.url(item_id)) == 0 for item_id in site.items)


def test_details_disabled_skips_retry_phase() -> None:
    site = FakeSite(items=3)
    browsers: List[FakeBrowser] = []
    orchestrator = _orchestrator(site, browsers)

    records = asyncio.run(
        orchestrator.run("job4", GALLERY_URL, _config(extract_details=False))
    )

    assert [record.item_id for record in records] == site.items
    assert all(record.thumbnail_url for record in records)
    assert orchestrator.retry_rounds_run == 0
    # Only the discovery session was opened.
    assert len(browsers[0].sessions) == 1


def test_merge_records_prefers_recovered_and_keeps_link_order() -> None:
    links = [DiscoveredLink("b", "https://x/b"), DiscoveredLink("a", "https://x/a")]
    first = [
        ExtractionRecord(item_id="a", source_url="https://x/a"),
        ExtractionRecord(item_id="b", source_url="https://x/b"),
    ]
    recovered = [ExtractionRecord(item_id="a", source_url="https://x/a", title="Recovered")]

    merged = merge_records(links, first, recovered)

    assert [record.item_id for record in merged] == ["b", "a"]
    assert merged[1].title == "Recovered"


def test_retry_rounds_slow_down_between_batches_and_rounds() -> None:
    site = FakeSite(items=4)
    site.pages[site.url("item2")] = RawPageData()
    site.pages[site.url("item4")] = RawPageData()
    sleeper = SleepRecorder()
    orchestrator = _orchestrator(site, [], sleep=sleeper)

    asyncio.run(
        orchestrator.run(
            "job6", GALLERY_URL, _config(auto_scroll=False, max_retry_rounds=2)
        )
    )

    # Round 1: one 3s gap between its two single-item batches.
    # Round 2: a 10s pause before it, then a 6s gap between batches.
    assert sleeper.calls == [3000, 10000, 6000]
    assert orchestrator.retry_rounds_run == 2
    assert orchestrator.failure_log.get("item2").retry_round == 2
    assert orchestrator.failure_log.get("item4").attempts == 3
