"""Job orchestrator: discovery, extraction, retry rounds and finalization.

One ``JobOrchestrator.run`` call drives one job through its phases and owns the
browser for that job. Long-lived network identity services (proxy pool and VPN
controller) come in through a ``ServiceContext`` and outlive the job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from . import config, page_queries
from .discovery import DiscoveryEngine
from .failures import FailureLog
from .logging_utils import _scraper_event, bind_job
from .models import DiscoveredLink, ExtractionRecord, JobPhase, JobRunState, ScrapeConfig
from .navigation import NavigationError, navigate
from .network_capture import MetadataCache
from .proxy_pool import ProxyPool
from .retry_rounds import RetryScheduler
from .selectors import GALLERY_SELECTORS
from .session import DEFAULT_PROFILE, AntiDetectionProfile, BrowserSession, PlaywrightBrowser
from .telemetry import RunTelemetry
from .utils import log_line, short_error_message, sleep_ms
from .vpn import VPNController
from .worker_pool import ExtractionWorkerPool

# Fallback wait when the gallery selectors never show up on the entry page.
GALLERY_FALLBACK_DELAY_MS = 3000


@dataclass
class ServiceContext:
    """Network identity services shared by every job in the process."""

    proxy_pool: ProxyPool = field(default_factory=ProxyPool)
    vpn: VPNController = field(default_factory=VPNController)

    @classmethod
    def from_environment(cls) -> "ServiceContext":
        return cls(proxy_pool=ProxyPool.from_environment(), vpn=VPNController.from_environment())


class JobStateSink(Protocol):
    def on_progress(self, attempted: int, succeeded: int, total: int) -> None: ...

    def on_complete(self, records: List[ExtractionRecord]) -> None: ...

    def on_error(self, message: str) -> None: ...


class NullSink:
    def on_progress(self, attempted: int, succeeded: int, total: int) -> None:
        return None

    def on_complete(self, records: List[ExtractionRecord]) -> None:
        return None

    def on_error(self, message: str) -> None:
        return None


class Browser(Protocol):
    async def start(self) -> None: ...

    async def open_session(
        self, profile: AntiDetectionProfile = DEFAULT_PROFILE, *, on_response: Any = None
    ) -> BrowserSession: ...

    async def close(self) -> None: ...


BrowserFactory = Callable[[Optional[ProxyPool]], Browser]


def _default_browser_factory(proxy_pool: Optional[ProxyPool]) -> Browser:
    return PlaywrightBrowser(proxy_pool=proxy_pool if proxy_pool and proxy_pool.size else None)


def merge_records(
    links: Sequence[DiscoveredLink],
    records: Sequence[ExtractionRecord],
    recovered: Sequence[ExtractionRecord],
) -> List[ExtractionRecord]:
    """Overlay recovered records on first-pass ones, keyed by item id, in link order."""

    by_id: Dict[str, ExtractionRecord] = {record.item_id: record for record in records}
    for record in recovered:
        by_id[record.item_id] = record
    ordered = [by_id.pop(link.item_id) for link in links if link.item_id in by_id]
    ordered.extend(by_id.values())
    return ordered


class JobOrchestrator:
    def __init__(
        self,
        services: Optional[ServiceContext] = None,
        *,
        browser_factory: BrowserFactory = _default_browser_factory,
        strategies: Sequence[page_queries.PageQueryStrategy] = page_queries.DEFAULT_STRATEGIES,
        change_vpn_on_start: bool = config.VPN_CHANGE_ON_START,
        sleep: Callable[[float], Awaitable[None]] = sleep_ms,
    ) -> None:
        self.services = services or ServiceContext()
        self._browser_factory = browser_factory
        self._strategies = strategies
        self._change_vpn_on_start = change_vpn_on_start
        self._sleep = sleep
        self.state: Optional[JobRunState] = None
        self.failure_log: Optional[FailureLog] = None
        self.retry_rounds_run = 0

    def _set_phase(self, state: JobRunState, phase: JobPhase, telemetry: RunTelemetry) -> None:
        state.phase = phase
        telemetry.mark_phase(phase.value)
        _scraper_event("state", phase="job", kind="phase", job_id=state.job_id, job_phase=phase.value)
        log_line(f"[JOB {state.job_id}] Phase -> {phase.value}")

    def _make_pool(
        self,
        browser: Browser,
        failure_log: FailureLog,
        scrape_config: ScrapeConfig,
        cache: MetadataCache,
        thumbnails: Dict[str, str],
        *,
        retry_round: Optional[int] = None,
    ) -> ExtractionWorkerPool:
        async def open_session() -> BrowserSession:
            return await browser.open_session(DEFAULT_PROFILE, on_response=cache.handle_response)

        inter_batch_delay = config.INTER_BATCH_DELAY_MS
        if retry_round is not None:
            inter_batch_delay = config.RETRY_BATCH_DELAY_MS * retry_round
        return ExtractionWorkerPool(
            open_session,
            failure_log,
            scrape_config=scrape_config,
            cache=cache,
            proxy_pool=self.services.proxy_pool,
            thumbnails=thumbnails,
            strategies=self._strategies,
            inter_batch_delay_ms=inter_batch_delay,
            retry_round=retry_round,
            sleep=self._sleep,
        )

    async def _discover(
        self, session: BrowserSession, url: str, scrape_config: ScrapeConfig
    ) -> tuple[List[DiscoveredLink], Dict[str, str]]:
        result = await navigate(session, url, sleep=self._sleep)
        if not result.ok:
            raise NavigationError(url, result)

        ready = await session.wait_for(
            GALLERY_SELECTORS.gallery_ready,
            timeout_ms=config.GALLERY_READY_TIMEOUT_SECONDS * 1000,
        )
        if not ready:
            log_line("[DISCOVERY] Gallery selectors not found; continuing after a short wait")
            await self._sleep(GALLERY_FALLBACK_DELAY_MS)

        thumbnails = await page_queries.collect_thumbnails(session)
        engine = DiscoveryEngine(
            session,
            max_items=scrape_config.max_images,
            scroll_delay_ms=scrape_config.scroll_delay_ms,
            time_budget_seconds=scrape_config.job_timeout_seconds,
            sleep=self._sleep,
        )
        discovery = await engine.run(auto_scroll=scrape_config.auto_scroll)
        return discovery.links, thumbnails

    async def run(
        self,
        job_id: str,
        url: str,
        scrape_config: Optional[ScrapeConfig] = None,
        sink: Optional[JobStateSink] = None,
        *,
        state: Optional[JobRunState] = None,
    ) -> List[ExtractionRecord]:
        """Run one job to completion and return its merged records.

        Raises whatever ended the job (a fatal entry navigation, a browser
        failure) after marking the state FAILED and notifying ``sink``.
        """

        with bind_job(job_id):
            return await self._run(job_id, url, scrape_config, sink, state)

    async def _run(
        self,
        job_id: str,
        url: str,
        scrape_config: Optional[ScrapeConfig],
        sink: Optional[JobStateSink],
        state: Optional[JobRunState],
    ) -> List[ExtractionRecord]:
        scrape_config = scrape_config or ScrapeConfig()
        sink = sink or NullSink()
        state = state or JobRunState(job_id=job_id)
        self.state = state
        failure_log = FailureLog(job_id)
        self.failure_log = failure_log
        telemetry = RunTelemetry(job_id, url=url)
        cache = MetadataCache()
        browser: Optional[Browser] = None
        session: Optional[BrowserSession] = None

        async def on_progress(attempted: int, succeeded: int, total: int) -> None:
            state.attempted = attempted
            state.succeeded = succeeded
            state.failed = failure_log.count()
            sink.on_progress(attempted, succeeded, total)

        try:
            self._set_phase(state, JobPhase.INITIALIZING, telemetry)
            vpn = self.services.vpn
            if self._change_vpn_on_start and vpn.enabled:
                location = config.VPN_LOCATIONS[0] if config.VPN_LOCATIONS else None
                if not await vpn.change_and_verify(location):
                    log_line("[JOB] VPN change on start failed; continuing on the current connection")

            browser = self._browser_factory(self.services.proxy_pool)
            await browser.start()
            session = await browser.open_session(DEFAULT_PROFILE, on_response=cache.handle_response)

            self._set_phase(state, JobPhase.DISCOVERING, telemetry)
            links, thumbnails = await self._discover(session, url, scrape_config)
            state.total = len(links)

            self._set_phase(state, JobPhase.EXTRACTING, telemetry)
            pool = self._make_pool(browser, failure_log, scrape_config, cache, thumbnails)
            records = await pool.extract_all(links, scrape_config.concurrency, on_progress)

            recovered: List[ExtractionRecord] = []
            if failure_log.count() and scrape_config.extract_details:
                self._set_phase(state, JobPhase.RETRYING, telemetry)
                active_browser = browser

                def make_retry_pool(round_number: int) -> ExtractionWorkerPool:
                    state.retry_round = round_number
                    return self._make_pool(
                        active_browser,
                        failure_log,
                        scrape_config,
                        cache,
                        thumbnails,
                        retry_round=round_number,
                    )

                scheduler = RetryScheduler(
                    failure_log,
                    make_retry_pool,
                    links={link.item_id: link for link in links},
                    max_rounds=scrape_config.max_retry_rounds,
                    vpn=vpn,
                    sleep=self._sleep,
                )
                recovered = await scheduler.retry_failures()
                self.retry_rounds_run = scheduler.rounds_run

            self._set_phase(state, JobPhase.FINALIZING, telemetry)
            merged = merge_records(links, records, recovered)
            state.failed = failure_log.count()
            state.succeeded = sum(1 for record in merged if record.item_id not in failure_log)
            state.attempted = len(links)

            for record in merged:
                failure = failure_log.get(record.item_id)
                if failure is None:
                    telemetry.add("ok", record.item_id)
                else:
                    telemetry.add(
                        "failed",
                        record.item_id,
                        failure.reason,
                        http_status=failure.http_status,
                        attempts=failure.attempts,
                    )
            report_path = failure_log.write_report()
            telemetry.finalize(
                {
                    "records": len(merged),
                    "failures": failure_log.count(),
                    "retry_rounds": self.retry_rounds_run,
                    "failure_report": str(report_path) if report_path else None,
                    "config": scrape_config.to_dict(),
                }
            )

            self._set_phase(state, JobPhase.COMPLETED, telemetry)
            log_line(
                f"[JOB {job_id}] Completed: {state.succeeded}/{state.total} items, "
                f"{state.failed} failure(s), {self.retry_rounds_run} retry round(s)"
            )
            sink.on_complete(merged)
            return merged
        except Exception as exc:
            state.phase = JobPhase.FAILED
            state.error = short_error_message(exc)
            _scraper_event("error", phase="job", job_id=job_id, error=state.error)
            log_line(f"[JOB {job_id}] Failed: {state.error}")
            sink.on_error(state.error)
            raise
        finally:
            if session is not None:
                try:
                    await session.close()
                except Exception as exc:  # noqa: BLE001
                    log_line(f"[JOB {job_id}] Error closing discovery session: {exc}")
            if browser is not None:
                await browser.close()


__all__ = [
    "BrowserFactory",
    "JobOrchestrator",
    "JobStateSink",
    "NullSink",
    "ServiceContext",
    "merge_records",
]
