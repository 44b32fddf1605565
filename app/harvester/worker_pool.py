"""Fixed-size pool of browser sessions extracting item detail pages.

Links are processed in strict batches of ``concurrency``: every task in a batch
finishes before the next batch starts. Per-item failures never escape a task;
they end up in the job's ``FailureLog`` and the task yields a partial record
(or ``None`` for an uncaught exception).
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from . import config, page_queries
from .error_codes import ErrorCode
from .failures import FailureLog
from .logging_utils import _scraper_event
from .models import DiscoveredLink, ExtractionRecord, ScrapeConfig
from .navigation import NavResult, navigate
from .network_capture import MetadataCache
from .normalizer import normalize
from .proxy_pool import ProxyPool
from .selectors import GALLERY_SELECTORS
from .session import BrowserSession
from .utils import log_line, random_delay_ms, short_error_message, sleep_ms

SessionFactory = Callable[[], Awaitable[BrowserSession]]
ProgressCallback = Callable[[int, int, int], Awaitable[None]]

# Navigation outcomes that count against the proxy that carried them.
_PROXY_FAILURE_CODES = {ErrorCode.NETWORK, ErrorCode.RATE_LIMITED}


class ExtractionWorkerPool:
    def __init__(
        self,
        open_session: Optional[SessionFactory],
        failure_log: FailureLog,
        *,
        scrape_config: Optional[ScrapeConfig] = None,
        cache: Optional[MetadataCache] = None,
        proxy_pool: Optional[ProxyPool] = None,
        thumbnails: Optional[Mapping[str, str]] = None,
        strategies: Sequence[page_queries.PageQueryStrategy] = page_queries.DEFAULT_STRATEGIES,
        nav_max_attempts: Optional[int] = None,
        inter_batch_delay_ms: int = config.INTER_BATCH_DELAY_MS,
        retry_round: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = sleep_ms,
    ) -> None:
        self._open_session = open_session
        self.failure_log = failure_log
        self._config = scrape_config or ScrapeConfig()
        self._cache = cache or MetadataCache()
        self._proxy_pool = proxy_pool
        self._thumbnails: Dict[str, str] = dict(thumbnails or {})
        self._strategies = strategies
        self._nav_max_attempts = nav_max_attempts
        self._inter_batch_delay_ms = inter_batch_delay_ms
        self._retry_round = retry_round
        self._sleep = sleep

    def _base_record(self, link: DiscoveredLink) -> ExtractionRecord:
        record = ExtractionRecord.partial(link, self._thumbnails.get(link.item_id))
        captured = self._cache.get(link.item_id)
        if captured is not None:
            # Lowest priority: page-level values overwrite these later.
            record.apply(captured.to_record_fields(), overwrite=False)
        return record

    def _record_failure(
        self,
        link: DiscoveredLink,
        reason: str,
        *,
        error_code: Optional[str],
        http_status: Optional[int] = None,
    ) -> None:
        self.failure_log.record_failure(
            link.item_id,
            link.canonical_url,
            reason,
            http_status=http_status,
            error_code=error_code,
            retry_round=self._retry_round,
        )

    def _report_proxy(self, session: BrowserSession, result: NavResult) -> None:
        proxy = getattr(session, "proxy", None)
        if self._proxy_pool is None or proxy is None:
            return
        if result.error_code in _PROXY_FAILURE_CODES:
            self._proxy_pool.record_failure(proxy)
        else:
            self._proxy_pool.record_success(proxy)

    async def _wait_for_content(self, session: BrowserSession) -> None:
        await session.wait_for(
            GALLERY_SELECTORS.embed, timeout_ms=config.EMBED_WAIT_TIMEOUT_SECONDS * 1000
        )
        ready = await session.wait_for(
            page_queries.METADATA_READY_SCRIPT,
            timeout_ms=config.METADATA_READY_TIMEOUT_SECONDS * 1000,
            kind="function",
        )
        if not ready:
            await self._sleep(config.POST_NAV_SETTLE_MS)

    async def extract_one(
        self, session: Optional[BrowserSession], link: DiscoveredLink
    ) -> ExtractionRecord:
        """Extract one item; failures are recorded and yield the partial record."""

        record = self._base_record(link)
        if not self._config.extract_details or session is None:
            return record

        result = await navigate(
            session,
            link.canonical_url,
            self._nav_max_attempts,
            sleep=self._sleep,
            item_id=link.item_id,
        )
        self._report_proxy(session, result)
        if not result.ok:
            log_line(f"[EXTRACT] {link.item_id}: {result.reason} after {result.attempts} attempt(s)")
            self._record_failure(
                link, result.reason, error_code=result.error_code, http_status=result.http_status
            )
            return record

        await self._wait_for_content(session)
        raw = await page_queries.query_page(session, self._strategies)

        if page_queries.is_error_page(raw):
            self._record_failure(
                link,
                f"Error page detected: {raw.title}",
                error_code=ErrorCode.ERROR_PAGE,
                http_status=result.http_status,
            )
            return record
        if page_queries.has_no_metadata(raw):
            self._record_failure(
                link,
                "No metadata found on page",
                error_code=ErrorCode.NO_METADATA,
                http_status=result.http_status,
            )
            return record

        record.apply(normalize(raw), overwrite=True)
        return record

    async def _run_task(
        self, session: Optional[BrowserSession], link: DiscoveredLink, index: int
    ) -> Optional[ExtractionRecord]:
        if index and self._config.stagger_tab_delay:
            await self._sleep(
                random_delay_ms(self._config.random_delay_min_ms, self._config.random_delay_max_ms)
            )
        try:
            return await self.extract_one(session, link)
        except Exception as exc:  # noqa: BLE001
            message = short_error_message(exc)
            log_line(f"[EXTRACT] {link.item_id}: uncaught exception: {message}")
            self._record_failure(
                link, f"uncaught exception: {message}", error_code=ErrorCode.UNCAUGHT
            )
            return None

    async def _open_sessions(self, count: int) -> List[BrowserSession]:
        sessions: List[BrowserSession] = []
        if self._open_session is None or not self._config.extract_details:
            return sessions
        try:
            for _ in range(count):
                sessions.append(await self._open_session())
        except Exception:
            await self._close_sessions(sessions)
            raise
        return sessions

    async def _close_sessions(self, sessions: Sequence[BrowserSession]) -> None:
        for session in sessions:
            try:
                await session.close()
            except Exception as exc:  # noqa: BLE001
                log_line(f"[EXTRACT] Error closing session: {short_error_message(exc)}")

    async def extract_all(
        self,
        links: Sequence[DiscoveredLink],
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[ExtractionRecord]:
        concurrency = max(1, concurrency or self._config.concurrency)
        total = len(links)
        results: List[ExtractionRecord] = []
        attempted = 0

        sessions = await self._open_sessions(concurrency if total else 0)
        log_line(
            f"[EXTRACT] Processing {total} items with {len(sessions)} session(s), "
            f"batch size {concurrency}"
        )
        try:
            for start in range(0, total, concurrency):
                batch = links[start : start + concurrency]
                batch_results = await asyncio.gather(
                    *(
                        self._run_task(sessions[index] if sessions else None, link, index)
                        for index, link in enumerate(batch)
                    )
                )
                results.extend(record for record in batch_results if record is not None)
                attempted += len(batch)
                _scraper_event(
                    "state",
                    phase="extract",
                    kind="batch_done",
                    attempted=attempted,
                    succeeded=len(results),
                    total=total,
                    retry_round=self._retry_round,
                )
                if on_progress is not None:
                    await on_progress(attempted, len(results), total)
                if start + concurrency < total:
                    await self._sleep(self._inter_batch_delay_ms)
        finally:
            await self._close_sessions(sessions)

        log_line(f"[EXTRACT] Complete: {len(results)}/{total} records")
        return results


__all__ = ["ExtractionWorkerPool", "ProgressCallback", "SessionFactory"]
