"""Scroll/click state machine that enumerates item links on a gallery page.

Each iteration keys the page on (url, item count). Revisiting a key without a
successful pagination click in between ends discovery, so a page that silently
refuses to advance cannot loop forever. Running out of content is a normal
termination, never an error.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from . import config, page_queries
from .logging_utils import _scraper_event
from .models import DiscoveredLink
from .session import BrowserSession
from .utils import log_line, short_error_message, sleep_ms

REASON_MAX_ITEMS = "max_items"
REASON_END_OF_CONTENT = "end_of_content"
REASON_LOOP_GUARD = "loop_guard"
REASON_TIME_BUDGET = "time_budget"
REASON_SCROLL_DISABLED = "scroll_disabled"

CollectFn = Callable[[BrowserSession], Awaitable[List[DiscoveredLink]]]


@dataclass
class DiscoveryResult:
    links: List[DiscoveredLink]
    reason: str
    iterations: int = 0
    clicks: int = 0


class DiscoveryEngine:
    def __init__(
        self,
        session: BrowserSession,
        *,
        collect: CollectFn = page_queries.collect_links,
        max_items: int = 0,
        scroll_delay_ms: int = config.DEFAULT_SCROLL_DELAY_MS,
        click_delay_ms: Optional[int] = None,
        patience_rounds: Optional[int] = None,
        patience_delay_ms: Optional[int] = None,
        final_collect_delay_ms: int = config.FINAL_COLLECT_DELAY_MS,
        time_budget_seconds: float = 0,
        sleep: Callable[[float], Awaitable[None]] = sleep_ms,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._collect_fn = collect
        self._max_items = max(0, max_items)
        self._scroll_delay_ms = scroll_delay_ms
        self._click_delay_ms = (
            click_delay_ms if click_delay_ms is not None else scroll_delay_ms + config.CLICK_SETTLE_EXTRA_MS
        )
        self._patience_rounds = max(
            1, patience_rounds if patience_rounds is not None else config.PATIENCE_ROUNDS
        )
        self._patience_delay_ms = (
            patience_delay_ms if patience_delay_ms is not None else scroll_delay_ms * 2
        )
        self._final_collect_delay_ms = final_collect_delay_ms
        self._time_budget_seconds = time_budget_seconds
        self._sleep = sleep
        self._clock = clock
        self._links: Dict[str, DiscoveredLink] = {}
        self._clicks = 0

    @property
    def links(self) -> Dict[str, DiscoveredLink]:
        return self._links

    async def collect(self) -> int:
        """Upsert links from the current DOM; return how many were new."""

        before = len(self._links)
        for link in await self._collect_fn(self._session):
            self._links[link.item_id] = link
        added = len(self._links) - before
        log_line(f"[DISCOVERY] Collected {len(self._links)} unique items so far (+{added})")
        return added

    def _limit_reached(self) -> bool:
        return bool(self._max_items) and len(self._links) >= self._max_items

    async def _page_state(self) -> Tuple[str, int]:
        return self._session.url, await page_queries.item_count(self._session)

    async def _try_pagination(self, where: str) -> bool:
        """Click a next/load-more control if one exists; True when the page advanced."""

        control = await page_queries.find_pagination_control(self._session)
        if not control:
            return False

        before_url, before_count = await self._page_state()
        log_line(f"[DISCOVERY] Found pagination control ({where}): {control.get('text', '')!r}")
        try:
            await self._session.click(control["selector"])
        except Exception as exc:  # noqa: BLE001
            log_line(f"[DISCOVERY] Pagination control not clickable: {short_error_message(exc)}")
            return False

        await self._sleep(self._click_delay_ms)
        after_url, after_count = await self._page_state()
        if after_url == before_url and after_count == before_count:
            log_line("[DISCOVERY] Click did not change the page; ignoring control")
            _scraper_event(
                "state", phase="discovery", kind="click_discarded", where=where, url=after_url
            )
            return False

        self._clicks += 1
        _scraper_event(
            "state",
            phase="discovery",
            kind="click_progress",
            where=where,
            url_changed=after_url != before_url,
            item_count=after_count,
        )
        await self.collect()
        return True

    async def _wait_for_growth(self, height: int) -> bool:
        for round_index in range(1, self._patience_rounds + 1):
            await self._sleep(self._patience_delay_ms)
            current = await page_queries.scroll_height(self._session)
            if current > height:
                log_line(
                    f"[DISCOVERY] Patience round {round_index}/{self._patience_rounds}: "
                    f"height grew {height} -> {current}"
                )
                return True
            log_line(
                f"[DISCOVERY] Patience round {round_index}/{self._patience_rounds}: no new content"
            )
        return False

    def _budget_expired(self, started: float) -> bool:
        return bool(self._time_budget_seconds) and (
            self._clock() - started >= self._time_budget_seconds
        )

    async def run(self, *, auto_scroll: bool = True) -> DiscoveryResult:
        started = self._clock()
        await self.collect()
        if not auto_scroll:
            return self._finish(REASON_SCROLL_DISABLED, 0)

        visited: Set[Tuple[str, int]] = set()
        just_clicked = False
        iterations = 0
        reason = REASON_END_OF_CONTENT

        while True:
            if self._limit_reached():
                reason = REASON_MAX_ITEMS
                break
            if self._budget_expired(started):
                reason = REASON_TIME_BUDGET
                break

            iterations += 1
            state = await self._page_state()
            if not just_clicked and state in visited:
                log_line(f"[DISCOVERY] Page state {state} already visited; stopping")
                reason = REASON_LOOP_GUARD
                break
            just_clicked = False
            visited.add(state)

            if await self._try_pagination("inline"):
                just_clicked = True
                continue

            previous_height = await page_queries.scroll_height(self._session)
            await page_queries.scroll_to_bottom(self._session)
            await self._sleep(self._scroll_delay_ms)
            new_height = await page_queries.scroll_height(self._session)
            if new_height != previous_height:
                await self.collect()
                continue

            if await self._try_pagination("bottom"):
                just_clicked = True
                continue

            if not await self._wait_for_growth(new_height):
                reason = REASON_END_OF_CONTENT
                break
            await self.collect()

        await self._sleep(self._final_collect_delay_ms)
        await self.collect()
        return self._finish(reason, iterations)

    def _finish(self, reason: str, iterations: int) -> DiscoveryResult:
        links = list(self._links.values())
        if self._max_items:
            links = links[: self._max_items]
        _scraper_event(
            "state",
            phase="discovery",
            kind="terminated",
            reason=reason,
            iterations=iterations,
            clicks=self._clicks,
            links=len(links),
        )
        log_line(f"[DISCOVERY] Finished ({reason}) with {len(links)} items")
        return DiscoveryResult(links=links, reason=reason, iterations=iterations, clicks=self._clicks)


__all__ = [
    "DiscoveryEngine",
    "DiscoveryResult",
    "REASON_END_OF_CONTENT",
    "REASON_LOOP_GUARD",
    "REASON_MAX_ITEMS",
    "REASON_SCROLL_DISABLED",
    "REASON_TIME_BUDGET",
]
