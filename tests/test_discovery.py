from __future__ import annotations

import asyncio
import itertools
from typing import Any, Callable, Dict, List, Optional

from app.harvester import discovery, page_queries
from app.harvester.discovery import DiscoveryEngine
from app.harvester.models import DiscoveredLink
from tests.fakes import COLLECTION_HASH, no_sleep

CONTROL = {"selector": '[data-harvester-control="1"]', "text": "Next", "priority": 1}


class GallerySession:
    """Gallery page whose height, image count and controls are scripted."""

    proxy = None

    def __init__(
        self,
        *,
        url: str = "https://smartframe.com/gallery/p1",
        images: int = 10,
        heights: Optional[List[int]] = None,
        images_per_scroll: int = 0,
        control: Optional[Dict[str, Any]] = None,
        on_click: Optional[Callable[["GallerySession"], None]] = None,
    ) -> None:
        self._url = url
        self.images = images
        self.heights = list(heights or [1000])
        self.images_per_scroll = images_per_scroll
        self.control = control
        self.on_click = on_click
        self.clicks: List[str] = []
        self.scrolls = 0

    @property
    def url(self) -> str:
        return self._url

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == page_queries.ITEM_COUNT_SCRIPT:
            return self.images
        if script == page_queries.SCROLL_HEIGHT_SCRIPT:
            return self.heights[0]
        if script == page_queries.SCROLL_TO_BOTTOM_SCRIPT:
            self.scrolls += 1
            if len(self.heights) > 1:
                self.heights.pop(0)
                self.images += self.images_per_scroll
            return None
        if script == page_queries.FIND_PAGINATION_CONTROL_SCRIPT:
            return self.control
        return None

    async def click(self, element_ref: str) -> None:
        self.clicks.append(element_ref)
        if self.on_click is not None:
            self.on_click(self)


def _links(*item_ids: str) -> List[DiscoveredLink]:
    return [
        DiscoveredLink(item_id, page_queries.item_url(COLLECTION_HASH, item_id), COLLECTION_HASH)
        for item_id in item_ids
    ]


def _scripted_collect(batches: List[List[DiscoveredLink]]):
    calls = {"count": 0}

    async def collect(session) -> List[DiscoveredLink]:
        index = min(calls["count"], len(batches) - 1)
        calls["count"] += 1
        return batches[index]

    return collect, calls


def test_repeated_discovery_keeps_item_ids_unique() -> None:
    session = GallerySession(heights=[1000, 2000, 3000], images_per_scroll=5)
    collect, calls = _scripted_collect(
        [_links("a", "b"), _links("b", "c"), _links("c", "a", "d"), _links("a", "b", "d")]
    )
    engine = DiscoveryEngine(session, collect=collect, sleep=no_sleep)

    result = asyncio.run(engine.run())

    ids = [link.item_id for link in result.links]
    assert sorted(ids) == ["a", "b", "c", "d"]
    assert len(ids) == len(set(ids))
    assert result.reason == discovery.REASON_END_OF_CONTENT
    assert calls["count"] >= 4


def test_loop_guard_stops_on_fixed_page() -> None:
    # Height keeps growing but URL and image count never change.
    session = GallerySession(heights=list(range(1000, 100000, 1000)))
    collect, _ = _scripted_collect([_links("a")])
    engine = DiscoveryEngine(session, collect=collect, sleep=no_sleep)

    result = asyncio.run(engine.run())

    assert result.reason == discovery.REASON_LOOP_GUARD
    assert result.iterations == 2
    assert session.scrolls == 1


def test_pagination_click_that_advances_counts_as_progress() -> None:
    def advance(page: GallerySession) -> None:
        page._url = "https://smartframe.com/gallery/p2"
        page.images += 10
        page.control = None

    session = GallerySession(control=dict(CONTROL), on_click=advance)
    collect, calls = _scripted_collect([_links("a", "b"), _links("c", "d")])
    engine = DiscoveryEngine(session, collect=collect, sleep=no_sleep, patience_rounds=2)

    result = asyncio.run(engine.run())

    assert result.clicks == 1
    assert session.clicks == [CONTROL["selector"]]
    assert {link.item_id for link in result.links} == {"a", "b", "c", "d"}
    assert result.reason == discovery.REASON_END_OF_CONTENT


def test_click_that_shrinks_the_item_count_still_counts() -> None:
    def replace_view(page: GallerySession) -> None:
        page.images -= 5
        page.control = None

    session = GallerySession(control=dict(CONTROL), on_click=replace_view)
    collect, _ = _scripted_collect([_links("a", "b"), _links("c")])
    engine = DiscoveryEngine(session, collect=collect, sleep=no_sleep, patience_rounds=2)

    result = asyncio.run(engine.run())

    assert result.clicks == 1
    assert {link.item_id for link in result.links} == {"a", "b", "c"}
    assert result.reason == discovery.REASON_END_OF_CONTENT


def test_click_without_page_change_is_discarded() -> None:
    session = GallerySession(control=dict(CONTROL))
    collect, _ = _scripted_collect([_links("a")])
    engine = DiscoveryEngine(session, collect=collect, sleep=no_sleep, patience_rounds=3)

    result = asyncio.run(engine.run())

    assert result.clicks == 0
    # One inline attempt and one at the bottom of the page.
    assert len(session.clicks) == 2
    assert result.reason == discovery.REASON_END_OF_CONTENT


def test_patience_rounds_wait_before_giving_up() -> None:
    session = GallerySession()
    collect, _ = _scripted_collect([_links("a")])
    delays: List[float] = []

    async def sleeper(milliseconds: float) -> None:
        delays.append(milliseconds)

    engine = DiscoveryEngine(
        session,
        collect=collect,
        scroll_delay_ms=1000,
        patience_rounds=5,
        final_collect_delay_ms=3000,
        sleep=sleeper,
    )
    result = asyncio.run(engine.run())

    assert result.reason == discovery.REASON_END_OF_CONTENT
    # One scroll delay, five patience waits at twice the scroll delay, final pause.
    assert delays == [1000] + [2000] * 5 + [3000]


def test_max_items_truncates_and_stops() -> None:
    session = GallerySession(heights=[1000, 2000])
    collect, _ = _scripted_collect([_links("a", "b", "c", "d", "e")])
    engine = DiscoveryEngine(session, collect=collect, max_items=3, sleep=no_sleep)

    result = asyncio.run(engine.run())

    assert result.reason == discovery.REASON_MAX_ITEMS
    assert [link.item_id for link in result.links] == ["a", "b", "c"]
    assert session.scrolls == 0


def test_time_budget_ends_discovery_with_links_so_far() -> None:
    session = GallerySession(heights=list(range(1000, 20000, 1000)), images_per_scroll=5)
    collect, _ = _scripted_collect([_links("a"), _links("b"), _links("c"), _links("d")])
    ticks = itertools.count(start=0, step=5)
    engine = DiscoveryEngine(
        session,
        collect=collect,
        time_budget_seconds=12,
        sleep=no_sleep,
        clock=lambda: next(ticks),
    )

    result = asyncio.run(engine.run())

    assert result.reason == discovery.REASON_TIME_BUDGET
    assert result.iterations == 2
    assert result.links


def test_auto_scroll_disabled_collects_first_page_only() -> None:
    session = GallerySession(heights=[1000, 2000])
    collect, calls = _scripted_collect([_links("a", "b")])
    engine = DiscoveryEngine(session, collect=collect, sleep=no_sleep)

    result = asyncio.run(engine.run(auto_scroll=False))

    assert result.reason == discovery.REASON_SCROLL_DISABLED
    assert calls["count"] == 1
    assert session.scrolls == 0


def test_collect_links_reads_embeds_anchors_and_data_items() -> None:
    snapshot = {
        "embeds": [{"itemId": "e1", "hash": "h1"}, {"itemId": None, "hash": "h1"}],
        "anchors": [
            "https://smartframe.com/search/image/h2/a1?ref=gallery",
            "https://smartframe.com/search/image/h1/e1",
            "https://smartframe.com/about",
        ],
        "dataItems": [{"itemId": "d1", "hash": "h3"}, {"itemId": "d2", "hash": None}],
    }

    links = page_queries.links_from_snapshot(snapshot)

    assert [link.item_id for link in links] == ["e1", "a1", "d1"]
    assert links[0].canonical_url == "https://smartframe.com/search/image/h1/e1"
    assert links[1].collection_hash == "h2"
    assert links[2].canonical_url == "https://smartframe.com/search/image/h3/d1"
