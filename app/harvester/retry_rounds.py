"""Multi-round retry of failed items at reduced concurrency."""

from __future__ import annotations

import re
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from . import config
from .failures import FailureLog
from .logging_utils import _scraper_event
from .models import DiscoveredLink, ExtractionRecord, FailureRecord
from .retry_policy import is_terminal_status
from .utils import log_line, sleep_ms
from .vpn import VPNController
from .worker_pool import ExtractionWorkerPool

PoolFactory = Callable[[int], ExtractionWorkerPool]

_RETRY_SUFFIX_RE = re.compile(r"\s*\(retry \d+ failed\)$")


def retryable_failures(failures: Iterable[FailureRecord]) -> List[FailureRecord]:
    """Drop failures whose HTTP status says the item will never load."""

    return [failure for failure in failures if not is_terminal_status(failure.http_status)]


class RetryScheduler:
    """Re-runs failed items through fresh single-session pools.

    Round ``r`` waits ``RETRY_ROUND_DELAY_MS * r`` first (rounds after the
    first), and the pool for that round spaces items ``RETRY_BATCH_DELAY_MS * r``
    apart. A retry only counts when the record carries meaningful content;
    anything else stays in the failure log with its attempt count bumped.
    """

    def __init__(
        self,
        failure_log: FailureLog,
        make_pool: PoolFactory,
        *,
        links: Optional[Mapping[str, DiscoveredLink]] = None,
        max_rounds: Optional[int] = None,
        meaningful_fields: Sequence[str] = config.MEANINGFUL_FIELDS,
        vpn: Optional[VPNController] = None,
        rotate_vpn: bool = config.VPN_ROTATE_BETWEEN_ROUNDS,
        vpn_locations: Sequence[str] = config.VPN_LOCATIONS,
        sleep: Callable[[float], Awaitable[None]] = sleep_ms,
    ) -> None:
        self.failure_log = failure_log
        self._make_pool = make_pool
        self._links: Dict[str, DiscoveredLink] = dict(links or {})
        self._max_rounds = max_rounds if max_rounds is not None else config.DEFAULT_MAX_RETRY_ROUNDS
        self._meaningful_fields = tuple(meaningful_fields)
        self._vpn = vpn
        self._rotate_vpn = rotate_vpn
        self._vpn_locations = tuple(vpn_locations)
        self._sleep = sleep
        self.rounds_run = 0

    def _link_for(self, failure: FailureRecord) -> DiscoveredLink:
        link = self._links.get(failure.item_id)
        if link is not None:
            return link
        return DiscoveredLink(item_id=failure.item_id, canonical_url=failure.url)

    async def _rotate_network(self, round_number: int) -> None:
        if self._vpn is None or not self._rotate_vpn or not self._vpn.enabled:
            return
        location = None
        if self._vpn_locations:
            location = self._vpn_locations[(round_number - 2) % len(self._vpn_locations)]
        log_line(f"[RETRY] Rotating VPN before round {round_number} (location={location or 'default'})")
        if not await self._vpn.change_and_verify(location):
            log_line("[RETRY] VPN rotation failed; continuing on the current connection")

    def _settle(self, record: ExtractionRecord, round_number: int) -> bool:
        """Resolve the failure entry for ``record``; True when it is recovered."""

        if record.has_meaningful_content(self._meaningful_fields):
            self.failure_log.remove(record.item_id)
            return True

        current = self.failure_log.get(record.item_id)
        if current is not None and current.retry_round == round_number:
            # The pool already recorded this round's failure.
            return False

        base_reason = "Insufficient metadata"
        if current is not None:
            base_reason = _RETRY_SUFFIX_RE.sub("", current.reason) or base_reason
        self.failure_log.record_failure(
            record.item_id,
            record.source_url,
            f"{base_reason} (retry {round_number} failed)",
            http_status=current.http_status if current is not None else None,
            error_code=current.error_code if current is not None else None,
            retry_round=round_number,
        )
        return False

    async def retry_failures(
        self,
        failures: Optional[Iterable[FailureRecord]] = None,
        max_rounds: Optional[int] = None,
    ) -> List[ExtractionRecord]:
        """Retry ``failures`` (default: everything in the log); return recovered records."""

        rounds = self._max_rounds if max_rounds is None else max_rounds
        only_ids = None
        if failures is not None:
            only_ids = {failure.item_id for failure in failures}
        recovered: Dict[str, ExtractionRecord] = {}

        for round_number in range(1, rounds + 1):
            pending = retryable_failures(
                failure
                for failure in self.failure_log.failures()
                if only_ids is None or failure.item_id in only_ids
            )
            if not pending:
                log_line("[RETRY] No retryable failures left")
                break

            if round_number > 1:
                await self._rotate_network(round_number)
                await self._sleep(config.RETRY_ROUND_DELAY_MS * round_number)

            self.rounds_run = round_number
            log_line(f"[RETRY] Round {round_number}/{rounds}: retrying {len(pending)} item(s)")
            pool = self._make_pool(round_number)
            records = await pool.extract_all(
                [self._link_for(failure) for failure in pending],
                concurrency=config.RETRY_CONCURRENCY,
            )

            round_recovered = 0
            for record in records:
                if self._settle(record, round_number):
                    recovered[record.item_id] = record
                    round_recovered += 1

            _scraper_event(
                "state",
                phase="retry",
                kind="round_done",
                round=round_number,
                attempted=len(pending),
                recovered=round_recovered,
                remaining=self.failure_log.count(),
            )
            log_line(
                f"[RETRY] Round {round_number}: recovered {round_recovered}, "
                f"{self.failure_log.count()} failure(s) remain"
            )

        return list(recovered.values())


__all__ = ["PoolFactory", "RetryScheduler", "retryable_failures"]
