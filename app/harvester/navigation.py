from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .retry_policy import classify_http_status, compute_backoff_ms, decide_retry, is_terminal_status
from .session import BrowserSession
from .utils import short_error_message, sleep_ms


class NavigationError(RuntimeError):
    """Raised when a page the whole job depends on cannot be loaded."""

    def __init__(self, url: str, result: "NavResult") -> None:
        super().__init__(f"Failed to load {url}: {result.reason} after {result.attempts} attempt(s)")
        self.url = url
        self.result = result


@dataclass
class NavResult:
    ok: bool
    url: str
    attempts: int
    http_status: Optional[int] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    # Whether a later retry round may try this URL again.
    retryable: bool = False
    backoffs_ms: List[int] = field(default_factory=list)

    @property
    def reason(self) -> str:
        if self.ok:
            return "ok"
        if self.http_status:
            return f"HTTP {self.http_status}"
        if self.error:
            return f"Navigation timeout: {self.error}"
        return "Navigation failed"


async def navigate(
    session: BrowserSession,
    url: str,
    max_attempts: Optional[int] = None,
    *,
    timeout_ms: Optional[int] = None,
    sleep: Callable[[float], Awaitable[None]] = sleep_ms,
    item_id: Optional[str] = None,
) -> NavResult:
    """Load ``url`` with classified retries.

    5xx responses and transport errors back off from 2s, 429 from 5s, doubling
    per attempt. 401/403/404 and other client errors return immediately.
    Never raises for navigation failures; the caller decides what to record.
    """

    timeout = timeout_ms if timeout_ms is not None else config.NAV_TIMEOUT_SECONDS * 1000
    max_attempts = max(1, max_attempts if max_attempts is not None else config.NAV_MAX_ATTEMPTS)
    backoffs: List[int] = []

    for attempt in range(1, max_attempts + 1):
        status: Optional[int] = None
        error: Optional[str] = None
        try:
            response = await session.navigate(url, timeout_ms=timeout)
        except Exception as exc:  # noqa: BLE001
            # Timeouts, DNS failures and connection resets surface as engine errors.
            code: Optional[str] = ErrorCode.NETWORK
            error = short_error_message(exc)
        else:
            status = response.status
            code = classify_http_status(status)
            if code is None:
                _scraper_event(
                    "state",
                    phase="navigate",
                    kind="ok",
                    item_id=item_id,
                    attempt=attempt,
                    http_status=status,
                )
                return NavResult(
                    ok=True, url=url, attempts=attempt, http_status=status, backoffs_ms=backoffs
                )

        _scraper_event(
            "state",
            phase="navigate",
            kind="attempt_failed",
            item_id=item_id,
            attempt=attempt,
            max_attempts=max_attempts,
            http_status=status,
            error_code=code,
            error=error,
        )

        if not decide_retry(attempt, max_attempts, error_code=code, http_status=status):
            return NavResult(
                ok=False,
                url=url,
                attempts=attempt,
                http_status=status,
                error_code=code,
                error=error,
                retryable=not is_terminal_status(status),
                backoffs_ms=backoffs,
            )

        delay = compute_backoff_ms(code, attempt)
        backoffs.append(delay)
        await sleep(delay)

    # Unreachable: the final attempt is always capped by decide_retry.
    raise AssertionError("navigation loop exited without a result")


__all__ = ["NavResult", "NavigationError", "navigate"]
