from __future__ import annotations

from typing import Optional

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event

# Statuses that are never retried, neither inside one navigation call nor
# across retry rounds.
TERMINAL_HTTP_STATUSES = frozenset({401, 403, 404})

RETRYABLE_ERROR_CODES = {
    ErrorCode.NETWORK,
    ErrorCode.HTTP_5XX,
    ErrorCode.RATE_LIMITED,
}

NON_RETRYABLE_ERROR_CODES = {
    ErrorCode.HTTP_401,
    ErrorCode.HTTP_403,
    ErrorCode.HTTP_404,
    # Other client errors end the navigation call but are not terminal across
    # retry rounds.
    ErrorCode.HTTP_4XX,
}


def classify_http_status(status: Optional[int]) -> Optional[str]:
    """Return the error code for ``status`` or ``None`` for a usable response."""

    if status is None or status == 0:
        return None
    if status == 401:
        return ErrorCode.HTTP_401
    if status == 403:
        return ErrorCode.HTTP_403
    if status == 404:
        return ErrorCode.HTTP_404
    if status == 429:
        return ErrorCode.RATE_LIMITED
    if 400 <= status < 500:
        return ErrorCode.HTTP_4XX
    if status >= 500:
        return ErrorCode.HTTP_5XX
    return None


def is_terminal_status(status: Optional[int]) -> bool:
    return status in TERMINAL_HTTP_STATUSES


def compute_backoff_ms(error_code: Optional[str], attempt_index: int) -> int:
    """Return the backoff for a failed attempt (1-based).

    429 responses back off from a 5s base, everything else that is retried
    (5xx, transport errors) from a 2s base; both double per attempt.
    """

    base = (
        config.RATE_LIMIT_BACKOFF_BASE_MS
        if error_code == ErrorCode.RATE_LIMITED
        else config.SERVER_ERROR_BACKOFF_BASE_MS
    )
    return int(base * 2 ** max(0, attempt_index - 1))


def decide_retry(
    attempt_index: int,
    max_attempts: int,
    error: BaseException | None = None,
    *,
    error_code: Optional[str] = None,
    http_status: Optional[int] = None,
) -> bool:
    """Return True when attempt ``attempt_index`` of ``max_attempts`` may be retried.

    Terminal statuses and non-retryable codes stop at once. Known transient
    codes retry until the cap. An unknown or missing code gets at most one
    extra attempt.
    """

    code = (error_code or "").strip()
    if code in NON_RETRYABLE_ERROR_CODES or is_terminal_status(http_status):
        kind, will_retry = "non_retryable", False
    elif attempt_index >= max_attempts:
        kind, will_retry = "capped", False
    elif code in RETRYABLE_ERROR_CODES or (http_status or 0) >= 500:
        kind, will_retry = "retryable", True
    else:
        kind = "unknown" if code else "missing_error_code"
        will_retry = attempt_index < max_attempts - 1

    _scraper_event(
        "state",
        phase="retry_decision",
        kind=kind,
        attempt=attempt_index,
        max_attempts=max_attempts,
        error_code=code or None,
        http_status=http_status,
        will_retry=will_retry,
        error_repr=repr(error) if error is not None else None,
    )
    return will_retry


__all__ = [
    "TERMINAL_HTTP_STATUSES",
    "NON_RETRYABLE_ERROR_CODES",
    "RETRYABLE_ERROR_CODES",
    "classify_http_status",
    "compute_backoff_ms",
    "decide_retry",
    "is_terminal_status",
]
