from __future__ import annotations

"""Centralised error code taxonomy for extraction failures.

These codes travel with navigation results and failure records and are
included in structured logs so that the failure report can explain why an
item was not extracted. Keep them stable; they appear in written reports.
"""


class ErrorCode:
    # Terminal per item: never retried.
    HTTP_401 = "http_401_unauthorised"
    HTTP_403 = "http_403_forbidden"
    HTTP_404 = "http_404_not_found"
    HTTP_4XX = "http_4xx"
    # Retryable per item.
    HTTP_5XX = "http_5xx"
    RATE_LIMITED = "http_429_rate_limited"
    NETWORK = "network_error"
    # Structural: the page loaded but carried nothing usable.
    ERROR_PAGE = "error_page"
    NO_METADATA = "no_metadata"
    # Anything else raised inside an extraction task.
    UNCAUGHT = "uncaught_exception"
    INTERNAL = "internal_error"


__all__ = ["ErrorCode"]
