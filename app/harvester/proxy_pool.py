"""Round-robin proxy rotation with per-endpoint health tracking.

One pool is shared by every job in the process, and the web surface runs each
job on its own thread, so all mutations go through thread locks: one lock per
endpoint key for its health entry, and a pool lock for the cursor and the
endpoint list.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import unquote, urlsplit

from . import config
from .logging_utils import _scraper_event
from .models import ProxyEndpoint, ProxyHealth
from .utils import log_line

SUPPORTED_PROTOCOLS = frozenset({"http", "https", "socks5"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_proxy_uri(uri: str) -> ProxyEndpoint:
    """Parse ``scheme://[user:pass@]host[:port]`` into an endpoint.

    Raises ``ValueError`` for missing or unsupported schemes and missing hosts. The port
    defaults to 443 for https and 80 otherwise.
    """

    candidate = (uri or "").strip()
    if not candidate:
        raise ValueError("empty proxy URI")
    if "://" not in candidate:
        raise ValueError(f"proxy URI has no scheme: {uri!r}")

    parts = urlsplit(candidate)
    protocol = parts.scheme.lower()
    if protocol not in SUPPORTED_PROTOCOLS:
        raise ValueError(f"unsupported proxy protocol: {protocol!r}")
    if not parts.hostname:
        raise ValueError(f"proxy URI has no host: {uri!r}")

    try:
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"invalid proxy port in {uri!r}") from exc
    if port is None:
        port = 443 if protocol == "https" else 80

    return ProxyEndpoint(
        host=parts.hostname,
        port=port,
        protocol=protocol,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
    )


def format_proxy_url(endpoint: ProxyEndpoint) -> str:
    if endpoint.username and endpoint.password:
        return (
            f"{endpoint.protocol}://{endpoint.username}:{endpoint.password}"
            f"@{endpoint.host}:{endpoint.port}"
        )
    return endpoint.key


def to_playwright_proxy(endpoint: ProxyEndpoint) -> Dict[str, str]:
    """Return the ``proxy`` argument Playwright expects for a browser context."""

    settings = {"server": endpoint.key}
    if endpoint.username:
        settings["username"] = endpoint.username
    if endpoint.password:
        settings["password"] = endpoint.password
    return settings


class ProxyPool:
    def __init__(
        self,
        endpoints: Iterable[ProxyEndpoint] = (),
        *,
        max_failures: int = config.PROXY_MAX_FAILURES,
        stale_after_seconds: int = config.PROXY_STALE_AFTER_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._max_failures = max_failures
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._clock = clock
        self._endpoints: List[ProxyEndpoint] = []
        self._health: Dict[str, ProxyHealth] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._pool_lock = threading.Lock()
        self._cursor = 0
        self._health_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        for endpoint in endpoints:
            self.add(endpoint)

    @classmethod
    def from_uris(cls, uris: Iterable[str], **kwargs) -> "ProxyPool":
        """Build a pool from URIs, skipping entries that do not parse."""

        endpoints: List[ProxyEndpoint] = []
        for uri in uris:
            if not uri or not uri.strip():
                continue
            try:
                endpoints.append(parse_proxy_uri(uri))
            except ValueError as exc:
                log_line(f"[PROXY] Skipping invalid proxy entry: {exc}")
                _scraper_event("state", phase="proxy", kind="invalid_entry", error=str(exc))
        return cls(endpoints, **kwargs)

    @classmethod
    def from_environment(cls, **kwargs) -> "ProxyPool":
        pool = cls.from_uris(config.PROXY_LIST.split(","), **kwargs)
        if pool.size:
            log_line(f"[PROXY] Loaded {pool.size} proxies from PROXY_LIST")
        return pool

    @property
    def size(self) -> int:
        with self._pool_lock:
            return len(self._endpoints)

    def add(self, endpoint: ProxyEndpoint) -> None:
        with self._pool_lock:
            self._endpoints.append(endpoint)
            if endpoint.key not in self._health:
                self._health[endpoint.key] = ProxyHealth(endpoint_key=endpoint.key)
                self._key_locks[endpoint.key] = threading.Lock()

    def next(self) -> Optional[ProxyEndpoint]:
        """Return the next healthy endpoint, or the cursor's endpoint when none are."""

        with self._pool_lock:
            if not self._endpoints:
                return None
            start = self._cursor
            chosen: Optional[ProxyEndpoint] = None
            for _ in range(len(self._endpoints)):
                candidate = self._endpoints[self._cursor]
                self._cursor = (self._cursor + 1) % len(self._endpoints)
                with self._key_locks[candidate.key]:
                    if self._health[candidate.key].is_healthy:
                        chosen = candidate
                        break

            if chosen is None:
                chosen = self._endpoints[start]
                log_line("[PROXY] No healthy proxies available, using degraded mode")
                _scraper_event("state", phase="proxy", kind="degraded", endpoint=chosen.key)

            with self._key_locks[chosen.key]:
                health = self._health[chosen.key]
                health.total_uses += 1
                health.last_used_at = self._clock()
            return chosen

    def record_success(self, endpoint: ProxyEndpoint) -> None:
        lock = self._key_locks.get(endpoint.key)
        if lock is None:
            return
        with lock:
            health = self._health[endpoint.key]
            health.successes += 1
            health.consecutive_failures = 0
            health.is_healthy = True
            health.last_success_at = self._clock()

    def record_failure(self, endpoint: ProxyEndpoint) -> None:
        lock = self._key_locks.get(endpoint.key)
        if lock is None:
            return
        with lock:
            health = self._health[endpoint.key]
            health.consecutive_failures += 1
            health.last_failure_at = self._clock()
            was_healthy = health.is_healthy
            health.is_healthy = health.consecutive_failures < self._max_failures
            failures = health.consecutive_failures
        if was_healthy and not health.is_healthy:
            log_line(
                f"[PROXY] Proxy {endpoint.key} marked as unhealthy after {failures} failures"
            )
            _scraper_event(
                "state", phase="proxy", kind="unhealthy", endpoint=endpoint.key, failures=failures
            )

    def stats(self, endpoint: Optional[ProxyEndpoint] = None):
        """Return a snapshot for ``endpoint``, or a key -> snapshot mapping."""

        if endpoint is not None:
            lock = self._key_locks.get(endpoint.key)
            if lock is None:
                return None
            with lock:
                return self._health[endpoint.key].snapshot()
        with self._pool_lock:
            keys = list(self._health)
        snapshots: Dict[str, ProxyHealth] = {}
        for key in keys:
            with self._key_locks[key]:
                snapshots[key] = self._health[key].snapshot()
        return snapshots

    def healthy_endpoints(self) -> List[ProxyEndpoint]:
        with self._pool_lock:
            endpoints = list(self._endpoints)
        healthy: List[ProxyEndpoint] = []
        for endpoint in endpoints:
            with self._key_locks[endpoint.key]:
                if self._health[endpoint.key].is_healthy:
                    healthy.append(endpoint)
        return healthy

    def reset_stats(self) -> None:
        with self._pool_lock:
            keys = list(self._health)
        for key in keys:
            with self._key_locks[key]:
                self._health[key] = ProxyHealth(endpoint_key=key)

    def perform_health_checks(self) -> None:
        """Give stale failing endpoints another chance and re-derive health.

        An endpoint that has failures recorded but has not been handed out for
        longer than the stale window gets its counters reset. Every other
        endpoint is healthy iff it is below the failure threshold.
        """

        now = self._clock()
        with self._pool_lock:
            keys = list(self._health)
        for key in keys:
            with self._key_locks[key]:
                health = self._health[key]
                stale = (
                    health.last_used_at is not None
                    and now - health.last_used_at > self._stale_after
                )
                if stale and health.consecutive_failures > 0:
                    health.consecutive_failures = 0
                    health.is_healthy = True
                    log_line(f"[PROXY] Reset stale proxy {key}")
                    continue
                health.is_healthy = health.consecutive_failures < self._max_failures

    def _health_loop(self, interval_seconds: float) -> None:
        while not self._stop_event.wait(interval_seconds):
            try:
                self.perform_health_checks()
            except Exception as exc:  # noqa: BLE001
                log_line(f"[PROXY] Health check failed: {exc}")

    def start_health_checks(
        self, interval_seconds: float = config.PROXY_HEALTH_CHECK_INTERVAL_SECONDS
    ) -> None:
        self.stop_health_checks()
        self._stop_event = threading.Event()
        self._health_thread = threading.Thread(
            target=self._health_loop,
            args=(interval_seconds,),
            name="proxy-health",
            daemon=True,
        )
        self._health_thread.start()

    def stop_health_checks(self) -> None:
        if self._health_thread is None:
            return
        self._stop_event.set()
        self._health_thread.join(timeout=5)
        self._health_thread = None


__all__ = [
    "ProxyPool",
    "SUPPORTED_PROTOCOLS",
    "format_proxy_url",
    "parse_proxy_uri",
    "to_playwright_proxy",
]
