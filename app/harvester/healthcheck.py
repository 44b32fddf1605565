from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from . import config
from .config_validation import validate_runtime_config
from .logging_utils import _scraper_event
from .utils import disk_has_room, ensure_dirs, log_line

if TYPE_CHECKING:
    from .orchestrator import ServiceContext


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def run_health_checks(
    entrypoint: str = "cli", services: Optional["ServiceContext"] = None
) -> HealthResult:
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_runtime_config(entrypoint or "cli")
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    try:
        ensure_dirs()
        fs_ok = disk_has_room(config.MIN_FREE_MB, config.DATA_DIR)
        checks["filesystem"] = {
            "ok": fs_ok,
            "data_dir": str(config.DATA_DIR),
            "min_free_mb": config.MIN_FREE_MB,
        }
    except OSError as exc:
        checks["filesystem"] = {"ok": False, "error": str(exc)}

    proxy_pool = services.proxy_pool if services is not None else None
    if proxy_pool is None:
        checks["proxies"] = {"ok": True, "configured": 0, "healthy": 0}
    else:
        healthy = len(proxy_pool.healthy_endpoints())
        # An empty pool means direct connections; only an all-unhealthy pool is degraded.
        checks["proxies"] = {
            "ok": True,
            "configured": proxy_pool.size,
            "healthy": healthy,
            "degraded": bool(proxy_pool.size) and healthy == 0,
        }

    vpn = services.vpn if services is not None else None
    checks["vpn"] = {
        "ok": True,
        "enabled": bool(vpn is not None and vpn.enabled),
        "change_command": bool(vpn is not None and vpn.change_command),
    }

    overall_ok = all(check.get("ok", False) for check in checks.values())

    _scraper_event(
        "state" if overall_ok else "error",
        phase="health",
        context="healthcheck",
        ok=overall_ok,
        checks=checks,
    )

    return HealthResult(ok=overall_ok, checks=checks)


if __name__ == "__main__":  # pragma: no cover
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")
    raise SystemExit(0 if result.ok else 1)
