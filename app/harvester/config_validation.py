from __future__ import annotations

from typing import Literal

from . import config
from .logging_utils import _scraper_event
from .models import ScrapeConfig
from .utils import log_line

Entrypoint = Literal["ui", "cli", "tests"]

# Inclusive bounds for per-job settings.
SCRAPE_CONFIG_BOUNDS = {
    "max_images": (0, 5000),
    "scroll_delay_ms": (500, 5000),
    "concurrency": (1, config.MAX_CONCURRENCY),
    "random_delay_min_ms": (0, 10000),
    "random_delay_max_ms": (0, 10000),
    "max_retry_rounds": (1, 5),
    "job_timeout_seconds": (0, 24 * 3600),
}


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, error: str, field: str | None = None
) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        field=field,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint})")
    raise ValueError(message)


def _clamp(field_name: str, value: int, adjusted: int, *, entrypoint: Entrypoint) -> int:
    _scraper_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field_name,
        value=value,
        adjusted=adjusted,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {field_name}={value} out of range; clamping to {adjusted}.")
    return adjusted


def validate_runtime_config(entrypoint: Entrypoint) -> None:
    """Validate module-level configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Soft knobs (concurrency, attempts, retry rounds) are clamped and logged.
    """

    timeout_fields = [
        ("NAV_TIMEOUT_SECONDS", config.NAV_TIMEOUT_SECONDS),
        ("GALLERY_READY_TIMEOUT_SECONDS", config.GALLERY_READY_TIMEOUT_SECONDS),
        ("EMBED_WAIT_TIMEOUT_SECONDS", config.EMBED_WAIT_TIMEOUT_SECONDS),
        ("METADATA_READY_TIMEOUT_SECONDS", config.METADATA_READY_TIMEOUT_SECONDS),
    ]
    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
                field=field_name,
            )

    if not config.MEANINGFUL_FIELDS:
        _raise_config_error(
            "HARVESTER_MEANINGFUL_FIELDS must name at least one record field.",
            entrypoint=entrypoint,
            error="meaningful_fields_empty",
            field="MEANINGFUL_FIELDS",
        )

    if "{item_id}" not in config.ITEM_URL_TEMPLATE:
        _raise_config_error(
            "HARVESTER_ITEM_URL_TEMPLATE must contain an {item_id} placeholder.",
            entrypoint=entrypoint,
            error="item_url_template_invalid",
            field="ITEM_URL_TEMPLATE",
        )

    if config.MIN_FREE_MB < 0:
        _raise_config_error(
            "MIN_FREE_MB must not be negative.",
            entrypoint=entrypoint,
            error="min_free_mb_negative",
            field="MIN_FREE_MB",
        )

    if config.NAV_MAX_ATTEMPTS < 1:
        config.NAV_MAX_ATTEMPTS = _clamp(
            "NAV_MAX_ATTEMPTS", config.NAV_MAX_ATTEMPTS, 1, entrypoint=entrypoint
        )

    if not 1 <= config.DEFAULT_CONCURRENCY <= config.MAX_CONCURRENCY:
        adjusted = min(max(config.DEFAULT_CONCURRENCY, 1), config.MAX_CONCURRENCY)
        config.DEFAULT_CONCURRENCY = _clamp(
            "DEFAULT_CONCURRENCY", config.DEFAULT_CONCURRENCY, adjusted, entrypoint=entrypoint
        )

    if not 1 <= config.DEFAULT_MAX_RETRY_ROUNDS <= 5:
        adjusted = min(max(config.DEFAULT_MAX_RETRY_ROUNDS, 1), 5)
        config.DEFAULT_MAX_RETRY_ROUNDS = _clamp(
            "DEFAULT_MAX_RETRY_ROUNDS",
            config.DEFAULT_MAX_RETRY_ROUNDS,
            adjusted,
            entrypoint=entrypoint,
        )

    if config.PATIENCE_ROUNDS < 1:
        config.PATIENCE_ROUNDS = _clamp(
            "PATIENCE_ROUNDS", config.PATIENCE_ROUNDS, 1, entrypoint=entrypoint
        )

    if config.VPN_ENABLED and not config.VPN_CHANGE_COMMAND:
        # Not fatal: the controller treats a missing command as "no change".
        log_line("[CONFIG] VPN_ENABLED is set but VPN_CHANGE_COMMAND is empty.")


def validate_scrape_config(scrape_config: ScrapeConfig, *, entrypoint: Entrypoint) -> ScrapeConfig:
    """Reject per-job settings outside their documented ranges."""

    for field_name, (low, high) in SCRAPE_CONFIG_BOUNDS.items():
        value = getattr(scrape_config, field_name)
        if not low <= value <= high:
            _raise_config_error(
                f"{field_name} must be between {low} and {high}.",
                entrypoint=entrypoint,
                error="scrape_config_out_of_range",
                field=field_name,
            )

    if scrape_config.random_delay_min_ms > scrape_config.random_delay_max_ms:
        _raise_config_error(
            "random_delay_min_ms must not exceed random_delay_max_ms.",
            entrypoint=entrypoint,
            error="scrape_config_delay_order",
            field="random_delay_min_ms",
        )
    return scrape_config


__all__ = [
    "Entrypoint",
    "SCRAPE_CONFIG_BOUNDS",
    "validate_runtime_config",
    "validate_scrape_config",
]
