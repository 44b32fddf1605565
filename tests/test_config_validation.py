from __future__ import annotations

import importlib
from pathlib import Path
from typing import Callable, Iterator, List

import pytest

from app.harvester import config
from app.harvester.config_validation import validate_runtime_config, validate_scrape_config
from app.harvester.models import ScrapeConfig
from tests.conftest import _configure_temp_paths


def test_defaults_are_valid() -> None:
    validate_runtime_config("tests")
    assert validate_scrape_config(ScrapeConfig(), entrypoint="tests") == ScrapeConfig()


def test_min_free_mb_negative(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "MIN_FREE_MB", -5)
    with pytest.raises(ValueError, match="MIN_FREE_MB"):
        validate_runtime_config("cli")


@pytest.mark.parametrize(
    "field_name", ["NAV_TIMEOUT_SECONDS", "GALLERY_READY_TIMEOUT_SECONDS", "EMBED_WAIT_TIMEOUT_SECONDS"]
)
def test_invalid_timeout(monkeypatch: pytest.MonkeyPatch, field_name: str) -> None:
    monkeypatch.setattr(config, field_name, 0)
    with pytest.raises(ValueError, match=field_name):
        validate_runtime_config("cli")


def test_empty_meaningful_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "MEANINGFUL_FIELDS", ())
    with pytest.raises(ValueError):
        validate_runtime_config("ui")


def test_item_url_template_needs_item_placeholder(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ITEM_URL_TEMPLATE", "https://example.com/{hash}")
    with pytest.raises(ValueError):
        validate_runtime_config("cli")


def test_soft_knobs_are_clamped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "NAV_MAX_ATTEMPTS", 0)
    monkeypatch.setattr(config, "DEFAULT_CONCURRENCY", 99)
    monkeypatch.setattr(config, "DEFAULT_MAX_RETRY_ROUNDS", 0)
    monkeypatch.setattr(config, "PATIENCE_ROUNDS", -1)

    validate_runtime_config("tests")

    assert config.NAV_MAX_ATTEMPTS == 1
    assert config.DEFAULT_CONCURRENCY == config.MAX_CONCURRENCY
    assert config.DEFAULT_MAX_RETRY_ROUNDS == 1
    assert config.PATIENCE_ROUNDS == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {"concurrency": 0},
        {"scroll_delay_ms": 100},
        {"max_retry_rounds": 6},
        {"max_images": -1},
        {"random_delay_min_ms": 500, "random_delay_max_ms": 100},
    ],
)
def test_scrape_config_out_of_range(overrides: dict) -> None:
    with pytest.raises(ValueError):
        validate_scrape_config(ScrapeConfig(**overrides), entrypoint="ui")


@pytest.fixture
def reload_config(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Iterator[Callable[..., None]]:
    """Re-import ``config`` under the given environment, keeping temp paths."""

    names: List[str] = []

    def _reload(**env: str) -> None:
        for name, value in env.items():
            monkeypatch.setenv(name, value)
            names.append(name)
        importlib.reload(config)
        _configure_temp_paths(tmp_path, monkeypatch)

    yield _reload

    for name in names:
        monkeypatch.delenv(name, raising=False)
    importlib.reload(config)


def test_clamped_environment_defaults_reach_job_config(reload_config) -> None:
    reload_config(
        HARVESTER_CONCURRENCY="20",
        HARVESTER_MAX_RETRY_ROUNDS="9",
        HARVESTER_NAV_MAX_ATTEMPTS="0",
        HARVESTER_PATIENCE_ROUNDS="0",
    )
    assert ScrapeConfig().concurrency == 20

    validate_runtime_config("cli")
    defaults = validate_scrape_config(ScrapeConfig(), entrypoint="cli")

    assert defaults.concurrency == config.MAX_CONCURRENCY
    assert defaults.max_retry_rounds == 5
    assert config.NAV_MAX_ATTEMPTS == 1
    assert config.PATIENCE_ROUNDS == 1
