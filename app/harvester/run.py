"""Entry points that run one extraction job end to end.

``run_scrape`` is used by the web app worker threads and by the CLI:

    python -m app.harvester.run --url https://example.com/gallery --max-images 50
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .config_validation import validate_runtime_config, validate_scrape_config
from .exports import EXPORT_FORMATS, write_export
from .logging_utils import _scraper_event
from .models import JobRunState, ScrapeConfig
from .orchestrator import JobOrchestrator, JobStateSink, ServiceContext
from .utils import ensure_dirs, log_line, setup_run_logger, short_error_message


async def run_scrape_async(
    url: str,
    scrape_config: Optional[ScrapeConfig] = None,
    *,
    job_id: Optional[str] = None,
    services: Optional[ServiceContext] = None,
    sink: Optional[JobStateSink] = None,
    state: Optional[JobRunState] = None,
    orchestrator: Optional[JobOrchestrator] = None,
    trigger: str = "cli",
) -> Dict[str, Any]:
    scrape_config = scrape_config or ScrapeConfig()
    job_id = job_id or uuid.uuid4().hex[:12]
    orchestrator = orchestrator or JobOrchestrator(services or ServiceContext.from_environment())

    _scraper_event("state", phase="run", kind="start", job_id=job_id, url=url, trigger=trigger)
    try:
        records = await orchestrator.run(job_id, url, scrape_config, sink, state=state)
    except Exception as exc:  # noqa: BLE001
        _scraper_event("error", phase="run", job_id=job_id, error=short_error_message(exc))
        raise

    job_state = orchestrator.state
    failure_log = orchestrator.failure_log
    return {
        "job_id": job_id,
        "url": url,
        "trigger": trigger,
        "records": [record.to_dict() for record in records],
        "state": job_state.to_dict() if job_state else None,
        "failures": [failure.to_dict() for failure in failure_log.failures()] if failure_log else [],
        "retry_rounds": orchestrator.retry_rounds_run,
    }


def run_scrape(
    url: str,
    scrape_config: Optional[ScrapeConfig] = None,
    *,
    job_id: Optional[str] = None,
    services: Optional[ServiceContext] = None,
    sink: Optional[JobStateSink] = None,
    state: Optional[JobRunState] = None,
    orchestrator: Optional[JobOrchestrator] = None,
    trigger: str = "cli",
) -> Dict[str, Any]:
    """Run one job on a fresh event loop; blocks until it finishes."""

    ensure_dirs()
    log_path = setup_run_logger()
    log_line(f"[RUN] Starting job for {url} (trigger={trigger}, log={log_path})")
    return asyncio.run(
        run_scrape_async(
            url,
            scrape_config,
            job_id=job_id,
            services=services,
            sink=sink,
            state=state,
            orchestrator=orchestrator,
            trigger=trigger,
        )
    )


def _cli_entrypoint(argv: Optional[List[str]] = None) -> None:
    ensure_dirs()
    # Clamped runtime knobs feed the argument defaults below.
    validate_runtime_config("cli")
    defaults = ScrapeConfig()
    parser = argparse.ArgumentParser(description="Extract item metadata from a gallery")
    parser.add_argument("--url", required=True)
    parser.add_argument("--max-images", type=int, default=defaults.max_images)
    parser.add_argument("--concurrency", type=int, default=defaults.concurrency)
    parser.add_argument("--scroll-delay-ms", type=int, default=defaults.scroll_delay_ms)
    parser.add_argument("--max-retry-rounds", type=int, default=defaults.max_retry_rounds)
    parser.add_argument("--job-timeout-seconds", type=int, default=defaults.job_timeout_seconds)
    parser.add_argument("--no-details", action="store_true", help="Skip detail pages")
    parser.add_argument("--no-scroll", action="store_true", help="Only collect the first page")
    parser.add_argument("--output", type=Path, default=None, help="Export file path")
    parser.add_argument("--format", choices=EXPORT_FORMATS, default="json", help="Export format")
    args = parser.parse_args(argv)

    scrape_config = validate_scrape_config(
        ScrapeConfig(
            max_images=args.max_images,
            extract_details=not args.no_details,
            auto_scroll=not args.no_scroll,
            scroll_delay_ms=args.scroll_delay_ms,
            concurrency=args.concurrency,
            max_retry_rounds=args.max_retry_rounds,
            job_timeout_seconds=args.job_timeout_seconds,
        ),
        entrypoint="cli",
    )

    result = run_scrape(args.url, scrape_config, trigger="cli")
    output = write_export(
        result["records"],
        args.output,
        fmt=args.format,
        job_id=result["job_id"],
        failures=result["failures"],
    )
    log_line(
        f"[RUN] {len(result['records'])} records written to {output}; "
        f"{len(result['failures'])} failure(s) after {result['retry_rounds']} retry round(s)"
    )


if __name__ == "__main__":  # pragma: no cover
    _cli_entrypoint()

__all__ = ["run_scrape", "run_scrape_async", "_cli_entrypoint"]
