from __future__ import annotations

import os
import threading
import time
from collections import deque
from pathlib import Path
from typing import IO, Any, Dict, Generator

from flask import Flask, Response, jsonify, request, send_file

from app.harvester import config
from app.harvester.config_validation import validate_runtime_config, validate_scrape_config
from app.harvester.exports import EXPORT_FORMATS, write_export
from app.harvester.healthcheck import run_health_checks
from app.harvester.jobs import JobStore
from app.harvester.logging_utils import _scraper_event
from app.harvester.models import ScrapeConfig
from app.harvester.orchestrator import ServiceContext
from app.harvester.run import run_scrape
from app.harvester.utils import ensure_dirs, get_current_log_path, log_line

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")

# Storage paths are created on import so WSGI entrypoints have them ready.
ensure_dirs()

SERVICES = ServiceContext.from_environment()
JOBS = JobStore()

if SERVICES.proxy_pool.size:
    SERVICES.proxy_pool.start_health_checks()


def _recent_log_lines(limit: int = 150) -> list[str]:
    ensure_dirs()
    path = get_current_log_path()
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as handle:
        return [line.rstrip("\n") for line in deque(handle, maxlen=limit)]


def _open_at_end(path: Path) -> IO[str]:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    handle = path.open("r", encoding="utf-8", errors="ignore")
    handle.seek(0, os.SEEK_END)
    return handle


def _follow_log() -> Generator[str, None, None]:
    """Yield server-sent events for lines appended to the active log file.

    Jobs rotate the log file, so the active path is re-read on every poll.
    """

    ensure_dirs()
    following = get_current_log_path()
    handle = _open_at_end(following)
    try:
        while True:
            active = get_current_log_path()
            if active != following:
                handle.close()
                following, handle = active, _open_at_end(active)

            line = handle.readline()
            if not line:
                time.sleep(1)
                yield ": keep-alive\n\n"
                continue
            yield f"data: {line.rstrip()}\n\n"
    finally:
        handle.close()


def _start_job_thread(job_id: str, url: str, scrape_config: ScrapeConfig) -> None:
    entry = JOBS.entries[job_id]
    sink = JOBS.sink(job_id)

    def _run() -> None:
        try:
            result = run_scrape(
                url,
                scrape_config,
                job_id=job_id,
                services=SERVICES,
                sink=sink,
                state=entry.state,
                trigger="ui",
            )
            JOBS.record_failures(job_id, result["failures"])
        except Exception as exc:  # noqa: BLE001
            log_line(f"Scrape thread failed for job {job_id}: {exc}")

    threading.Thread(target=_run, daemon=True, name=f"job-{job_id}").start()


@app.post("/api/scrape")
def api_start_scrape() -> Response:
    """Validate a scrape request and start the job in a background thread."""

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    url = str(payload.get("url") or "").strip()
    if not url.startswith(("http://", "https://")):
        return jsonify({"error": "url must be an absolute http(s) URL"}), 400

    try:
        validate_runtime_config("ui")
        scrape_config = validate_scrape_config(ScrapeConfig.from_mapping(payload), entrypoint="ui")
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    entry = JOBS.create(url, scrape_config)
    _scraper_event("state", phase="api", kind="job_created", job_id=entry.job_id, url=url)
    _start_job_thread(entry.job_id, url, scrape_config)
    return jsonify({"job_id": entry.job_id, "status": entry.state.phase.value}), 202


@app.get("/api/scrape/<job_id>")
def api_scrape_status(job_id: str) -> Response:
    job = JOBS.get(job_id)
    if job is None:
        return jsonify({"error": "job not found"}), 404
    return jsonify(job)


@app.get("/api/jobs")
def api_jobs() -> Response:
    return jsonify({"jobs": JOBS.list()})


@app.get("/api/proxies")
def api_proxies() -> Response:
    stats = SERVICES.proxy_pool.stats()
    return jsonify(
        {
            "total": SERVICES.proxy_pool.size,
            "healthy": len(SERVICES.proxy_pool.healthy_endpoints()),
            "proxies": [health.to_dict() for health in stats.values()],
        }
    )


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, filesystem and network identity."""

    result = run_health_checks(entrypoint="ui", services=SERVICES)
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


@app.get("/api/logs")
def api_logs() -> Response:
    try:
        limit = int(request.args.get("limit", 150))
    except (TypeError, ValueError):
        limit = 150
    return jsonify({"lines": _recent_log_lines(max(1, limit))})


@app.get("/logs/stream")
def logs_stream() -> Response:
    """Stream log updates to the browser using SSE."""

    response = Response(_follow_log(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


@app.get("/failures/<path:filename>")
def download_failure_report(filename: str) -> Response:
    """Serve a failure report from the failure-log directory."""

    target = (config.FAILURE_LOG_DIR / filename).resolve()
    if not target.is_relative_to(config.FAILURE_LOG_DIR.resolve()):
        return jsonify({"error": "invalid path"}), 400
    if not target.is_file():
        return jsonify({"error": "report not found"}), 404
    return send_file(target, as_attachment=True, download_name=target.name)


@app.get("/api/export/<job_id>")
def api_export(job_id: str) -> Response:
    """Download a job's records as JSON, CSV or an Excel workbook."""

    fmt = request.args.get("format", "json").lower()
    if fmt not in EXPORT_FORMATS:
        return jsonify({"error": f"format must be one of {', '.join(EXPORT_FORMATS)}"}), 400

    rows = JOBS.export_rows(job_id)
    if rows is None:
        return jsonify({"error": "job not found"}), 404

    records, failures = rows
    target = write_export(records, fmt=fmt, job_id=job_id, failures=failures)
    return send_file(target, as_attachment=True, download_name=target.name)
