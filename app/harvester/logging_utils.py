from __future__ import annotations

import contextlib
import contextvars
from typing import Any, Iterator

from .utils import log_line

# Job id attached to every event emitted while a job is running. Worker tasks
# inherit it because asyncio copies the context when a task is created.
_CURRENT_JOB: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "harvester_job_id", default=None
)


@contextlib.contextmanager
def bind_job(job_id: str) -> Iterator[None]:
    """Tag events emitted inside the block with ``job_id``."""

    token = _CURRENT_JOB.set(job_id)
    try:
        yield
    finally:
        _CURRENT_JOB.reset(token)


def current_job() -> str | None:
    return _CURRENT_JOB.get()


def format_event(label: str, fields: dict[str, Any]) -> str:
    payload = ", ".join(f"{k}={v!r}" for k, v in sorted(fields.items()) if v is not None)
    return f"[HARVESTER][{label.upper()}] {payload}"


def _scraper_event(label: str = "", *, phase: str | None = None, **fields: Any) -> None:
    """Emit one structured harvester event line.

    ``phase`` doubles as the label when no label is given; otherwise it is
    kept in the payload. ``None`` valued fields are left out, and the bound job
    id is added unless the caller passes its own.
    """

    try:
        event_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        job_id = _CURRENT_JOB.get()
        if job_id is not None:
            fields.setdefault("job_id", job_id)
        log_line(format_event(event_label, fields))
    except Exception:  # noqa: BLE001
        return


__all__ = ["_scraper_event", "bind_job", "current_job", "format_event"]
