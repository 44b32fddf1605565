"""Record exports for finished jobs: JSON, CSV and an Excel workbook."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from . import config
from .utils import log_line

EXPORT_FORMATS = ("json", "csv", "xlsx")

# Column order for tabular exports; tags are joined into one cell.
EXPORT_COLUMNS = (
    "item_id",
    "source_url",
    "collection_hash",
    "thumbnail_url",
    "title",
    "caption",
    "featuring",
    "tags",
    "comments",
    "copyright",
    "date_taken",
    "authors",
    "content_partner",
    "photographer",
    "country",
    "city",
    "image_size",
    "file_size",
)
FAILURE_COLUMNS = ("item_id", "url", "reason", "attempts", "http_status", "retry_round", "timestamp_utc")


def export_filename(job_id: str, fmt: str) -> str:
    return f"records_{job_id}.{fmt}"


def records_frame(records: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    """Flatten record dicts into one row per item with ``EXPORT_COLUMNS``."""

    rows = []
    for record in records:
        row = {column: record.get(column) for column in EXPORT_COLUMNS}
        row["tags"] = ", ".join(record.get("tags") or [])
        rows.append(row)
    return pd.DataFrame(rows, columns=list(EXPORT_COLUMNS))


def _write_workbook(
    path: Path, records: Sequence[Dict[str, Any]], failures: Sequence[Dict[str, Any]]
) -> None:
    frame = records_frame(records)
    failed = pd.DataFrame(
        [{column: failure.get(column) for column in FAILURE_COLUMNS} for failure in failures],
        columns=list(FAILURE_COLUMNS),
    )
    complete = frame[~frame["item_id"].isin(failed["item_id"])] if not frame.empty else frame
    summary = pd.DataFrame(
        [
            {"metric": "records", "count": len(frame)},
            {"metric": "complete", "count": len(complete)},
            {"metric": "failed", "count": len(failed)},
        ]
    )

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        frame.to_excel(writer, index=False, sheet_name="Records")
        failed.to_excel(writer, index=False, sheet_name="Failed")
        summary.to_excel(writer, index=False, sheet_name="Summary")


def write_export(
    records: List[Dict[str, Any]],
    path: Optional[Path] = None,
    *,
    fmt: str = "json",
    job_id: str = "export",
    failures: Sequence[Dict[str, Any]] = (),
) -> Path:
    """Write ``records`` in ``fmt`` and return the file path.

    Without ``path`` the file goes to ``<data dir>/exports``. Raises
    ``ValueError`` for formats outside ``EXPORT_FORMATS``.
    """

    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"unsupported export format: {fmt!r}")

    target = path or config.DATA_DIR / "exports" / export_filename(job_id, fmt)
    target.parent.mkdir(parents=True, exist_ok=True)

    if fmt == "json":
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(records, handle, ensure_ascii=False, indent=2)
    elif fmt == "csv":
        records_frame(records).to_csv(target, index=False, encoding="utf-8")
    else:
        _write_workbook(target, records, failures)

    log_line(f"[EXPORT] {len(records)} records written to {target}")
    return target


__all__ = [
    "EXPORT_COLUMNS",
    "EXPORT_FORMATS",
    "FAILURE_COLUMNS",
    "export_filename",
    "records_frame",
    "write_export",
]
