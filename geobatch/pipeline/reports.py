"""Run report output."""

from __future__ import annotations

from pathlib import Path

from geobatch.common.fs import write_json
from geobatch.common.models import RunSummary


def write_run_summary(path: Path, summary: RunSummary, *, sources: list[str]) -> Path:
    payload = summary.to_dict()
    payload["sources"] = sources
    payload["totals"] = {
        "records_read": summary.records_read,
        "results": summary.succeeded + summary.failed + summary.cancelled,
    }
    write_json(path, payload)
    return path
