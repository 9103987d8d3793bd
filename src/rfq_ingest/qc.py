"""Ingest report persistence."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from rfq_ingest.io import write_json
from rfq_ingest.models import FileAnalysis, IngestReport


def build_ingest_report(analyses: Sequence[FileAnalysis], rows_out: int) -> IngestReport:
    """Summarize per-file outcomes into an :class:`IngestReport`."""
    warnings: list[str] = []
    errors: list[str] = []
    for analysis in analyses:
        if not analysis.ok:
            errors.append(f"{analysis.file_name}: {analysis.error}")
            continue
        for tab in analysis.tabs:
            if tab.excluded and not tab.hidden:
                warnings.append(f"{analysis.file_name} [{tab.name}]: no usable rows")
    files_ok = sum(1 for a in analyses if a.ok)
    return IngestReport(
        files_in=len(analyses),
        files_ok=files_ok,
        files_failed=len(analyses) - files_ok,
        rows_out=rows_out,
        warnings=warnings,
        errors=errors,
    )


def write_ingest_report(out_dir: Path, report: IngestReport) -> Path:
    """Write ``ingest_report.json`` into *out_dir* and return the path."""
    return write_json(out_dir / "ingest_report.json", report.to_dict())
