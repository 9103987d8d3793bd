from __future__ import annotations

import json
from pathlib import Path

import pytest

from rfq_ingest.models import FileAnalysis, IngestReport, Stage, TabAnalysis
from rfq_ingest.qc import build_ingest_report, write_ingest_report


def test_write_ingest_report_writes_expected_contract(tmp_path: Path) -> None:
    report = IngestReport(files_in=2, files_ok=1, files_failed=1, rows_out=4,
                          warnings=["warn"], errors=["bad.xlsx: boom"])

    out = write_ingest_report(tmp_path, report)

    assert out == tmp_path / "ingest_report.json"
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data == {
        "errors": ["bad.xlsx: boom"],
        "files_failed": 1,
        "files_in": 2,
        "files_ok": 1,
        "rows_out": 4,
        "warnings": ["warn"],
    }


def test_build_ingest_report_collects_errors_and_empty_tabs() -> None:
    analyses = [
        FileAnalysis(file_name="bad.xlsx", error="Could not read workbook", stage=Stage.ERROR),
        FileAnalysis(
            file_name="good.xlsx",
            tabs=(
                TabAnalysis(name="PROVISIONS", row_count=3, excluded=False),
                TabAnalysis(name="Notes", excluded=True),
                TabAnalysis(name="Archive", hidden=True, excluded=True),
            ),
            stage=Stage.ROWS_EXTRACTED,
        ),
    ]

    report = build_ingest_report(analyses, rows_out=3)

    assert (report.files_in, report.files_ok, report.files_failed) == (2, 1, 1)
    assert report.rows_out == 3
    assert report.errors == ["bad.xlsx: Could not read workbook"]
    assert report.warnings == ["good.xlsx [Notes]: no usable rows"]


def test_report_counts_must_add_up() -> None:
    with pytest.raises(ValueError, match="files_failed"):
        IngestReport(files_in=2, files_ok=1, files_failed=0)
    with pytest.raises(ValueError, match="files_ok"):
        IngestReport(files_in=1, files_ok=2, files_failed=0)
