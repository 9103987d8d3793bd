"""CLI integration smoke tests for rfq-ingest."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from openpyxl import load_workbook
from typer.testing import CliRunner

import rfq_ingest.cli as cli_mod
from rfq_ingest import __version__
from rfq_ingest.cli import app
from rfq_ingest.utils import sha256_bytes

runner = CliRunner()

BOND_ROWS: list[list[Any]] = [
    ["Description", "Qty", "Price"],
    ["Whisky", 2, "$10.00"],
]


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


# ── analyze ─────────────────────────────────────────────────────


def test_analyze_writes_analysis_json(b5_workbook: Path, tmp_path: Path) -> None:
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app, ["analyze", "--input", str(b5_workbook), "--out-dir", str(out_dir), "--quiet"]
    )

    assert result.exit_code == 0
    data = _read_json(out_dir / "analysis.json")
    assert data["version"] == __version__
    (tab,) = data["files"][0]["tabs"]
    assert tab["anchor"] == "B5"
    assert tab["row_count"] == 3
    assert tab["currency"] == "$"
    assert tab["roles"]["description"] == "C"
    assert tab["excluded"] is False


def test_analyze_applies_manual_anchor(make_xlsx: Callable[..., Path], tmp_path: Path) -> None:
    rows = [["Item list", None, None], *BOND_ROWS]
    path = make_xlsx("bond.xlsx", ("BOND", rows, "A1", "visible"))
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        ["analyze", "-i", str(path), "-a", "BOND=A2", "-o", str(out_dir), "-q"],
    )

    assert result.exit_code == 0
    (tab,) = _read_json(out_dir / "analysis.json")["files"][0]["tabs"]
    assert tab["anchor"] == "A2"
    assert tab["row_count"] == 1


def test_analyze_explore_bounds_the_header_scan(
    make_xlsx: Callable[..., Path], tmp_path: Path
) -> None:
    rows: list[list[Any]] = [[None] for _ in range(60)] + [["Description"], ["Rice"]]
    rows[0] = ["Quotation"]
    path = make_xlsx("deep.xlsx", ("S", rows, "A1", "visible"))

    full = runner.invoke(app, ["analyze", "-i", str(path), "-o", str(tmp_path / "a"), "-q"])
    bounded = runner.invoke(
        app, ["analyze", "-i", str(path), "--explore", "-o", str(tmp_path / "b"), "-q"]
    )

    assert full.exit_code == 0
    assert bounded.exit_code == 0
    assert _read_json(tmp_path / "a" / "analysis.json")["files"][0]["tabs"][0]["row_count"] == 1
    (tab,) = _read_json(tmp_path / "b" / "analysis.json")["files"][0]["tabs"]
    assert tab["anchor"] is None
    assert tab["excluded"] is True


def test_analyze_rejects_malformed_anchor(b5_workbook: Path, tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["analyze", "-i", str(b5_workbook), "-a", "PROVISIONS", "-o", str(tmp_path)]
    )
    assert result.exit_code == 2
    assert "expected TAB=B5" in result.output


def test_analyze_exits_2_when_every_file_fails(tmp_path: Path) -> None:
    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"not a workbook")

    result = runner.invoke(app, ["analyze", "-i", str(broken), "-o", str(tmp_path / "out")])

    assert result.exit_code == 2
    data = _read_json(tmp_path / "out" / "analysis.json")
    assert data["files"][0]["stage"] == "error"


# ── export ──────────────────────────────────────────────────────


def test_export_writes_workbook_report_and_manifest(b5_workbook: Path, tmp_path: Path) -> None:
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "export", "--input", str(b5_workbook), "--out-dir", str(out_dir),
            "--invoice-number", "42", "--date", "2026-01-05", "--vessel", "MV Aurora",
            "--quiet",
        ],
    )

    assert result.exit_code == 0, result.output
    workbook_path = out_dir / "HIMarine_Invoice_42_2026-01-05.xlsx"
    assert workbook_path.exists()
    wb = load_workbook(workbook_path)
    assert wb.sheetnames == ["Invoice", "Provisions"]
    assert wb["Provisions"]["G6"].value == "=SUM(G2:G4)"

    report = _read_json(out_dir / "ingest_report.json")
    assert report["files_in"] == 1
    assert report["files_failed"] == 0
    assert report["rows_out"] == 3

    manifest = _read_json(out_dir / "run_manifest.json")
    assert manifest["tool"] == "rfq-ingest"
    assert manifest["status"] == "success"
    assert manifest["rows_out"] == 3
    assert manifest["outputs"] == [workbook_path.name]
    assert manifest["inputs"] == [
        {"name": "supplier.xlsx", "sha256": sha256_bytes(b5_workbook.read_bytes())}
    ]


def test_export_divisor_option_overrides_config(b5_workbook: Path, tmp_path: Path) -> None:
    config = tmp_path / "rfq.conf"
    config.write_text("divisor=0.9\n", encoding="utf-8")
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "export", "-i", str(b5_workbook), "-c", str(config), "--divisor", "0.5",
            "-n", "7", "--date", "2026-01-05", "-o", str(out_dir), "-q",
        ],
    )

    assert result.exit_code == 0, result.output
    ws = load_workbook(out_dir / "HIMarine_Invoice_7_2026-01-05.xlsx")["Provisions"]
    assert ws["F2"].value == 2.0
    assert ws["E2"].value == 2


def test_export_split_writes_one_workbook_per_category(
    b5_workbook: Path, make_xlsx: Callable[..., Path], tmp_path: Path
) -> None:
    bond = make_xlsx("bond.xlsx", ("BOND", BOND_ROWS, "A1", "visible"))
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "export", "-i", str(b5_workbook), "-i", str(bond), "--split", "--company", "EOS",
            "-n", "9", "--date", "2026-01-05", "-o", str(out_dir), "-q",
        ],
    )

    assert result.exit_code == 0, result.output
    manifest = _read_json(out_dir / "run_manifest.json")
    assert manifest["outputs"] == [
        "EOS_Invoice_9_Provisions_2026-01-05.xlsx",
        "EOS_Invoice_9a_Bond_2026-01-05.xlsx",
    ]
    assert manifest["rows_out"] == 4


def test_export_without_usable_rows_exits_2(tmp_path: Path) -> None:
    csv_path = tmp_path / "codes.csv"
    csv_path.write_text("Code,Weight\n1,2\n", encoding="utf-8")
    out_dir = tmp_path / "out"

    result = runner.invoke(app, ["export", "-i", str(csv_path), "-o", str(out_dir), "-q"])

    assert result.exit_code == 2
    manifest = _read_json(out_dir / "run_manifest.json")
    assert manifest["status"] == "failed"
    assert manifest["error_code"] == 2
    assert manifest["error_message"] == "No usable rows found in any input file."
    assert not list(out_dir.glob("*.xlsx"))


def test_export_keeps_going_past_a_broken_file(b5_workbook: Path, tmp_path: Path) -> None:
    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"junk")
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        ["export", "-i", str(broken), "-i", str(b5_workbook), "-n", "1", "-o", str(out_dir), "-q"],
    )

    assert result.exit_code == 0, result.output
    report = _read_json(out_dir / "ingest_report.json")
    assert report["files_in"] == 2
    assert report["files_failed"] == 1
    assert report["errors"][0].startswith("broken.xlsx: ")


@pytest.mark.parametrize(
    "extra",
    [["--discount", "100"], ["--discount", "-1"], ["--date", "05/01/2026"]],
)
def test_export_rejects_bad_options(b5_workbook: Path, tmp_path: Path, extra: list[str]) -> None:
    out_dir = tmp_path / "out"

    result = runner.invoke(app, ["export", "-i", str(b5_workbook), "-o", str(out_dir), *extra])

    assert result.exit_code == 2
    assert _read_json(out_dir / "run_manifest.json")["status"] == "failed"


def test_export_unexpected_error_exits_1(
    b5_workbook: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _boom(*_args: object, **_kwargs: object) -> None:
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(cli_mod, "assemble_workbooks", _boom)
    out_dir = tmp_path / "out"

    result = runner.invoke(app, ["export", "-i", str(b5_workbook), "-o", str(out_dir), "-q"])

    assert result.exit_code == 1
    manifest = _read_json(out_dir / "run_manifest.json")
    assert manifest["error_code"] == 1
    assert "disk on fire" in manifest["error_message"]
