"""CLI entry point for rfq-ingest."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import date
from enum import Enum
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table as RichTable

from rfq_ingest import __version__
from rfq_ingest.aggregate import aggregate_items, primary_currency
from rfq_ingest.config import IngestConfig, load_config
from rfq_ingest.header import EXPLORATORY_COLS, EXPLORATORY_ROWS, parse_anchor
from rfq_ingest.io import write_json
from rfq_ingest.models import CellRef, FileAnalysis, IngestReport, RunManifest, Stage
from rfq_ingest.pipeline import collect_items, ingest_paths, with_stage
from rfq_ingest.qc import build_ingest_report, write_ingest_report
from rfq_ingest.utils import sha256_bytes, utcnow_iso
from rfq_ingest.workbook import InvoiceDetails, assemble_workbooks, write_workbooks

app = typer.Typer(
    name="rfqi",
    help="rfq-ingest — Turn schema-free supplier spreadsheets into invoice workbooks.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()


class CompanyOption(str, Enum):
    US = "US"
    UK = "UK"
    EOS = "EOS"


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"rfq-ingest v{__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _parse_anchor_overrides(raw: list[str] | None) -> dict[str, CellRef]:
    """Parse ``--anchor TAB=B5`` pairs into ``{tab: CellRef}``."""
    if not raw:
        return {}
    anchors: dict[str, CellRef] = {}
    for item in raw:
        if "=" not in item:
            raise ValueError(f"Invalid --anchor value: {item!r}  (expected TAB=B5)")
        tab, ref = item.rsplit("=", 1)
        if not tab.strip():
            raise ValueError(f"Invalid --anchor value: {item!r}  (tab name is empty)")
        anchors[tab.strip()] = parse_anchor(ref)
    return anchors


def _load(
    config_path: Path | None, anchor: list[str] | None
) -> tuple[IngestConfig, dict[str, CellRef]]:
    return load_config(config_path), _parse_anchor_overrides(anchor)


def _write_manifest(
    out_dir: Path,
    analyses: Sequence[FileAnalysis],
    run_id: str,
    created_at: str,
    *,
    outputs: Sequence[Path] = (),
    rows_out: int = 0,
    status: str = "success",
    error_code: int | None = None,
    error_message: str = "",
) -> Path:
    manifest = RunManifest(
        run_id=run_id,
        version=__version__,
        created_at_utc=created_at,
        inputs=[
            {"name": a.file_name, "sha256": sha256_bytes(a.data) if a.data else ""}
            for a in analyses
        ],
        outputs=[p.name for p in outputs],
        rows_out=rows_out,
        status=status,
        error_code=error_code,
        error_message=error_message,
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _write_failure_artifacts(
    out_dir: Path,
    analyses: Sequence[FileAnalysis],
    run_id: str,
    created_at: str,
    *,
    message: str,
    error_code: int = 2,
) -> tuple[Path, Path]:
    files_ok = sum(1 for a in analyses if a.ok)
    report = IngestReport(
        files_in=len(analyses),
        files_ok=files_ok,
        files_failed=len(analyses) - files_ok,
        errors=[message] + [f"{a.file_name}: {a.error}" for a in analyses if not a.ok],
    )
    report_path = write_ingest_report(out_dir, report)
    manifest_path = _write_manifest(
        out_dir,
        analyses,
        run_id,
        created_at,
        status="failed",
        error_code=error_code,
        error_message=message,
    )
    return report_path, manifest_path


def _fail(
    out_dir: Path,
    analyses: Sequence[FileAnalysis],
    run_id: str,
    created_at: str,
    *,
    message: str,
    error_code: int,
) -> NoReturn:
    report_path, manifest_path = _write_failure_artifacts(
        out_dir, analyses, run_id, created_at, message=message, error_code=error_code
    )
    _err(message)
    console.print(f"  Report   -> {report_path}")
    console.print(f"  Manifest -> {manifest_path}")
    raise typer.Exit(code=error_code)


def _analysis_table(analyses: Sequence[FileAnalysis]) -> RichTable:
    tbl = RichTable(title="Sheet Analysis", show_lines=True)
    for column in ("File", "Tab", "Anchor", "Description", "Price", "Qty", "Rows",
                   "Hidden", "Excluded", "Currency"):
        tbl.add_column(column, style="bold" if column == "File" else None)

    for analysis in analyses:
        if not analysis.ok:
            tbl.add_row(analysis.file_name, "-", f"[red]{analysis.error}[/red]",
                        "", "", "", "", "", "", "")
            continue
        for tab in analysis.tabs:
            roles = tab.roles.to_dict()
            anchor = tab.anchor.a1 if isinstance(tab.anchor, CellRef) else "[yellow]not found[/yellow]"
            tbl.add_row(
                analysis.file_name,
                tab.name,
                anchor,
                roles["description"] or "-",
                roles["price"] or "-",
                roles["qty"] or "-",
                str(tab.row_count),
                "yes" if tab.hidden else "no",
                "[yellow]yes[/yellow]" if tab.excluded else "no",
                tab.currency or "-",
            )
    return tbl


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """rfq-ingest CLI."""


# ── analyze command ──────────────────────────────────────────────


@app.command()
def analyze(
    input_files: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Spreadsheet to analyze (.xlsx, .xlsm, .xls, .csv). Repeatable.",
        exists=True, readable=True, dir_okay=False,
    ),
    anchor: list[str] | None = typer.Option(
        None, "--anchor", "-a",
        help="Manual header anchor for a tab: TAB=B5. Repeatable.",
    ),
    config_path: Path | None = typer.Option(
        None, "--config", "-c",
        help="Config file of key=value lines (e.g. divisor=0.9).",
    ),
    explore: bool = typer.Option(
        False, "--explore",
        help=f"Only scan the first {EXPLORATORY_ROWS} rows x {EXPLORATORY_COLS} columns "
             "for the header.",
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for analysis.json.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes analysis.json.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log pipeline stages.",
    ),
) -> None:
    """Preview how each tab would be ingested without writing workbooks.

    Exit 0 = at least one file analyzed, exit 2 = bad options or no readable file.
    """
    _setup_logging(verbose)
    out_dir.mkdir(parents=True, exist_ok=True)
    try:
        config, anchors = _load(config_path, anchor)
    except ValueError as exc:
        _err(str(exc))
        raise typer.Exit(code=2)
    if explore:
        config = config.with_overrides(scan_rows=EXPLORATORY_ROWS, scan_cols=EXPLORATORY_COLS)

    analyses = ingest_paths(input_files, config, anchors=anchors)
    analysis_path = write_json(
        out_dir / "analysis.json",
        {"version": __version__, "files": [a.to_dict() for a in analyses]},
    )

    if not quiet:
        console.print(_analysis_table(analyses))
    console.print(f"  Analysis -> {analysis_path}")

    failed = [a for a in analyses if not a.ok]
    for analysis in failed:
        _err(f"{analysis.file_name}: {analysis.error}")
    if len(failed) == len(analyses):
        raise typer.Exit(code=2)


# ── export command ───────────────────────────────────────────────


@app.command()
def export(
    input_files: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Spreadsheet to ingest (.xlsx, .xlsm, .xls, .csv). Repeatable.",
        exists=True, readable=True, dir_okay=False,
    ),
    anchor: list[str] | None = typer.Option(
        None, "--anchor", "-a",
        help="Manual header anchor for a tab: TAB=B5. Repeatable.",
    ),
    company: CompanyOption | None = typer.Option(
        None, "--company",
        help="Company/bank profile printed on the invoice.",
    ),
    currency: str | None = typer.Option(
        None, "--currency",
        help="Invoice currency symbol (NZ$, A$, C$, €, £, $). Default: detected.",
    ),
    divisor: float | None = typer.Option(
        None, "--divisor",
        help="Price divisor; sale price = supplier price / divisor.",
    ),
    invoice_number: str = typer.Option(
        "", "--invoice-number", "-n",
        help="Invoice number.",
    ),
    invoice_date: str | None = typer.Option(
        None, "--date",
        help="Invoice date as YYYY-MM-DD. Default: today.",
    ),
    vessel: str = typer.Option("", "--vessel", help="Vessel name."),
    port: str = typer.Option("", "--port", help="Port of delivery."),
    country: str = typer.Option("", "--country", help="Country of delivery."),
    due: str = typer.Option("", "--due", help="Invoice due text."),
    discount: float = typer.Option(0.0, "--discount", help="Discount in percent."),
    show_usd: bool = typer.Option(
        False, "--show-usd",
        help="Add an approximate TOTAL USD line for non-USD invoices.",
    ),
    split: bool = typer.Option(
        False, "--split",
        help="Write one workbook per category instead of one combined workbook.",
    ),
    config_path: Path | None = typer.Option(
        None, "--config", "-c",
        help="Config file of key=value lines (e.g. divisor=0.9).",
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for workbooks + report + manifest.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log pipeline stages.",
    ),
) -> None:
    """Ingest spreadsheets and write invoice workbook(s)."""
    _setup_logging(verbose)
    echo = _printer(quiet)
    created_at = utcnow_iso()
    run_id = created_at
    out_dir.mkdir(parents=True, exist_ok=True)
    analyses: list[FileAnalysis] = []

    try:
        config, anchors = _load(config_path, anchor)
        config = config.with_overrides(
            company=company.value if company else None,
            divisor=divisor,
        )
        issued = date.fromisoformat(invoice_date) if invoice_date else None
        if discount < 0 or discount >= 100:
            raise ValueError("--discount must be in [0, 100)")
    except ValueError as exc:
        _fail(out_dir, analyses, run_id, created_at, message=str(exc), error_code=2)

    if not quiet:
        console.print(Panel(
            f"[bold]rfq-ingest[/bold] v{__version__}\n"
            f"Input:  {', '.join(str(p) for p in input_files)}\nOutput: {out_dir}",
            title="Export Start", border_style="blue",
        ))

    try:
        # ── Ingest ───────────────────────────────────────────────
        echo("[blue]>[/blue] Reading spreadsheets …")
        analyses = ingest_paths(input_files, config, anchors=anchors)
        for analysis in analyses:
            if not analysis.ok:
                console.print(f"  [yellow]![/yellow] {analysis.file_name}: {analysis.error}")

        items = collect_items(analyses, config)
        if not items:
            _fail(out_dir, analyses, run_id, created_at,
                  message="No usable rows found in any input file.", error_code=2)
        echo(f"  {len(items)} line item(s) from {sum(1 for a in analyses if a.ok)} file(s)")

        # ── Aggregate ────────────────────────────────────────────
        groups = aggregate_items(items)
        analyses = with_stage(analyses, Stage.AGGREGATED)
        invoice_currency = currency or primary_currency(groups, config.fallback_currency)

        # ── Write workbooks ──────────────────────────────────────
        echo("[blue]>[/blue] Writing workbook(s) …")
        details = InvoiceDetails(
            number=invoice_number,
            invoice_date=issued,
            vessel=vessel,
            country=country,
            port=port,
            due=due,
            discount_percent=discount,
            show_usd=show_usd,
        )
        outputs = assemble_workbooks(
            groups,
            company=config.company,
            details=details,
            currency=invoice_currency,
            split=split,
            default_category=config.default_category,
            asset_base_url=config.asset_base_url,
            asset_timeout=config.asset_timeout,
        )
        paths = write_workbooks(out_dir, outputs)
        analyses = with_stage(analyses, Stage.EXPORTED)
        for path in paths:
            echo(f"  Workbook -> {path}")

        # ── Report + manifest ────────────────────────────────────
        report_path = write_ingest_report(out_dir, build_ingest_report(analyses, len(items)))
        echo(f"  Report   -> {report_path}")
        manifest_path = _write_manifest(
            out_dir, analyses, run_id, created_at, outputs=paths, rows_out=len(items)
        )
        echo(f"  Manifest -> {manifest_path}")

        if not quiet:
            console.print(Panel(
                f"[green]Done[/green] — {len(items)} rows -> {len(paths)} workbook(s)",
                title="Export Complete", border_style="green",
            ))
    except typer.Exit:
        raise
    except Exception as exc:
        _fail(out_dir, analyses, run_id, created_at,
              message=f"Unexpected internal error: {exc}", error_code=1)
