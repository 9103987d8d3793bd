"""Ingestion pipeline — bytes → header → roles → rows → priced items.

Every caller goes through the same locate/resolve/extract path; only the
keyword sets (:class:`KeywordProfile`) differ.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from pathlib import Path

from rfq_ingest.aggregate import category_for_tab
from rfq_ingest.columns import KeywordProfile, resolve_roles
from rfq_ingest.config import IngestConfig
from rfq_ingest.errors import IngestError
from rfq_ingest.header import header_cells, locate_header, parse_anchor
from rfq_ingest.io import load_workbook_bytes, read_upload
from rfq_ingest.models import (
    CellRef,
    ExtractedItem,
    FileAnalysis,
    HeaderRow,
    Sheet,
    Stage,
    TabAnalysis,
    Unresolved,
)
from rfq_ingest.pricing import apply_pricing
from rfq_ingest.rows import count_rows, extract_rows

__all__ = [
    "KeywordProfile",
    "analyze_sheet",
    "analyze_workbook",
    "collect_items",
    "ingest_files",
    "ingest_paths",
    "reanalyze_tab",
    "with_stage",
]

logger = logging.getLogger(__name__)

AnchorOverrides = Mapping[str, CellRef]


def _anchor_for(tab: str, anchors: AnchorOverrides | None) -> CellRef | None:
    if not anchors:
        return None
    for name, anchor in anchors.items():
        if name.strip().upper() == tab.strip().upper():
            return anchor
    return None


# ── Per tab ──────────────────────────────────────────────────────


def analyze_sheet(
    sheet: Sheet,
    config: IngestConfig | None = None,
    *,
    anchor: CellRef | str | None = None,
) -> TabAnalysis:
    """Locate the header (or take *anchor*), resolve roles and extract rows.

    A tab is excluded when it yields no rows; hidden tabs follow the same rule.
    """
    config = config or IngestConfig()
    profile = config.keywords

    if anchor is None:
        located = locate_header(
            sheet,
            keywords=profile.description,
            max_rows=config.scan_rows,
            max_cols=config.scan_cols,
        )
    else:
        located = parse_anchor(anchor) if isinstance(anchor, str) else anchor
        logger.debug("%s: manual anchor %s", sheet.name, located.a1)

    if isinstance(located, Unresolved):
        return TabAnalysis(name=sheet.name, hidden=sheet.hidden, excluded=True, stage=Stage.READING)

    cells = header_cells(sheet, located)
    roles = resolve_roles(cells, profile, config.column_mode)
    header = HeaderRow(anchor=located, cells=cells, roles=roles)
    row_count = count_rows(sheet, header.row, header.roles)
    items = extract_rows(
        sheet, header.row, header.roles, fallback_currency=config.fallback_currency
    )
    logger.debug("%s: %d row(s) below %s", sheet.name, row_count, located.a1)

    return TabAnalysis(
        name=sheet.name,
        anchor=located,
        header=cells,
        roles=header.roles,
        row_count=row_count,
        hidden=sheet.hidden,
        excluded=row_count == 0,
        items=tuple(items),
        currency=items[0].currency if items else "",
        stage=Stage.ROWS_EXTRACTED,
    )


# ── Per file ─────────────────────────────────────────────────────


def analyze_workbook(
    file_name: str,
    data: bytes,
    config: IngestConfig | None = None,
    *,
    anchors: AnchorOverrides | None = None,
) -> FileAnalysis:
    """Analyze every tab of one upload. Failures land on the returned analysis."""
    config = config or IngestConfig()
    try:
        sheets = load_workbook_bytes(data, file_name)
        tabs = tuple(
            analyze_sheet(sheet, config, anchor=_anchor_for(sheet.name, anchors))
            for sheet in sheets
        )
    except IngestError as exc:
        logger.warning("%s: %s", file_name, exc)
        return FileAnalysis(file_name=file_name, data=data, error=str(exc), stage=Stage.ERROR)
    except Exception as exc:
        logger.exception("%s: unexpected failure", file_name)
        return FileAnalysis(
            file_name=file_name,
            data=data,
            error=f"Unexpected error: {exc}",
            stage=Stage.ERROR,
        )
    return FileAnalysis(file_name=file_name, data=data, tabs=tabs, stage=Stage.ROWS_EXTRACTED)


def reanalyze_tab(
    analysis: FileAnalysis,
    tab_name: str,
    anchor: CellRef | str,
    config: IngestConfig | None = None,
) -> FileAnalysis:
    """Re-run roles → rows for one tab from a manual *anchor*.

    Raises ``KeyError`` for an unknown tab and ``ValueError`` for a malformed
    anchor or a file that never loaded.
    """
    if not analysis.ok:
        raise ValueError(f"{analysis.file_name} failed to load: {analysis.error}")
    anchor_ref = parse_anchor(anchor) if isinstance(anchor, str) else anchor
    analysis.tab(tab_name)  # KeyError for unknown tabs

    sheets = load_workbook_bytes(analysis.data, analysis.file_name)
    sheet = next(s for s in sheets if s.name == tab_name)
    updated = analyze_sheet(sheet, config, anchor=anchor_ref)
    tabs = tuple(updated if tab.name == tab_name else tab for tab in analysis.tabs)
    return replace(analysis, tabs=tabs, stage=Stage.ROWS_EXTRACTED)


def ingest_files(
    uploads: Iterable[tuple[str, bytes]],
    config: IngestConfig | None = None,
    *,
    anchors: AnchorOverrides | None = None,
) -> list[FileAnalysis]:
    """Analyze uploads one after another; one bad file never stops the rest."""
    config = config or IngestConfig()
    return [
        analyze_workbook(file_name, data, config, anchors=anchors)
        for file_name, data in uploads
    ]


def ingest_paths(
    paths: Iterable[Path],
    config: IngestConfig | None = None,
    *,
    anchors: AnchorOverrides | None = None,
) -> list[FileAnalysis]:
    config = config or IngestConfig()
    analyses: list[FileAnalysis] = []
    for path in paths:
        try:
            file_name, data = read_upload(path)
        except IngestError as exc:
            logger.warning("%s: %s", path, exc)
            analyses.append(FileAnalysis(file_name=Path(path).name, error=str(exc), stage=Stage.ERROR))
            continue
        analyses.append(analyze_workbook(file_name, data, config, anchors=anchors))
    return analyses


def collect_items(
    analyses: Sequence[FileAnalysis],
    config: IngestConfig | None = None,
) -> list[ExtractedItem]:
    """Items from every included tab, priced from their raw values."""
    config = config or IngestConfig()
    raw = [
        item
        for analysis in analyses
        if analysis.ok
        for tab in analysis.tabs
        if not tab.excluded
        for item in tab.items
    ]
    return apply_pricing(raw, config.pricing, category_of=lambda item: category_for_tab(item.tab))


def with_stage(analyses: Iterable[FileAnalysis], stage: Stage) -> list[FileAnalysis]:
    """Advance every successfully analyzed file to *stage*; errored files keep ``ERROR``."""
    return [replace(a, stage=stage) if a.ok else a for a in analyses]
