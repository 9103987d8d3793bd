"""Header location — find the header row and its anchor cell in a raw grid."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from rfq_ingest import DESCRIPTION_KEYWORDS
from rfq_ingest.models import UNRESOLVED, AnchorRef, CellRef, Sheet, Unresolved

logger = logging.getLogger(__name__)

EXPLORATORY_ROWS = 50
EXPLORATORY_COLS = 25


def signals_header(text: str, keywords: Iterable[str] = DESCRIPTION_KEYWORDS) -> bool:
    """True when the lowercase-trimmed *text* contains any header keyword."""
    needle = text.strip().lower()
    if not needle:
        return False
    return any(keyword in needle for keyword in keywords)


def locate_header(
    sheet: Sheet,
    *,
    keywords: Iterable[str] = DESCRIPTION_KEYWORDS,
    max_rows: int | None = None,
    max_cols: int | None = None,
) -> AnchorRef:
    """Return the anchor of the first row containing a header keyword.

    The scan is row-major over the sheet range, optionally bounded to the
    first *max_rows* rows and *max_cols* columns. The anchor column is always
    the leftmost column of the range, not the column that matched.
    Returns ``UNRESOLVED`` when no row qualifies.
    """
    keywords = tuple(k.lower() for k in keywords)
    last_row = sheet.max_row
    last_col = sheet.max_col
    if max_rows is not None:
        last_row = min(last_row, sheet.min_row + max_rows - 1)
    if max_cols is not None:
        last_col = min(last_col, sheet.min_col + max_cols - 1)

    for row in range(sheet.min_row, last_row + 1):
        for col in range(sheet.min_col, last_col + 1):
            if signals_header(sheet.text(row, col), keywords):
                anchor = CellRef(row=row, col=sheet.min_col)
                logger.debug("%s: header located at %s", sheet.name, anchor.a1)
                return anchor

    logger.debug("%s: no header row found", sheet.name)
    return UNRESOLVED


def parse_anchor(text: str) -> CellRef:
    """Parse a manual anchor override such as ``"B5"``.

    Raises ``ValueError`` for anything that is not letters followed by a
    positive row number.
    """
    return CellRef.parse(text)


def header_cells(sheet: Sheet, anchor: AnchorRef) -> tuple[tuple[int, str], ...]:
    """Non-blank ``(column_index, text)`` pairs from the anchor to the right edge."""
    if isinstance(anchor, Unresolved):
        return ()
    cells: list[tuple[int, str]] = []
    for col in range(anchor.col, sheet.max_col + 1):
        text = sheet.text(anchor.row, col)
        if text:
            cells.append((col, text))
    return tuple(cells)
