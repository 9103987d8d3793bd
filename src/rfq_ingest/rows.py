"""Walk data rows below a located header."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from rfq_ingest.models import (
    UNRESOLVED,
    ColumnRef,
    ColumnRoles,
    ExtractedItem,
    Resolved,
    Sheet,
    is_blank,
)
from rfq_ingest.normalize import detect_rows_currency, parse_numeric

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_BLANKS = 3


def _price_blank(sheet: Sheet, row: int, price: ColumnRef) -> bool:
    return is_blank(sheet.column_value(row, price))


def iter_data_rows(
    sheet: Sheet,
    header_row: int,
    description: ColumnRef,
    price: ColumnRef = UNRESOLVED,
) -> Iterator[int]:
    """Yield the absolute index of every data row below *header_row*.

    A row is data when its description cell is non-blank. Three blank
    descriptions in a row end the table. A described row with a blank price
    ends the table (and is dropped) when the next row has neither a
    description nor a price. Without a price column that lookahead is skipped.
    """
    if not isinstance(description, Resolved):
        return

    check_price = isinstance(price, Resolved)
    blanks = 0
    for row in range(header_row + 1, sheet.max_row + 1):
        if not sheet.column_text(row, description):
            blanks += 1
            if blanks >= MAX_CONSECUTIVE_BLANKS:
                logger.debug("%s: %d blank rows at row %d, stopping", sheet.name, blanks, row + 1)
                return
            continue

        blanks = 0
        if check_price and _price_blank(sheet, row, price):
            nxt = row + 1
            if not sheet.column_text(nxt, description) and _price_blank(sheet, nxt, price):
                logger.debug("%s: trailing label row %d excluded", sheet.name, row + 1)
                return
        yield row


def count_rows(sheet: Sheet, header_row: int, roles: ColumnRoles) -> int:
    """Preview count; consumes the same generator as :func:`extract_rows`."""
    return sum(1 for _ in iter_data_rows(sheet, header_row, roles.description, roles.price))


def extract_rows(
    sheet: Sheet,
    header_row: int,
    roles: ColumnRoles,
    *,
    tab: str | None = None,
    fallback_currency: str = "$",
) -> list[ExtractedItem]:
    """Build normalized items for every data row below *header_row*."""
    rows = list(iter_data_rows(sheet, header_row, roles.description, roles.price))
    currency = detect_rows_currency(sheet, rows, roles) or fallback_currency
    tab_name = sheet.name if tab is None else tab

    items: list[ExtractedItem] = []
    for position, row in enumerate(rows, start=1):
        qty = parse_numeric(sheet.column_value(row, roles.qty), context="display")
        raw_price = parse_numeric(sheet.column_value(row, roles.price), context="sum")
        if isinstance(roles.total, Resolved):
            raw_total = parse_numeric(sheet.column_value(row, roles.total), context="sum")
        else:
            raw_total = raw_price * (qty if qty is not None else 1.0)

        items.append(
            ExtractedItem(
                position=position,
                description=sheet.column_text(row, roles.description),
                remark=sheet.column_text(row, roles.remark),
                unit=sheet.column_text(row, roles.unit),
                qty=qty,
                raw_price=raw_price,
                raw_total=raw_total,
                currency=currency,
                tab=tab_name,
                row=row,
            )
        )
    return items
