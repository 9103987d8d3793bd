"""Shared workbook builders for tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from io import BytesIO
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook
from openpyxl.utils.cell import column_index_from_string, coordinate_from_string

SheetSpec = tuple[str, Sequence[Sequence[Any]], str, str]

RFQ_HEADER = ["Pos", "Description", "Remark", "Unit", "Qty", "Price", "Total"]


def build_xlsx(sheets: Sequence[SheetSpec]) -> bytes:
    """Build a workbook from ``(title, rows, origin, state)`` tuples; ``None`` cells stay empty."""
    wb = Workbook()
    default = wb.active
    if default is not None:
        wb.remove(default)
    for title, rows, origin, state in sheets:
        ws = wb.create_sheet(title=title)
        letters, first_row = coordinate_from_string(origin)
        first_col = column_index_from_string(letters)
        for r_off, row in enumerate(rows):
            for c_off, value in enumerate(row):
                if value is not None:
                    ws.cell(row=first_row + r_off, column=first_col + c_off, value=value)
        ws.sheet_state = state
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def b5_rows() -> list[list[Any]]:
    """Header at B5, three priced rows, a trailing label-only row."""
    return [
        RFQ_HEADER,
        [1, "Apples", "Fresh", "kg", 2, "$1.00", "$2.00"],
        [2, "Bananas", "", "kg", 3, "$2.00", "$6.00"],
        [3, "Cherries", "", "kg", 1, "$0", "$0"],
        [None, "Delivery notes only", None, None, None, None, None],
    ]


@pytest.fixture
def make_xlsx(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str, *sheets: SheetSpec) -> Path:
        path = tmp_path / name
        path.write_bytes(build_xlsx(sheets))
        return path

    return _make


@pytest.fixture
def b5_workbook(make_xlsx: Callable[..., Path]) -> Path:
    return make_xlsx("supplier.xlsx", ("PROVISIONS", b5_rows(), "B5", "visible"))


@pytest.fixture
def rfq_rows() -> list[list[Any]]:
    return b5_rows()
