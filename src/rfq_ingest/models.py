"""Data models used across the package."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from numbers import Integral, Real
from typing import Any, Union

from openpyxl.utils import get_column_letter
from openpyxl.utils.cell import column_index_from_string, coordinate_from_string

HIDDEN_STATES = frozenset({"hidden", "veryHidden"})
ROLES: tuple[str, ...] = ("description", "price", "qty", "unit", "remark", "total")


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _to_string_list(values: Sequence[Any] | None, field_name: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings")
    normalized: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} items must be strings")
        normalized.append(item)
    return normalized


def is_blank(value: Any) -> bool:
    """True for empty cells: ``None`` or whitespace-only strings."""
    return value is None or (isinstance(value, str) and not value.strip())


# ── Cell addressing ─────────────────────────────────────────────


@dataclass(frozen=True, order=True)
class CellRef:
    """0-based cell coordinate."""

    row: int
    col: int

    @classmethod
    def parse(cls, text: str) -> CellRef:
        """Parse an A1-style reference such as ``"B5"`` or ``"$b$5"``."""
        try:
            letters, number = coordinate_from_string(str(text).strip().upper())
            col = column_index_from_string(letters)
        except Exception as exc:
            raise ValueError(f"Invalid cell reference: {text!r} (expected e.g. B5)") from exc
        return cls(row=number - 1, col=col - 1)

    @property
    def a1(self) -> str:
        return f"{get_column_letter(self.col + 1)}{self.row + 1}"

    def __str__(self) -> str:
        return self.a1


@dataclass(frozen=True)
class Resolved:
    """A column role matched to a 0-based column index."""

    index: int

    @property
    def letter(self) -> str:
        return get_column_letter(self.index + 1)


@dataclass(frozen=True)
class Unresolved:
    """Nothing matched. Downstream stages treat this as 'no data', never as a crash."""

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED = Unresolved()
ColumnRef = Union[Resolved, Unresolved]
AnchorRef = Union[CellRef, Unresolved]


# ── Grid ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Sheet:
    """In-memory cell grid for one worksheet.

    ``rows[0][0]`` sits at ``(min_row, min_col)``; everything outside the
    grid reads as ``None``. ``formats`` mirrors ``rows`` with each cell's
    number format ("" for General or unknown).
    """

    name: str
    rows: tuple[tuple[Any, ...], ...] = ()
    min_row: int = 0
    min_col: int = 0
    state: str = "visible"
    formats: tuple[tuple[str, ...], ...] = ()

    @classmethod
    def from_rows(
        cls,
        name: str,
        rows: Iterable[Iterable[Any]],
        *,
        origin: str = "A1",
        state: str = "visible",
        formats: Iterable[Iterable[str]] | None = None,
    ) -> Sheet:
        ref = CellRef.parse(origin)
        grid = tuple(tuple(row) for row in rows)
        fmts = tuple(tuple(row) for row in formats) if formats is not None else ()
        return cls(
            name=name,
            rows=grid,
            min_row=ref.row,
            min_col=ref.col,
            state=state,
            formats=fmts,
        )

    @property
    def max_row(self) -> int:
        return self.min_row + len(self.rows) - 1

    @property
    def max_col(self) -> int:
        width = max((len(row) for row in self.rows), default=0)
        return self.min_col + width - 1

    @property
    def hidden(self) -> bool:
        return self.state in HIDDEN_STATES

    @property
    def dimensions(self) -> str:
        if not self.rows:
            return ""
        start = CellRef(self.min_row, self.min_col)
        end = CellRef(self.max_row, max(self.max_col, self.min_col))
        return f"{start.a1}:{end.a1}"

    def value(self, row: int, col: int) -> Any:
        r = row - self.min_row
        c = col - self.min_col
        if r < 0 or c < 0 or r >= len(self.rows):
            return None
        cells = self.rows[r]
        if c >= len(cells):
            return None
        return cells[c]

    def text(self, row: int, col: int) -> str:
        val = self.value(row, col)
        return "" if val is None else str(val).strip()

    def column_text(self, row: int, ref: ColumnRef) -> str:
        if isinstance(ref, Resolved):
            return self.text(row, ref.index)
        return ""

    def column_value(self, row: int, ref: ColumnRef) -> Any:
        if isinstance(ref, Resolved):
            return self.value(row, ref.index)
        return None

    def number_format(self, row: int, col: int) -> str:
        r = row - self.min_row
        c = col - self.min_col
        if r < 0 or c < 0 or r >= len(self.formats):
            return ""
        cells = self.formats[r]
        if c >= len(cells):
            return ""
        return cells[c] or ""

    def column_format(self, row: int, ref: ColumnRef) -> str:
        if isinstance(ref, Resolved):
            return self.number_format(row, ref.index)
        return ""


# ── Roles ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ColumnRoles:
    description: ColumnRef = UNRESOLVED
    price: ColumnRef = UNRESOLVED
    qty: ColumnRef = UNRESOLVED
    unit: ColumnRef = UNRESOLVED
    remark: ColumnRef = UNRESOLVED
    total: ColumnRef = UNRESOLVED

    def get(self, role: str) -> ColumnRef:
        if role not in ROLES:
            raise KeyError(role)
        ref: ColumnRef = getattr(self, role)
        return ref

    def by_column(self) -> dict[int, list[str]]:
        """Column index → roles assigned to it."""
        mapping: dict[int, list[str]] = {}
        for role in ROLES:
            ref = self.get(role)
            if isinstance(ref, Resolved):
                mapping.setdefault(ref.index, []).append(role)
        return mapping

    def to_dict(self) -> dict[str, str | None]:
        result: dict[str, str | None] = {}
        for role in ROLES:
            ref = self.get(role)
            result[role] = ref.letter if isinstance(ref, Resolved) else None
        return result


@dataclass(frozen=True)
class HeaderRow:
    """The located header: anchor cell, non-blank header cells and their roles."""

    anchor: CellRef
    cells: tuple[tuple[int, str], ...] = ()
    roles: ColumnRoles = field(default_factory=ColumnRoles)

    @property
    def row(self) -> int:
        return self.anchor.row


# ── Items & groups ──────────────────────────────────────────────


@dataclass(frozen=True)
class ExtractedItem:
    """One normalized line item.

    ``raw_price``/``raw_total`` are what the source sheet said and never
    change; ``price``/``total`` are the values after markup.
    """

    position: int
    description: str
    remark: str = ""
    unit: str = ""
    qty: float | None = None
    raw_price: float = 0.0
    raw_total: float = 0.0
    price: float | None = None
    total: float | None = None
    currency: str = ""
    tab: str = ""
    row: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.description, str) or not self.description.strip():
            raise ValueError("description must be a non-blank string")
        for name in ("raw_price", "raw_total"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, Real):
                raise TypeError(f"{name} must be a number")
        if self.price is None:
            object.__setattr__(self, "price", float(self.raw_price))
        if self.total is None:
            object.__setattr__(self, "total", float(self.raw_total))

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "description": self.description,
            "remark": self.remark,
            "unit": self.unit,
            "qty": self.qty,
            "raw_price": self.raw_price,
            "raw_total": self.raw_total,
            "price": self.price,
            "total": self.total,
            "currency": self.currency,
            "tab": self.tab,
            "row": self.row,
        }


@dataclass(frozen=True)
class AggregatedGroup:
    """Items of one category/tab plus their roll-up figures."""

    label: str
    items: tuple[ExtractedItem, ...] = ()
    record_count: int = 0
    sum_of_totals: float = 0.0
    currency: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "record_count", _to_non_negative_int(self.record_count, "record_count")
        )
        if self.record_count > len(self.items):
            raise ValueError("record_count must be <= number of items")

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "record_count": self.record_count,
            "sum_of_totals": self.sum_of_totals,
            "currency": self.currency,
            "items": [item.to_dict() for item in self.items],
        }


# ── Analysis state ──────────────────────────────────────────────


class Stage(str, Enum):
    IDLE = "idle"
    READING = "reading"
    HEADER_LOCATED = "header_located"
    COLUMNS_RESOLVED = "columns_resolved"
    ROWS_EXTRACTED = "rows_extracted"
    AGGREGATED = "aggregated"
    EXPORTED = "exported"
    ERROR = "error"


@dataclass(frozen=True)
class TabAnalysis:
    name: str
    anchor: AnchorRef = UNRESOLVED
    header: tuple[tuple[int, str], ...] = ()
    roles: ColumnRoles = field(default_factory=ColumnRoles)
    row_count: int = 0
    hidden: bool = False
    excluded: bool = True
    items: tuple[ExtractedItem, ...] = ()
    currency: str = ""
    stage: Stage = Stage.IDLE

    def __post_init__(self) -> None:
        object.__setattr__(self, "row_count", _to_non_negative_int(self.row_count, "row_count"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "anchor": self.anchor.a1 if isinstance(self.anchor, CellRef) else None,
            "headers": [text for _col, text in self.header],
            "roles": self.roles.to_dict(),
            "row_count": self.row_count,
            "hidden": self.hidden,
            "excluded": self.excluded,
            "currency": self.currency,
            "stage": self.stage.value,
        }


@dataclass(frozen=True)
class FileAnalysis:
    """Analysis of one uploaded file. Owns its own byte buffer."""

    file_name: str
    data: bytes = field(default=b"", repr=False)
    tabs: tuple[TabAnalysis, ...] = ()
    error: str = ""
    stage: Stage = Stage.IDLE

    @property
    def ok(self) -> bool:
        return self.stage is not Stage.ERROR

    def tab(self, name: str) -> TabAnalysis:
        for tab in self.tabs:
            if tab.name == name:
                return tab
        raise KeyError(f"No tab named {name!r} in {self.file_name}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "stage": self.stage.value,
            "error": self.error,
            "tabs": [tab.to_dict() for tab in self.tabs],
        }


@dataclass(frozen=True)
class OutputFile:
    file_name: str
    content: bytes = field(repr=False)
    category: str = ""


# ── Run artifacts ───────────────────────────────────────────────


@dataclass
class IngestReport:
    """Run-level report written next to every export.

    Contract invariant: ``files_failed == files_in - files_ok``.
    """

    files_in: int = 0
    files_ok: int = 0
    files_failed: int = 0
    rows_out: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.files_in = _to_non_negative_int(self.files_in, "files_in")
        self.files_ok = _to_non_negative_int(self.files_ok, "files_ok")
        self.files_failed = _to_non_negative_int(self.files_failed, "files_failed")
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        self.warnings = _to_string_list(self.warnings, "warnings")
        self.errors = _to_string_list(self.errors, "errors")
        if self.files_ok > self.files_in:
            raise ValueError("files_ok must be <= files_in")
        if self.files_failed != self.files_in - self.files_ok:
            raise ValueError("files_failed must equal files_in - files_ok")

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_in": self.files_in,
            "files_ok": self.files_ok,
            "files_failed": self.files_failed,
            "rows_out": self.rows_out,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }


@dataclass
class RunManifest:
    """Audit-trail manifest for a single export run."""

    tool: str = "rfq-ingest"
    run_id: str = ""
    version: str = ""
    created_at_utc: str = ""
    inputs: list[dict[str, str]] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    rows_out: int = 0
    status: str = "success"
    error_code: int | None = None
    error_message: str = ""

    def __post_init__(self) -> None:
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        self.outputs = _to_string_list(self.outputs, "outputs")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "run_id": self.run_id,
            "version": self.version,
            "created_at_utc": self.created_at_utc,
            "inputs": [dict(entry) for entry in self.inputs],
            "outputs": list(self.outputs),
            "rows_out": self.rows_out,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
