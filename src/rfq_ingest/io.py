"""I/O helpers — load uploaded spreadsheets into grids, write artifacts."""

from __future__ import annotations

import json
import logging
import zipfile
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Literal, cast

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from rfq_ingest.errors import FileReadError, WorkbookStructureError
from rfq_ingest.models import Sheet

logger = logging.getLogger(__name__)

OPENPYXL_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")
SUPPORTED_SUFFIXES = (*OPENPYXL_SUFFIXES, ".xls", ".csv")


# ── Cell values ──────────────────────────────────────────────────


def _cell_value(val: Any) -> Any:
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):
        return val

    if isinstance(val, pd.Timestamp):
        return val.to_pydatetime()

    item = getattr(val, "item", None)
    if callable(item) and not isinstance(val, (str, bytes)):
        return item()
    return val


def _frame_to_sheet(name: str, df: pd.DataFrame) -> Sheet:
    rows = [
        tuple(_cell_value(v) for v in row)
        for row in df.itertuples(index=False, name=None)
    ]
    return Sheet.from_rows(name, rows)


def _number_format(cell: Any) -> str:
    fmt = getattr(cell, "number_format", None)
    if not fmt or fmt == "General":
        return ""
    return str(fmt)


def _worksheet_to_sheet(ws: Worksheet) -> Sheet:
    rows: list[tuple[Any, ...]] = []
    formats: list[tuple[str, ...]] = []
    for cells in ws.iter_rows(
        min_row=ws.min_row,
        max_row=ws.max_row,
        min_col=ws.min_column,
        max_col=ws.max_column,
    ):
        rows.append(tuple(cell.value for cell in cells))
        formats.append(tuple(_number_format(cell) for cell in cells))
    return Sheet(
        name=ws.title,
        rows=tuple(rows),
        formats=tuple(formats),
        min_row=ws.min_row - 1,
        min_col=ws.min_column - 1,
        state=ws.sheet_state or "visible",
    )


# ── Loading ──────────────────────────────────────────────────────


def _load_openpyxl(data: bytes, file_name: str) -> list[Sheet]:
    try:
        wb = load_workbook(BytesIO(data), data_only=True)
    except (
        zipfile.BadZipFile,
        InvalidFileException,
        KeyError,
        ValueError,
        OSError,
        AttributeError,
        TypeError,
        IndexError,
    ) as exc:
        raise FileReadError(f"Could not read workbook {file_name!r}: {exc}") from exc

    try:
        worksheets = list(wb.worksheets)
        names = list(wb.sheetnames)
        if not worksheets and not names:
            raise WorkbookStructureError(f"Workbook {file_name!r} has no sheets")

        if not worksheets:
            # positional index empty, fall back to name-keyed access
            logger.debug("%s: sheet index empty, loading %d sheets by name", file_name, len(names))
            for name in names:
                ws = wb[name]
                if isinstance(ws, Worksheet):
                    worksheets.append(ws)
                else:
                    logger.debug("%s: skipping non-grid sheet %r", file_name, name)
            if not worksheets:
                raise WorkbookStructureError(f"Workbook {file_name!r} has no grid sheets")

        return [_worksheet_to_sheet(ws) for ws in worksheets]
    finally:
        wb.close()


def _load_xls(data: bytes, file_name: str) -> list[Sheet]:
    read_excel = cast(Callable[..., dict[str, pd.DataFrame]], getattr(pd, "read_excel"))
    try:
        frames = read_excel(BytesIO(data), sheet_name=None, header=None, engine="xlrd")
    except ImportError as exc:
        raise FileReadError(
            "Unsupported .xls input unless 'xlrd' is installed. "
            "Either convert to .xlsx or add dependency: pip install 'rfq-ingest[xls]'"
        ) from exc
    except Exception as exc:
        raise FileReadError(f"Could not read workbook {file_name!r}: {exc}") from exc

    if not frames:
        raise WorkbookStructureError(f"Workbook {file_name!r} has no sheets")
    return [_frame_to_sheet(str(name), df) for name, df in frames.items()]


def _load_csv(data: bytes, file_name: str, delimiter: str | None = None) -> list[Sheet]:
    last_exc: Exception | None = None
    sep = delimiter if delimiter else None
    engine: Literal["c", "python"] = "c" if delimiter else "python"
    name = Path(file_name).stem or "Sheet1"
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            df = pd.read_csv(
                BytesIO(data),
                header=None,
                dtype="string",
                sep=sep,
                engine=engine,
                encoding=encoding,
                encoding_errors="strict",
                skip_blank_lines=False,
            )
        except pd.errors.EmptyDataError:
            return [Sheet(name=name)]
        except (UnicodeDecodeError, pd.errors.ParserError) as exc:
            last_exc = exc
            continue
        return [_frame_to_sheet(name, df)]
    raise FileReadError(f"Could not read CSV {file_name!r} (decode or parse failed)") from last_exc


def load_workbook_bytes(data: bytes, file_name: str) -> list[Sheet]:
    """Parse an in-memory spreadsheet into one :class:`Sheet` per tab.

    Raises
    ------
    FileReadError
        If the extension is not supported or the payload is unreadable.
    WorkbookStructureError
        If the workbook has no sheets, or none of them is a cell grid.
    """
    suffix = Path(file_name).suffix.lower()
    if suffix in OPENPYXL_SUFFIXES:
        sheets = _load_openpyxl(data, file_name)
    elif suffix == ".xls":
        sheets = _load_xls(data, file_name)
    elif suffix == ".csv":
        sheets = _load_csv(data, file_name)
    else:
        raise FileReadError(
            f"Unsupported file type: {suffix!r}. Use {', '.join(SUPPORTED_SUFFIXES)}"
        )

    logger.debug("%s: loaded %d sheet(s)", file_name, len(sheets))
    return sheets


def read_upload(path: Path) -> tuple[str, bytes]:
    """Read *path* fully into memory and return ``(file_name, data)``."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError as exc:
        raise FileReadError(f"Input file not found: {path}") from exc
    except OSError as exc:
        raise FileReadError(f"Could not read {path}: {exc}") from exc
    return path.name, data


def load_workbook_file(path: Path) -> list[Sheet]:
    file_name, data = read_upload(path)
    return load_workbook_bytes(data, file_name)


def read_workbook(source: Path | str | bytes, file_name: str | None = None) -> list[Sheet]:
    """Load sheets from a path or from raw bytes (``file_name`` then required)."""
    if isinstance(source, (bytes, bytearray)):
        if not file_name:
            raise ValueError("file_name is required when reading from bytes")
        return load_workbook_bytes(bytes(source), file_name)
    return load_workbook_file(Path(source))


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path


def write_bytes(path: Path, content: bytes) -> Path:
    """Write *content* to *path* via a temporary sibling file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.stem}.tmp{path.suffix}")
    tmp_path.write_bytes(content)
    tmp_path.replace(path)
    return path
