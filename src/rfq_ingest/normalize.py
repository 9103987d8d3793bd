"""Currency detection and numeric normalization of free-text cells."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from decimal import Decimal
from typing import Any, Literal

from rfq_ingest.errors import NumericParseError
from rfq_ingest.models import ColumnRoles, Sheet

# ── Currency ─────────────────────────────────────────────────────

# (canonical symbol, markers) in priority order; first match wins.
CURRENCY_PRIORITY: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("NZ$", ("NZ$", "NZD")),
    ("A$", ("A$", "AUD")),
    ("C$", ("C$", "CAD")),
    ("€", ("€", "EUR")),
    ("£", ("£", "GBP")),
    ("$", ("$",)),
    ("$", ("USD",)),
)

CURRENCY_LABELS: dict[str, str] = {
    "NZ$": "NZD",
    "A$": "AUD",
    "C$": "CAD",
    "€": "EUR",
    "$": "USD",
    "£": "GBP",
}


def detect_currency(value: Any) -> str | None:
    """Return the canonical currency symbol found in *value*, or ``None``."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).upper()
    if not text.strip():
        return None
    for symbol, markers in CURRENCY_PRIORITY:
        if any(marker in text for marker in markers):
            return symbol
    return None


_FORMAT_SYMBOL_RE = re.compile(r"\[\$([^\]-]*)(?:-[0-9A-Fa-f]+)?\]")


def detect_format_currency(fmt: str) -> str | None:
    """Return the currency symbol a cell number format displays, or ``None``.

    Excel writes currency either as a quoted literal (``"NZ$"#,##0.00``) or as
    a bracketed token (``[$€-1809]#,##0.00``). Only the symbol part of a
    bracketed token is kept; the hex locale suffix is dropped.
    """
    if not fmt:
        return None
    return detect_currency(_FORMAT_SYMBOL_RE.sub(lambda m: m.group(1), fmt))


def detect_rows_currency(
    sheet: Sheet, rows: Iterable[int], roles: ColumnRoles
) -> str | None:
    """Scan extracted *rows* in order, price cell then total cell; first hit wins.

    Text cells are read directly; numeric cells fall back to their number format.
    """
    for row in rows:
        for ref in (roles.price, roles.total):
            value = sheet.column_value(row, ref)
            if isinstance(value, str):
                symbol = detect_currency(value)
            elif value is not None:
                symbol = detect_format_currency(sheet.column_format(row, ref))
            else:
                symbol = None
            if symbol:
                return symbol
    return None


# ── Numbers ──────────────────────────────────────────────────────

_PREFIX_RE = re.compile(r"NZ\$|A\$|C\$", re.IGNORECASE)
_SYMBOL_RE = re.compile(r"[€£$,\s]")
_ISO_RE = re.compile(r"USD|NZD|AUD|CAD", re.IGNORECASE)
_PARENS_RE = re.compile(r"^\((.*)\)$")

NumericContext = Literal["sum", "display", "text"]


def parse_number(value: Any, *, strip_iso: bool = True) -> float:
    """Parse *value* strictly.

    Numbers pass through. Strings lose currency prefixes, symbols, thousands
    separators and (with *strip_iso*) ISO codes; ``(12.50)`` reads as
    ``-12.50``. Anything else raises :class:`NumericParseError`.
    """
    if isinstance(value, bool) or value is None:
        raise NumericParseError(value)
    if isinstance(value, (int, float, Decimal)):
        result = float(value)
        if math.isnan(result):
            raise NumericParseError(value)
        return result
    if not isinstance(value, str):
        raise NumericParseError(value)

    text = _PREFIX_RE.sub("", value)
    text = _SYMBOL_RE.sub("", text)
    if strip_iso:
        text = _ISO_RE.sub("", text)
    match = _PARENS_RE.match(text)
    if match:
        text = f"-{match.group(1)}"
    try:
        result = float(text)
    except ValueError:
        raise NumericParseError(value) from None
    if math.isnan(result):
        raise NumericParseError(value)
    return result


def parse_numeric(value: Any, *, context: NumericContext) -> Any:
    """Parse *value*, falling back according to *context*.

    ``"sum"`` falls back to ``0.0``, ``"display"`` to ``None`` and ``"text"``
    to the original value.
    """
    if context not in ("sum", "display", "text"):
        raise ValueError(f"Unknown numeric context: {context!r}")
    try:
        return parse_number(value)
    except NumericParseError:
        if context == "sum":
            return 0.0
        if context == "display":
            return None
        return value
