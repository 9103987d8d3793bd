"""Map header texts to column roles."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, fields, replace

from rfq_ingest import DESCRIPTION_KEYWORDS
from rfq_ingest.models import UNRESOLVED, ColumnRef, ColumnRoles, Resolved

PRICE_KEYWORDS: tuple[str, ...] = ("price", "cost", "unit aud", "value", "precio")
UNIT_LABELS: tuple[str, ...] = ("unit", "units", "uom", "uoms", "u.m.", "um", "u.o.m.", "u m")
REMARK_KEYWORDS: tuple[str, ...] = ("remark", "comment", "comentarios", "presentation")
QTY_KEYWORDS: tuple[str, ...] = ("qty", "quantity", "requested qty")
TOTAL_KEYWORDS: tuple[str, ...] = ("total",)

# Longer headers are free-text notes that happen to mention a price word.
PRICE_HEADER_MAX_LEN = 25

PREFERRED_LABELS: dict[str, tuple[str, ...]] = {
    "description": ("Product Name", "Description", "Equipment Description"),
    "qty": ("Requested Qty", "Quantity", "Qty"),
    "unit": ("Unit Type", "Unit", "UOM", "UN"),
    "remark": ("Product No", "Product No.", "Remark", "Remarks", "Impa"),
}


@dataclass(frozen=True)
class KeywordProfile:
    """Keyword sets one caller uses for header and role detection."""

    description: tuple[str, ...] = DESCRIPTION_KEYWORDS
    price: tuple[str, ...] = PRICE_KEYWORDS
    unit: tuple[str, ...] = UNIT_LABELS
    remark: tuple[str, ...] = REMARK_KEYWORDS
    qty: tuple[str, ...] = QTY_KEYWORDS
    total: tuple[str, ...] = TOTAL_KEYWORDS

    def with_description(self, keywords: Iterable[str]) -> KeywordProfile:
        cleaned = tuple(k.strip().lower() for k in keywords if k.strip())
        if not cleaned:
            raise ValueError("description keywords must not be empty")
        return replace(self, description=cleaned)


DEFAULT_PROFILE = KeywordProfile()


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def _matches_role(role: str, text: str, profile: KeywordProfile) -> bool:
    if role == "price":
        return len(text) < PRICE_HEADER_MAX_LEN and _contains_any(text, profile.price)
    if role == "unit":
        return text in profile.unit
    return _contains_any(text, getattr(profile, role))


def resolve_columns(
    cells: Sequence[tuple[int, str]],
    profile: KeywordProfile = DEFAULT_PROFILE,
) -> ColumnRoles:
    """Assign each role to the first (leftmost) header cell that matches it.

    *cells* are ``(column_index, text)`` pairs as returned by
    :func:`rfq_ingest.header.header_cells`. One column may satisfy several
    roles; roles nothing matched stay ``UNRESOLVED``.
    """
    found: dict[str, ColumnRef] = {}
    ordered = sorted(cells, key=lambda cell: cell[0])
    for role in ("description", "price", "qty", "unit", "remark", "total"):
        found[role] = UNRESOLVED
        for col, raw in ordered:
            text = raw.strip().lower()
            if text and _matches_role(role, text, profile):
                found[role] = Resolved(col)
                break
    return ColumnRoles(**found)


def resolve_preferred_columns(
    cells: Sequence[tuple[int, str]],
    preferred: dict[str, tuple[str, ...]] | None = None,
) -> ColumnRoles:
    """Fixed-label pass for curated headers.

    Labels are compared case-insensitively and exactly; the first label in
    each preference list that appears anywhere in the header wins.
    """
    preferred = PREFERRED_LABELS if preferred is None else preferred
    by_text: dict[str, int] = {}
    for col, raw in sorted(cells, key=lambda cell: cell[0]):
        by_text.setdefault(raw.strip().lower(), col)

    found: dict[str, ColumnRef] = {}
    for role, labels in preferred.items():
        for label in labels:
            col = by_text.get(label.strip().lower())
            if col is not None:
                found[role] = Resolved(col)
                break
    return ColumnRoles(**found)


COLUMN_MODES: tuple[str, ...] = ("keywords", "preferred")


def resolve_roles(
    cells: Sequence[tuple[int, str]],
    profile: KeywordProfile = DEFAULT_PROFILE,
    mode: str = "keywords",
) -> ColumnRoles:
    """Resolve roles for *mode*.

    ``"preferred"`` lets exact curated labels override the keyword match for
    the roles they cover; every other role keeps its keyword resolution.
    """
    if mode not in COLUMN_MODES:
        raise ValueError(f"Unknown column mode: {mode!r}")
    roles = resolve_columns(cells, profile)
    if mode == "keywords":
        return roles
    curated = resolve_preferred_columns(cells)
    overrides = {
        f.name: getattr(curated, f.name)
        for f in fields(curated)
        if isinstance(getattr(curated, f.name), Resolved)
    }
    return replace(roles, **overrides)
