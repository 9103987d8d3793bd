from __future__ import annotations

import pytest

from rfq_ingest.columns import (
    KeywordProfile,
    resolve_columns,
    resolve_preferred_columns,
    resolve_roles,
)
from rfq_ingest.models import UNRESOLVED, Resolved


def _cells(*texts: str, start: int = 0) -> list[tuple[int, str]]:
    return [(start + i, t) for i, t in enumerate(texts)]


def test_standard_rfq_header_resolves_every_role() -> None:
    roles = resolve_columns(
        _cells("Pos", "Description", "Remark", "Unit", "Qty", "Price", "Total", start=1)
    )

    assert roles.description == Resolved(2)
    assert roles.remark == Resolved(3)
    assert roles.unit == Resolved(4)
    assert roles.qty == Resolved(5)
    assert roles.price == Resolved(6)
    assert roles.total == Resolved(7)


def test_first_matching_column_wins() -> None:
    roles = resolve_columns(_cells("Item", "Product Name", "Unit Price", "Cost"))
    assert roles.description == Resolved(0)
    assert roles.price == Resolved(2)


def test_long_price_like_header_is_not_a_price_column() -> None:
    long_header = "Price to be confirmed by supplier on delivery"
    roles = resolve_columns(_cells("Description", long_header, "Precio"))
    assert roles.price == Resolved(2)


def test_price_guard_is_strictly_under_25_chars() -> None:
    exactly_25 = "price " + "x" * 19
    assert len(exactly_25) == 25
    assert resolve_columns(_cells(exactly_25)).price is UNRESOLVED
    assert resolve_columns(_cells(exactly_25[:-1])).price == Resolved(0)


@pytest.mark.parametrize("label", ["Unit", " UOM ", "u.o.m.", "U M", "uoms"])
def test_unit_requires_exact_label(label: str) -> None:
    assert resolve_columns(_cells(label)).unit == Resolved(0)


def test_unit_substring_does_not_match() -> None:
    roles = resolve_columns(_cells("Unit Type", "Units per case"))
    assert roles.unit is UNRESOLVED


def test_one_column_can_serve_several_roles() -> None:
    roles = resolve_columns(_cells("Requested Qty / Remark"))
    assert roles.qty == Resolved(0)
    assert roles.remark == Resolved(0)


def test_unmatched_roles_stay_unresolved() -> None:
    roles = resolve_columns(_cells("Code", "Weight"))
    assert all(roles.get(r) is UNRESOLVED for r in ("description", "price", "qty", "unit",
                                                       "remark", "total"))


def test_keyword_profile_overrides_description_words() -> None:
    profile = KeywordProfile().with_description(["Artículo"])
    roles = resolve_columns(_cells("Artículo", "Precio"), profile)
    assert roles.description == Resolved(0)
    assert roles.price == Resolved(1)

    with pytest.raises(ValueError):
        KeywordProfile().with_description(["  "])


def test_preferred_labels_follow_preference_order() -> None:
    cells = _cells("Description", "Qty", "Product Name", "Requested Qty", "UN", "Impa", "Remarks")

    roles = resolve_preferred_columns(cells)

    assert roles.description == Resolved(2)
    assert roles.qty == Resolved(3)
    assert roles.unit == Resolved(4)
    assert roles.remark == Resolved(6)
    assert roles.price is UNRESOLVED


def test_preferred_labels_are_exact_and_case_insensitive() -> None:
    roles = resolve_preferred_columns(_cells("equipment description", "Quantity (pcs)"))
    assert roles.description == Resolved(0)
    assert roles.qty is UNRESOLVED


def test_preferred_mode_overlays_curated_labels_on_keyword_roles() -> None:
    cells = _cells("Item Code", "Description", "Product Name", "Qty", "Requested Qty", "Price")

    keyword = resolve_roles(cells)
    curated = resolve_roles(cells, mode="preferred")

    assert keyword == resolve_columns(cells)
    assert curated.description == Resolved(2)
    assert curated.qty == Resolved(4)
    assert curated.price == Resolved(5)
    assert curated.total is UNRESOLVED
    with pytest.raises(ValueError, match="Unknown column mode"):
        resolve_roles(cells, mode="fuzzy")
