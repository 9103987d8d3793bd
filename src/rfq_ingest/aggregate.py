"""Group items by tab and category: counts, sums and currency."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence

import pandas as pd

from rfq_ingest.models import AggregatedGroup, ExtractedItem

SKIPPED_TABS = frozenset({"COVER SHEET"})
BOND_TABS = frozenset({"BOND"})
PROVISION_TABS = frozenset({"PROVISIONS", "FRESH PROVISIONS"})


def _tab_key(tab: str) -> str:
    return tab.strip().upper()


def dominant_currency(currencies: Iterable[str]) -> str:
    """Most frequent non-empty currency; ties go to the first seen."""
    counts = Counter(c for c in currencies if c)
    if not counts:
        return ""
    return counts.most_common(1)[0][0]


def _group(label: str, members: Sequence[ExtractedItem]) -> AggregatedGroup:
    totals = pd.Series([float(item.total or 0.0) for item in members], dtype="float64")
    positive = totals[totals > 0]
    return AggregatedGroup(
        label=label,
        items=tuple(members),
        record_count=int(len(positive)),
        sum_of_totals=float(positive.sum()),
        currency=dominant_currency(item.currency for item in members),
    )


def aggregate_items(
    items: Iterable[ExtractedItem],
    *,
    skip_tabs: Iterable[str] = SKIPPED_TABS,
) -> list[AggregatedGroup]:
    """Group *items* by source tab, in first-seen order.

    ``record_count`` and ``sum_of_totals`` only consider items whose total is
    positive. Tabs in *skip_tabs* (compared trimmed, uppercased) are left out.
    """
    skip = {_tab_key(t) for t in skip_tabs}
    kept = [item for item in items if _tab_key(item.tab) not in skip]
    if not kept:
        return []

    df = pd.DataFrame({"tab": [item.tab for item in kept], "idx": range(len(kept))})
    groups: list[AggregatedGroup] = []
    for tab, frame in df.groupby("tab", sort=False):
        members = [kept[i] for i in frame["idx"]]
        groups.append(_group(str(tab), members))
    return groups


# ── Categories ───────────────────────────────────────────────────


def classify_category(tabs: Iterable[str]) -> str | None:
    """Invoice category for a set of tab names, or ``None`` when neither
    bond nor provisions tabs are present."""
    keys = {_tab_key(t) for t in tabs}
    has_bond = bool(keys & BOND_TABS)
    has_provisions = bool(keys & PROVISION_TABS)
    if has_bond and has_provisions:
        return "Bonds and Provisions"
    if has_bond:
        return "Bond"
    if has_provisions:
        return "Provisions"
    return None


def category_for_tab(tab: str) -> str:
    key = _tab_key(tab)
    if key in BOND_TABS:
        return "Bond"
    if key in PROVISION_TABS:
        return "Provisions"
    return tab.strip()


def primary_currency(groups: Iterable[AggregatedGroup], fallback: str = "") -> str:
    return dominant_currency(g.currency for g in groups) or fallback


def split_by_category(groups: Iterable[AggregatedGroup]) -> dict[str, list[AggregatedGroup]]:
    """Ordered mapping of category → groups, in first-seen order."""
    result: dict[str, list[AggregatedGroup]] = {}
    for group in groups:
        result.setdefault(category_for_tab(group.label), []).append(group)
    return result


def merge_groups(label: str, groups: Sequence[AggregatedGroup]) -> AggregatedGroup:
    """Combine several tab groups into one category group."""
    members = [item for group in groups for item in group.items]
    return _group(label, members)


def category_groups(groups: Iterable[AggregatedGroup]) -> list[AggregatedGroup]:
    return [merge_groups(label, members) for label, members in split_by_category(groups).items()]
