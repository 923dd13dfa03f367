"""
Ordering, search and progress summaries for displaying a collection.
"""

from collections import Counter
from typing import Iterable

from .types import CollectionSummary, StampRecord, normalize_store_name

SORT_KEYS = ("last_visit_date", "visit_count", "store_name", "prefecture")


def sort_records(
    records: Iterable[StampRecord],
    key: str = "last_visit_date",
    descending: bool = True,
) -> list[StampRecord]:
    """
    Sort records by one field.

    Unknown values (None, or "" for text fields) always sort last,
    whichever the direction.
    """
    if key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key {key!r}; expected one of {', '.join(SORT_KEYS)}")
    records = list(records)
    known = [r for r in records if getattr(r, key) not in (None, "")]
    unknown = [r for r in records if getattr(r, key) in (None, "")]
    known.sort(key=lambda r: getattr(r, key), reverse=descending)
    return known + unknown


def filter_records(records: Iterable[StampRecord], term: str = "") -> list[StampRecord]:
    """Records whose store name or prefecture contains `term`, ignoring case.

    A blank term matches everything.
    """
    needle = term.strip().casefold()
    if not needle:
        return list(records)
    return [
        r for r in records
        if needle in (r.store_name or "").casefold() or needle in (r.prefecture or "").casefold()
    ]


def summarize_collection(records: Iterable[StampRecord]) -> CollectionSummary:
    """Distinct stores and prefectures, plus known visit totals."""
    records = list(records)
    stores = {normalize_store_name(r.store_name) for r in records}
    per_prefecture = Counter(r.prefecture for r in records if r.prefecture)
    return CollectionSummary(
        stores=len(stores),
        prefectures=len(per_prefecture),
        total_visits=sum(r.visit_count for r in records if r.visit_count is not None),
        unknown_counts=sum(1 for r in records if r.visit_count is None),
        prefecture_counts=dict(per_prefecture.most_common()),
    )
