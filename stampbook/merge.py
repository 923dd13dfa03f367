"""
Record reconciliation.

Merges a batch of incoming candidates into an existing collection without
creating duplicates. Two records describe the same store when their
normalized names match (see normalize_store_name). Pure: inputs are never
mutated and nothing is persisted here.
"""

import logging
from dataclasses import replace
from typing import Iterable, Optional

from .types import MergeTally, StampRecord, new_record_id, normalize_store_name

logger = logging.getLogger(__name__)


def _date_wins(candidate: Optional[str], existing: Optional[str]) -> bool:
    """Candidate date is known and later (YYYY/MM/DD compares lexically)."""
    if candidate is None:
        return False
    return existing is None or candidate > existing


def _count_wins(candidate: Optional[int], existing: Optional[int]) -> bool:
    """Candidate count is known and larger."""
    if candidate is None:
        return False
    return existing is None or candidate > existing


def _overlay(
    existing: StampRecord,
    candidate: StampRecord,
    owner_id: str,
    *,
    newer_date: bool,
    more_visits: bool,
) -> StampRecord:
    """Existing record with the candidate's known fields laid over it.

    visit_count and last_visit_date are taken field by field from whichever
    side wins; id is always the existing one.
    """
    return replace(
        existing,
        owner_id=owner_id,
        store_name=candidate.store_name or existing.store_name,
        prefecture=candidate.prefecture or existing.prefecture,
        address=candidate.address or existing.address,
        latitude=candidate.latitude if candidate.latitude is not None else existing.latitude,
        longitude=candidate.longitude if candidate.longitude is not None else existing.longitude,
        last_visit_date=candidate.last_visit_date if newer_date else existing.last_visit_date,
        visit_count=candidate.visit_count if more_visits else existing.visit_count,
    )


def merge_records(
    existing: Iterable[StampRecord],
    incoming: Iterable[StampRecord],
    owner_id: str,
) -> tuple[list[StampRecord], MergeTally]:
    """
    Merge incoming candidates into an existing collection.

    For each candidate, in order:
    - no record with the same normalized name: the candidate is added to
      the front of the list, owned by owner_id
    - a match exists and the candidate has a later date or more visits:
      the match is updated in place (id preserved)
    - otherwise the candidate is skipped

    Candidates are matched against the working list, so a batch may update
    a record it added earlier in the same batch.

    Args:
        existing: Current collection
        incoming: Candidate records (e.g. extraction output)
        owner_id: Owner assigned to added and updated records

    Returns:
        (merged collection, tally)
    """
    merged = list(existing)
    tally = MergeTally()

    for candidate in incoming:
        key = normalize_store_name(candidate.store_name)
        index = -1
        if key:
            for i, record in enumerate(merged):
                if normalize_store_name(record.store_name) == key:
                    index = i
                    break

        if index < 0:
            if not key:
                logger.debug("Candidate without store name added as new: %s", candidate.id)
            merged.insert(0, replace(
                candidate,
                id=candidate.id or new_record_id(),
                owner_id=owner_id,
            ))
            tally.added += 1
            continue

        current = merged[index]
        newer_date = _date_wins(candidate.last_visit_date, current.last_visit_date)
        more_visits = _count_wins(candidate.visit_count, current.visit_count)
        if newer_date or more_visits:
            merged[index] = _overlay(
                current, candidate, owner_id,
                newer_date=newer_date, more_visits=more_visits,
            )
            tally.updated += 1
        else:
            tally.skipped += 1

    logger.debug(
        "Merged %d existing: added=%d updated=%d skipped=%d",
        len(merged) - tally.added, tally.added, tally.updated, tally.skipped,
    )
    return merged, tally


def changed_records(
    before: Iterable[StampRecord],
    after: Iterable[StampRecord],
) -> list[StampRecord]:
    """Records of `after` that are new or different relative to `before` (by id)."""
    previous = {r.id: r for r in before}
    return [r for r in after if previous.get(r.id) != r]
