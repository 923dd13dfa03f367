"""Tests for merge_records: deduplication and field-level reconciliation."""

from stampbook.merge import changed_records, merge_records
from stampbook.types import StampRecord


def rec(name, count=None, date=None, id=None, **kwargs):
    return StampRecord(
        id=id or f"id-{name}",
        owner_id=kwargs.pop("owner_id", "guest"),
        store_name=name,
        visit_count=count,
        last_visit_date=date,
        **kwargs,
    )


class TestMergeBasics:

    def test_new_candidate_is_prepended(self):
        existing = [rec("A", 1)]
        merged, tally = merge_records(existing, [rec("B", 2)], "alice")
        assert [r.store_name for r in merged] == ["B", "A"]
        assert tally.added == 1 and tally.updated == 0 and tally.skipped == 0

    def test_batch_additions_prepended_in_order(self):
        merged, _ = merge_records([], [rec("A"), rec("B"), rec("C")], "alice")
        assert [r.store_name for r in merged] == ["C", "B", "A"]

    def test_added_records_take_owner(self):
        merged, _ = merge_records([], [rec("A", owner_id="guest")], "alice")
        assert merged[0].owner_id == "alice"

    def test_added_record_keeps_candidate_id(self):
        merged, _ = merge_records([], [rec("A", id="cand-1")], "alice")
        assert merged[0].id == "cand-1"

    def test_inputs_not_mutated(self):
        existing = [rec("A", 1, "2024/01/01")]
        incoming = [rec("A", 4, "2024/02/01", id="other")]
        merge_records(existing, incoming, "alice")
        assert existing[0].visit_count == 1
        assert existing[0].last_visit_date == "2024/01/01"
        assert incoming[0].id == "other"


class TestFieldLevelWins:

    def test_greatest_wins_per_field(self):
        existing = [rec("目黒店", 5, "2024/01/01", id="E1")]
        incoming = [rec("目黒店", 3, "2024/06/01", id="C1")]
        merged, tally = merge_records(existing, incoming, "alice")
        assert len(merged) == 1
        assert merged[0].visit_count == 5
        assert merged[0].last_visit_date == "2024/06/01"
        assert merged[0].id == "E1"
        assert tally.updated == 1

    def test_unknown_count_never_wins(self):
        existing = [rec("A", 2)]
        merged, tally = merge_records(existing, [rec("A", None, "2024/06/01")], "alice")
        assert merged[0].visit_count == 2
        assert merged[0].last_visit_date == "2024/06/01"
        assert tally.updated == 1

    def test_unknown_date_never_wins(self):
        existing = [rec("A", 1, "2024/01/01")]
        merged, _ = merge_records(existing, [rec("A", 3, None)], "alice")
        assert merged[0].visit_count == 3
        assert merged[0].last_visit_date == "2024/01/01"

    def test_known_beats_unknown(self):
        existing = [rec("A")]
        merged, tally = merge_records(existing, [rec("A", 1, "2023/12/31")], "alice")
        assert merged[0].visit_count == 1
        assert merged[0].last_visit_date == "2023/12/31"
        assert tally.updated == 1

    def test_no_improvement_skips(self):
        existing = [rec("A", 5, "2024/06/01", prefecture="東京都")]
        merged, tally = merge_records(existing, [rec("A", 5, "2024/01/01", prefecture="")], "alice")
        assert merged == existing
        assert tally.skipped == 1 and tally.updated == 0

    def test_zero_count_is_known(self):
        existing = [rec("A", None)]
        merged, tally = merge_records(existing, [rec("A", 0)], "alice")
        assert merged[0].visit_count == 0
        assert tally.updated == 1

    def test_update_overlays_known_descriptive_fields(self):
        existing = [rec("A", 1, prefecture="東京都", address="目黒区", latitude=35.6)]
        incoming = [rec("A", 2, prefecture="", address="目黒区青葉台", latitude=None)]
        merged, _ = merge_records(existing, incoming, "alice")
        assert merged[0].prefecture == "東京都"
        assert merged[0].address == "目黒区青葉台"
        assert merged[0].latitude == 35.6

    def test_update_assigns_owner(self):
        existing = [rec("A", 1, owner_id="guest")]
        merged, _ = merge_records(existing, [rec("A", 2)], "alice")
        assert merged[0].owner_id == "alice"


class TestMatching:

    def test_normalized_names_match(self):
        existing = [rec("目黒（店）", 1, id="E1")]
        merged, tally = merge_records(existing, [rec("目黒 (店)", 2)], "alice")
        assert len(merged) == 1
        assert merged[0].id == "E1"
        assert tally.updated == 1

    def test_updated_record_stays_in_place(self):
        existing = [rec("A", 1), rec("B", 1), rec("C", 1)]
        merged, _ = merge_records(existing, [rec("B", 9)], "alice")
        assert [r.store_name for r in merged] == ["A", "B", "C"]

    def test_empty_name_never_matches(self):
        existing = [rec("", 1, id="E1")]
        merged, tally = merge_records(existing, [rec("", 5, id="C1")], "alice")
        assert len(merged) == 2
        assert tally.added == 1

    def test_batch_can_update_its_own_addition(self):
        merged, tally = merge_records([], [rec("A", 1, id="c1"), rec("A", 3, id="c2")], "alice")
        assert len(merged) == 1
        assert merged[0].id == "c1"
        assert merged[0].visit_count == 3
        assert tally.added == 1 and tally.updated == 1


class TestMergeProperties:

    def test_idempotent(self):
        existing = [rec("A", 1, "2024/01/01"), rec("B", 2)]
        batch = [rec("A", 3, "2023/01/01"), rec("C", 1, "2024/02/02"), rec("B", None, "2024/03/03")]
        once, _ = merge_records(existing, batch, "alice")
        twice, tally = merge_records(once, batch, "alice")
        assert twice == once
        assert tally.skipped == len(batch)
        assert tally.added == 0 and tally.updated == 0

    def test_single_vs_batch_agree(self):
        existing = [rec("A", 2, "2024/01/01", id="E1")]
        others = [rec("A", 1, "2024/03/01", id="x1"), rec("A", 4, None, id="x2")]
        winner = rec("A", 6, "2024/05/01", id="x3")

        batched, _ = merge_records(existing, others + [winner], "alice")

        singly = existing
        for candidate in others + [winner]:
            singly, _ = merge_records(singly, [candidate], "alice")

        assert batched == singly
        assert batched[0].visit_count == 6
        assert batched[0].last_visit_date == "2024/05/01"
        assert batched[0].id == "E1"


class TestChangedRecords:

    def test_reports_new_and_modified(self):
        before = [rec("A", 1), rec("B", 1)]
        after = [rec("C", 1), rec("A", 2), rec("B", 1)]
        changed = changed_records(before, after)
        assert [r.store_name for r in changed] == ["C", "A"]

    def test_no_changes(self):
        records = [rec("A", 1)]
        assert changed_records(records, list(records)) == []
