"""Tests for collection ordering and progress summaries."""

import pytest

from stampbook.listing import filter_records, sort_records, summarize_collection
from stampbook.types import StampRecord


@pytest.fixture
def records():
    return [
        StampRecord(id="a", owner_id="x", store_name="目黒店", prefecture="東京都",
                    visit_count=2, last_visit_date="2024/01/01"),
        StampRecord(id="b", owner_id="x", store_name="函館店", prefecture="北海道",
                    visit_count=None, last_visit_date="2024/06/01"),
        StampRecord(id="c", owner_id="x", store_name="渋谷店", prefecture="東京都",
                    visit_count=5, last_visit_date=None),
        StampRecord(id="d", owner_id="x", store_name="謎の店", prefecture="",
                    visit_count=0, last_visit_date=None),
    ]


class TestSortRecords:

    def test_by_date_descending(self, records):
        assert [r.id for r in sort_records(records)] == ["b", "a", "c", "d"]

    def test_by_date_ascending_keeps_unknown_last(self, records):
        assert [r.id for r in sort_records(records, descending=False)] == ["a", "b", "c", "d"]

    def test_by_count(self, records):
        assert [r.id for r in sort_records(records, "visit_count")] == ["c", "a", "d", "b"]

    def test_zero_count_is_known(self, records):
        ordered = sort_records(records, "visit_count", descending=False)
        assert [r.id for r in ordered] == ["d", "a", "c", "b"]

    def test_empty_prefecture_last(self, records):
        assert sort_records(records, "prefecture")[-1].id == "d"

    def test_unknown_key(self, records):
        with pytest.raises(ValueError, match="Unknown sort key"):
            sort_records(records, "rating")


class TestFilterRecords:

    def test_matches_store_name(self, records):
        assert [r.id for r in filter_records(records, "目黒")] == ["a"]

    def test_matches_prefecture(self, records):
        assert [r.id for r in filter_records(records, "東京")] == ["a", "c"]

    def test_ignores_case(self):
        records = [StampRecord(id="r", owner_id="x", store_name="Starbucks Reserve", prefecture="")]
        assert [r.id for r in filter_records(records, "  reserve ")] == ["r"]

    def test_blank_term_keeps_all(self, records):
        assert len(filter_records(records, "")) == 4
        assert len(filter_records(records, "   ")) == 4

    def test_no_match(self, records):
        assert filter_records(records, "大阪") == []


def test_summarize_collection(records):
    summary = summarize_collection(records)
    assert summary.stores == 4
    assert summary.prefectures == 2
    assert summary.total_visits == 7
    assert summary.unknown_counts == 1
    assert summary.prefecture_counts == {"東京都": 2, "北海道": 1}


def test_summarize_dedupes_store_names():
    records = [
        StampRecord(id="a", owner_id="x", store_name="目黒（店）"),
        StampRecord(id="b", owner_id="x", store_name="目黒 (店)"),
    ]
    assert summarize_collection(records).stores == 1


def test_summarize_empty():
    summary = summarize_collection([])
    assert summary.stores == 0
    assert summary.total_visits == 0
