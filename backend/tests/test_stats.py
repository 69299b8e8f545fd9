"""
Tests for core/stats.py — aggregates, gender split, class breakdown, ranking, trend, time ranges.
"""

import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.stats import (
    TimeRange,
    compute_class_summaries,
    compute_statistics,
    filter_by_time_range,
    parse_time_range,
    sort_class_breakdown,
)

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)

CLASSES = [{"id": 1, "name": "5 Amanah"}, {"id": 2, "name": "5 Bestari"}, {"id": 3, "name": "4 Cekal"}]


@pytest.fixture
def ali_siti():
    return [
        {"id": 1, "name": "Ali", "gender": "LELAKI", "class_id": 1, "savings": 120.50,
         "created_at": "2026-06-10T08:00:00+00:00"},
        {"id": 2, "name": "Siti", "gender": "PEREMPUAN", "class_id": 1, "savings": 75,
         "created_at": "2026-06-11T08:00:00+00:00"},
    ]


@pytest.fixture
def students():
    return [
        {"id": 1, "name": "Ali", "gender": "LELAKI", "class_id": 2, "savings": 50,
         "created_at": "2026-06-01T00:00:00Z"},
        {"id": 2, "name": "Siti", "gender": "PEREMPUAN", "class_id": 1, "savings": 200,
         "created_at": "2026-02-10T00:00:00Z"},
        {"id": 3, "name": "Chong", "gender": "LELAKI", "class_id": 2, "savings": 200,
         "created_at": "2025-12-31T00:00:00Z"},
        {"id": 4, "name": "Devi", "gender": "PEREMPUAN", "class_id": 99, "savings": 10,
         "created_at": "2026-06-14T00:00:00Z"},
        {"id": 5, "name": "Ehsan", "gender": "x", "class_id": None, "savings": "bad",
         "created_at": None},
        {"id": 6, "name": "Fatimah", "gender": "PEREMPUAN", "class_id": 1, "savings": 300,
         "created_at": "2026-05-20T00:00:00Z"},
    ]


class TestComputeStatistics:
    """Scalar aggregates over the selected range."""

    def test_ali_siti_scenario(self, ali_siti):
        stats = compute_statistics(ali_siti, CLASSES, now=NOW)
        assert stats["total_count"] == 2
        assert stats["total_savings"] == pytest.approx(195.5)
        assert stats["male_count"] == 1
        assert stats["female_count"] == 1
        assert stats["male_percentage"] == 50.0
        assert stats["female_percentage"] == 50.0
        assert stats["average_savings"] == pytest.approx(97.75)
        assert stats["max_savings"] == 120.5
        assert stats["min_savings"] == 75.0

    def test_empty_set(self):
        stats = compute_statistics([], CLASSES, now=NOW)
        assert stats["total_count"] == 0
        assert stats["total_savings"] == 0
        assert stats["average_savings"] == 0
        assert stats["max_savings"] == 0
        assert stats["min_savings"] == 0
        assert stats["male_percentage"] == 0
        assert stats["female_percentage"] == 0
        assert stats["top_students"] == []
        assert stats["class_breakdown"] == []
        assert len(stats["monthly_trend"]) == 12

    def test_gender_partition(self, students):
        stats = compute_statistics(students, CLASSES, now=NOW)
        assert stats["male_count"] + stats["female_count"] == stats["total_count"]
        # unknown gender counts as male
        assert stats["male_count"] == 3

    def test_percentages_sum_to_100(self, students):
        stats = compute_statistics(students, CLASSES, now=NOW)
        assert stats["male_percentage"] + stats["female_percentage"] == pytest.approx(100.0)

    def test_unparseable_savings_count_as_zero(self, students):
        stats = compute_statistics(students, CLASSES, now=NOW)
        assert stats["total_savings"] == pytest.approx(760.0)
        assert stats["min_savings"] == 0.0

    def test_recent_count(self, students):
        stats = compute_statistics(students, CLASSES, now=NOW)
        # Ali (06-01), Devi (06-14), Fatimah (05-20) are within 30 days
        assert stats["recent_count"] == 3

    def test_idempotent(self, students):
        assert compute_statistics(students, CLASSES, now=NOW) == compute_statistics(students, CLASSES, now=NOW)


class TestClassBreakdown:
    def test_first_appearance_order(self, students):
        stats = compute_statistics(students, CLASSES, now=NOW)
        names = [r["class_name"] for r in stats["class_breakdown"]]
        assert names == ["5 Bestari", "5 Amanah", "Unknown"]

    def test_unknown_ids_collapse(self, students):
        stats = compute_statistics(students, CLASSES, now=NOW)
        unknown = stats["class_breakdown"][-1]
        assert unknown["class_id"] is None
        assert unknown["count"] == 2

    def test_counts_sum_to_total(self, students):
        stats = compute_statistics(students, CLASSES, now=NOW)
        assert sum(r["count"] for r in stats["class_breakdown"]) == stats["total_count"]
        assert sum(r["total_savings"] for r in stats["class_breakdown"]) == pytest.approx(stats["total_savings"])

    def test_sort_by_count(self, students):
        rows = compute_statistics(students, CLASSES, now=NOW)["class_breakdown"]
        ordered = sort_class_breakdown(rows, by="count")
        assert [r["count"] for r in ordered] == sorted((r["count"] for r in rows), reverse=True)


class TestTopStudents:
    def test_top_five_descending(self, students):
        top = compute_statistics(students, CLASSES, now=NOW)["top_students"]
        assert len(top) == 5
        assert [t["rank"] for t in top] == [1, 2, 3, 4, 5]
        savings = [t["savings"] for t in top]
        assert savings == sorted(savings, reverse=True)

    def test_ties_keep_source_order(self, students):
        top = compute_statistics(students, CLASSES, now=NOW)["top_students"]
        assert [t["name"] for t in top[:3]] == ["Fatimah", "Siti", "Chong"]

    def test_class_name_resolved(self, students):
        top = compute_statistics(students, CLASSES, now=NOW)["top_students"]
        assert top[0]["class_name"] == "5 Amanah"


class TestMonthlyTrend:
    def test_current_year_only(self, students):
        trend = compute_statistics(students, CLASSES, now=NOW)["monthly_trend"]
        assert [t["month"] for t in trend] == list(range(1, 13))
        assert trend[1]["count"] == 1       # Siti, Feb
        assert trend[4]["count"] == 1       # Fatimah, May
        assert trend[5]["count"] == 2       # Ali + Devi, Jun
        assert trend[11]["count"] == 0      # Chong is 2025
        assert trend[5]["total_savings"] == 60.0


class TestTimeRange:
    def test_parse(self):
        assert parse_time_range(None) is TimeRange.ALL
        assert parse_time_range("last_30_days") is TimeRange.LAST_30_DAYS
        with pytest.raises(ValueError):
            parse_time_range("LAST_WEEK")

    def test_last_30_days(self, students):
        names = [s["name"] for s in filter_by_time_range(students, TimeRange.LAST_30_DAYS, now=NOW)]
        assert names == ["Ali", "Devi", "Fatimah"]

    def test_current_year(self, students):
        names = [s["name"] for s in filter_by_time_range(students, TimeRange.CURRENT_YEAR, now=NOW)]
        assert names == ["Ali", "Siti", "Devi", "Fatimah"]

    def test_all_keeps_records_without_date(self, students):
        assert len(filter_by_time_range(students, TimeRange.ALL, now=NOW)) == len(students)

    def test_statistics_respect_range(self, students):
        stats = compute_statistics(students, CLASSES, time_range=TimeRange.CURRENT_YEAR, now=NOW)
        assert stats["total_count"] == 4
        assert stats["time_range"] == "CURRENT_YEAR"


class TestClassSummaries:
    def test_every_class_listed_in_directory_order(self, students):
        rows = compute_class_summaries(students, CLASSES)
        assert [r["name"] for r in rows] == ["5 Amanah", "5 Bestari", "4 Cekal"]
        assert rows[0]["count"] == 2
        assert rows[0]["total_savings"] == 500.0
        assert rows[2]["count"] == 0
        assert rows[2]["average_savings"] == 0.0
