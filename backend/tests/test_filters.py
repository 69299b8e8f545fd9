"""
Tests for core/filters.py — filter/search pipeline, pagination, listing state transitions.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.cleaner import Gender
from core.filters import (
    PAGE_SIZE,
    ListingState,
    StudentFilters,
    filter_students,
    normalize_filters,
    paginate,
    total_pages,
)
from core.stats import compute_statistics


@pytest.fixture
def students():
    rows = []
    for i in range(1, 26):
        rows.append({
            "id": i,
            "name": f"Pelajar {i:02d}",
            "gender": "PEREMPUAN" if i % 2 == 0 else "LELAKI",
            "class_id": 1 if i <= 12 else 2,
            "ic_number": f"0101010101{i:02d}",
            "member_number": f"M{i:03d}",
        })
    rows.append({"id": 26, "name": "Siti Aminah", "gender": "PEREMPUAN", "class_id": 2,
                 "ic_number": None, "member_number": None})
    return rows


class TestNormalizeFilters:
    def test_all_disables(self):
        f = normalize_filters({"gender": "ALL", "class_id": "all", "search": ""})
        assert f == StudentFilters()
        assert f.is_empty

    def test_gender_spellings(self):
        assert normalize_filters({"gender": "P"}).gender is Gender.FEMALE
        assert normalize_filters({"gender": "LELAKI"}).gender is Gender.MALE

    def test_unknown_gender_rejected(self):
        with pytest.raises(ValueError):
            normalize_filters({"gender": "X"})

    def test_class_id_is_text(self):
        assert normalize_filters({"class_id": 2}).class_id == "2"


class TestFilterStudents:
    def test_partition_by_gender(self, students):
        male = filter_students(students, StudentFilters(gender=Gender.MALE))
        female = filter_students(students, StudentFilters(gender=Gender.FEMALE))
        assert len(male) + len(female) == len(students)
        assert not {s["id"] for s in male} & {s["id"] for s in female}

    def test_gender_filter_uses_normalized_spelling(self):
        rows = [
            {"id": 1, "name": "A", "gender": "female", "class_id": 1},
            {"id": 2, "name": "B", "gender": "f", "class_id": 1},
            {"id": 3, "name": "C", "gender": "", "class_id": 1},
            {"id": 4, "name": "D", "gender": "PEREMPUAN", "class_id": 1},
        ]
        female = filter_students(rows, StudentFilters(gender=Gender.FEMALE))
        male = filter_students(rows, StudentFilters(gender=Gender.MALE))
        assert [r["id"] for r in female] == [1, 2, 4]
        assert [r["id"] for r in male] == [3]
        assert len(female) == compute_statistics(rows, [])["female_count"]

    def test_class_filter(self, students):
        rows = filter_students(students, StudentFilters(class_id="1"))
        assert len(rows) == 12

    def test_search_name_case_insensitive(self, students):
        rows = filter_students(students, StudentFilters(search="siti"))
        assert [r["id"] for r in rows] == [26]

    def test_search_ic_and_member(self, students):
        assert [r["id"] for r in filter_students(students, StudentFilters(search="010101010107"))] == [7]
        assert [r["id"] for r in filter_students(students, StudentFilters(search="m019"))] == [19]

    def test_combined_filters(self, students):
        rows = filter_students(students, StudentFilters(gender=Gender.FEMALE, class_id="2", search="pelajar"))
        assert all(r["gender"] == "PEREMPUAN" and r["class_id"] == 2 for r in rows)
        assert len(rows) == 6

    def test_source_order_preserved(self, students):
        rows = filter_students(students, StudentFilters(gender=Gender.MALE))
        ids = [r["id"] for r in rows]
        assert ids == sorted(ids)

    def test_idempotent(self, students):
        f = StudentFilters(gender=Gender.FEMALE, search="pelajar")
        once = filter_students(students, f)
        assert filter_students(once, f) == once


class TestPagination:
    def test_total_pages_at_least_one(self):
        assert total_pages(0) == 1
        assert total_pages(10) == 1
        assert total_pages(11) == 2

    def test_page_slices(self, students):
        page = paginate(students, 3)
        assert page.page == 3
        assert page.total_pages == 3
        assert [r["id"] for r in page.rows] == [21, 22, 23, 24, 25, 26]
        assert page.has_previous and not page.has_next

    def test_out_of_range_is_clamped(self, students):
        assert paginate(students, 99).page == 3
        assert paginate(students, 0).page == 1
        assert paginate(students, "abc").page == 1

    def test_empty(self):
        page = paginate([], 5)
        assert page.page == 1
        assert page.total_pages == 1
        assert page.rows == []
        assert page.page_size == PAGE_SIZE


class TestListingState:
    def test_filter_change_resets_page(self, students):
        state = ListingState().go_to(3)
        assert state.with_gender(Gender.FEMALE).page == 1
        assert state.with_class("2").page == 1
        assert state.with_search("siti").page == 1

    def test_same_filters_keep_page(self):
        state = ListingState().go_to(2)
        assert state.with_filters(StudentFilters()).page == 2

    def test_apply_filter_change_wins_over_page(self):
        state = ListingState().go_to(2)
        assert state.apply(StudentFilters(search="x"), page=3).page == 1

    def test_apply_page_with_same_filters(self):
        assert ListingState().apply(StudentFilters(), page=2).page == 2
        assert ListingState().go_to(2).apply(StudentFilters()).page == 2

    def test_next_and_previous(self, students):
        state = ListingState()
        state = state.next_page(len(students)).next_page(len(students)).next_page(len(students))
        assert state.page == 3
        assert state.previous_page(len(students)).page == 2
        assert ListingState().previous_page(len(students)).page == 1

    def test_render_clamps_state(self, students):
        state, page = ListingState().go_to(9).render(students)
        assert page.page == 3
        assert state.page == 3

    def test_render_after_filter_shrinks_result(self, students):
        state = ListingState().go_to(3)
        state, page = state.with_search("siti").render(students)
        assert page.page == 1
        assert page.total_count == 1
