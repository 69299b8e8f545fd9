from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.cleaner import Gender, as_text, normalize_gender, parse_gender

ALL = "ALL"
PAGE_SIZE = 10


@dataclass(frozen=True)
class StudentFilters:
    gender: Optional[Gender] = None  # None means ALL
    class_id: Optional[str] = None  # None means ALL
    search: str = ""

    @property
    def is_empty(self) -> bool:
        return self.gender is None and self.class_id is None and not self.search.strip()


def normalize_filters(raw: Dict[str, Any]) -> StudentFilters:
    """Build filters from query parameters; blank or 'ALL' disables a filter."""
    gender_raw = as_text(raw.get("gender"))
    if not gender_raw or gender_raw.upper() == ALL:
        gender = None
    else:
        gender = parse_gender(gender_raw)
        if gender is None:
            raise ValueError(f"Unknown gender filter '{gender_raw}'.")

    class_raw = as_text(raw.get("class_id"))
    class_id = None if not class_raw or class_raw.upper() == ALL else class_raw

    search = raw.get("search") or ""
    return StudentFilters(gender=gender, class_id=class_id, search=str(search))


def matches(student: Dict[str, Any], filters: StudentFilters) -> bool:
    if filters.gender is not None and normalize_gender(student.get("gender")) is not filters.gender:
        return False
    if filters.class_id is not None and as_text(student.get("class_id")) != filters.class_id:
        return False

    q = filters.search.strip().lower()
    if not q:
        return True
    haystacks = (student.get("name"), student.get("ic_number"), student.get("member_number"))
    return any(q in as_text(h).lower() for h in haystacks)


def filter_students(students: Sequence[Dict[str, Any]], filters: StudentFilters) -> List[Dict[str, Any]]:
    """Records passing every filter, in snapshot order."""
    if filters.is_empty:
        return list(students)
    return [s for s in students if matches(s, filters)]


# ── Pagination ──────────────────────────────────────────────────────

def total_pages(count: int, page_size: int = PAGE_SIZE) -> int:
    return max(1, math.ceil(count / page_size))


def clamp_page(page: Any, count: int, page_size: int = PAGE_SIZE) -> int:
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    return min(max(1, page), total_pages(count, page_size))


@dataclass(frozen=True)
class Page:
    rows: List[Dict[str, Any]]
    page: int
    total_pages: int
    total_count: int
    page_size: int = PAGE_SIZE

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def paginate(records: Sequence[Dict[str, Any]], page: Any = 1, page_size: int = PAGE_SIZE) -> Page:
    count = len(records)
    current = clamp_page(page, count, page_size)
    start = (current - 1) * page_size
    return Page(
        rows=list(records[start:start + page_size]),
        page=current,
        total_pages=total_pages(count, page_size),
        total_count=count,
        page_size=page_size,
    )


# ── Listing state ───────────────────────────────────────────────────

@dataclass(frozen=True)
class ListingState:
    """
    Filters plus the current page of the student listing.

    Every transition returns a new state. Changing gender, class or search
    always lands on page 1.
    """

    filters: StudentFilters = StudentFilters()
    page: int = 1

    def with_filters(self, filters: StudentFilters) -> ListingState:
        if filters == self.filters:
            return self
        return ListingState(filters=filters, page=1)

    def with_gender(self, gender: Optional[Gender]) -> ListingState:
        return self.with_filters(replace(self.filters, gender=gender))

    def with_class(self, class_id: Optional[str]) -> ListingState:
        return self.with_filters(replace(self.filters, class_id=class_id))

    def with_search(self, search: str) -> ListingState:
        return self.with_filters(replace(self.filters, search=search))

    def go_to(self, page: Any) -> ListingState:
        try:
            page = int(page)
        except (TypeError, ValueError):
            page = 1
        return replace(self, page=max(1, page))

    def next_page(self, count: int) -> ListingState:
        return self.go_to(clamp_page(self.page + 1, count))

    def previous_page(self, count: int) -> ListingState:
        return self.go_to(clamp_page(self.page - 1, count))

    def apply(self, filters: StudentFilters, page: Any = None) -> ListingState:
        """
        One request's worth of input. A filter change wins over the
        requested page; otherwise the requested page (if any) is taken.
        """
        if filters != self.filters:
            return ListingState(filters=filters, page=1)
        if page is None:
            return self
        return self.go_to(page)

    def render(self, students: Sequence[Dict[str, Any]]) -> Tuple[ListingState, Page]:
        """Filter and slice. The returned state carries the clamped page."""
        page = paginate(filter_students(students, self.filters), self.page)
        return self.go_to(page.page), page
