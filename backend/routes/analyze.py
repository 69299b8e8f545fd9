"""
Analyze routes — aggregated statistics over the session snapshot.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from core.filters import StudentFilters, filter_students, normalize_filters
from core.stats import TimeRange, compute_statistics, parse_time_range
from routes.deps import RequestContext, current_snapshot, local_now, require_session

router = APIRouter()


def parse_query(time_range, gender, class_id, search):
    """Validate the shared time-range + filter query parameters."""
    try:
        return (
            parse_time_range(time_range),
            normalize_filters({"gender": gender, "class_id": class_id, "search": search}),
        )
    except ValueError as e:
        raise HTTPException(400, str(e))


def describe_filters(time_range: TimeRange, filters: StudentFilters, snapshot) -> dict:
    """Human-readable context line for reports."""
    labels = {
        TimeRange.ALL: "Semua",
        TimeRange.LAST_30_DAYS: "30 Hari Terakhir",
        TimeRange.CURRENT_YEAR: "Tahun Semasa",
    }
    context = {"Julat Masa": labels[time_range]}
    if filters.gender is not None:
        context["Jantina"] = filters.gender.value
    if filters.class_id is not None:
        c = snapshot.find_class(filters.class_id)
        context["Kelas"] = c["name"] if c else filters.class_id
    if filters.search.strip():
        context["Carian"] = filters.search.strip()
    return context


@router.get("/statistics")
async def statistics(
    time_range: Optional[str] = None,
    gender: Optional[str] = None,
    class_id: Optional[str] = None,
    search: Optional[str] = None,
    ctx: RequestContext = Depends(require_session),
):
    """Counts, savings aggregates, class breakdown, top savers and monthly trend."""
    tr, filters = parse_query(time_range, gender, class_id, search)
    snapshot = await current_snapshot(ctx)

    stats = compute_statistics(
        filter_students(snapshot.students, filters),
        snapshot.classes,
        time_range=tr,
        now=local_now(),
    )
    stats["filters"] = describe_filters(tr, filters, snapshot)
    return stats
