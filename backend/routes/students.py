"""
Student routes — filtered listing with pagination, create / update / delete.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, HTTPException

from core.cleaner import normalize_student_payload
from core.errors import SaveError
from core.filters import normalize_filters
from core.stats import class_name_lookup, resolve_class_name
from routes.deps import (
    RequestContext,
    current_snapshot,
    http_error,
    refresh_after_write,
    require_session,
)
from routes.schemas import StudentIn

logger = logging.getLogger(__name__)

router = APIRouter()


def with_class_names(rows: Sequence[Dict[str, Any]], classes: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    lookup = class_name_lookup(classes)
    return [{**r, "class_name": resolve_class_name(r.get("class_id"), lookup, default="N/A")} for r in rows]


def _check_class(class_id: Any, snapshot) -> None:
    if class_id is not None and snapshot.find_class(class_id) is None:
        raise SaveError(f"Kelas {class_id} tidak wujud.")


@router.get("")
async def list_students(
    gender: Optional[str] = None,
    class_id: Optional[str] = None,
    search: Optional[str] = None,
    page: Optional[int] = None,
    ctx: RequestContext = Depends(require_session),
):
    """
    One page of the filtered listing.

    The session remembers filters and page; any change of gender, class or
    search lands on page 1 regardless of ``page``.
    """
    try:
        filters = normalize_filters({"gender": gender, "class_id": class_id, "search": search})
    except ValueError as e:
        raise HTTPException(400, str(e))

    snapshot = await current_snapshot(ctx)
    listing, result = ctx.session.listing.apply(filters, page).render(snapshot.students)
    ctx.session.listing = listing

    return {
        "rows": with_class_names(result.rows, snapshot.classes),
        "page": result.page,
        "total_pages": result.total_pages,
        "total_count": result.total_count,
        "page_size": result.page_size,
        "has_previous": result.has_previous,
        "has_next": result.has_next,
        "filters": {
            "gender": filters.gender.value if filters.gender else "ALL",
            "class_id": filters.class_id or "ALL",
            "search": filters.search,
        },
    }


@router.post("", status_code=201)
async def create_student(payload: StudentIn, ctx: RequestContext = Depends(require_session)):
    try:
        record = normalize_student_payload(payload.model_dump())
        _check_class(record["class_id"], await current_snapshot(ctx))
        created = await ctx.gateway.insert_student(record)
    except SaveError as e:
        logger.info("Create student rejected: %s", e.message)
        raise http_error(e)

    await refresh_after_write(ctx)
    return created


@router.patch("/{student_id}")
async def update_student(student_id: str, payload: StudentIn, ctx: RequestContext = Depends(require_session)):
    partial = payload.model_dump(exclude_unset=True)
    if not partial:
        raise HTTPException(400, "Tiada perubahan untuk disimpan.")
    try:
        record = normalize_student_payload(partial, partial=True)
        if "class_id" in record:
            _check_class(record["class_id"], await current_snapshot(ctx))
        updated = await ctx.gateway.update_student(student_id, record)
    except SaveError as e:
        logger.info("Update of student %s rejected: %s", student_id, e.message)
        raise http_error(e)

    await refresh_after_write(ctx)
    return updated


@router.delete("/{student_id}")
async def delete_student(student_id: str, ctx: RequestContext = Depends(require_session)):
    try:
        await ctx.gateway.delete_student(student_id)
    except SaveError as e:
        logger.info("Delete of student %s rejected: %s", student_id, e.message)
        raise http_error(e)

    await refresh_after_write(ctx)
    return {"status": "ok", "message": f"Pelajar {student_id} dipadam."}
