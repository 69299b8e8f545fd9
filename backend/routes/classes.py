"""
Class routes — class directory with member totals, class CRUD, class members.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from core.cleaner import as_text, normalize_name
from core.errors import SaveError
from core.stats import compute_class_summaries
from routes.deps import (
    RequestContext,
    current_snapshot,
    http_error,
    refresh_after_write,
    require_session,
)
from routes.schemas import ClassIn
from routes.students import with_class_names

logger = logging.getLogger(__name__)

router = APIRouter()


def _clean_class_name(payload: ClassIn, snapshot, ignore_id=None) -> str:
    name = normalize_name(payload.name)
    if not name:
        raise SaveError("Sila masukkan nama kelas.")
    for c in snapshot.classes:
        if as_text(c.get("name")).lower() == name.lower() and as_text(c.get("id")) != as_text(ignore_id):
            raise SaveError(f"Kelas '{name}' sudah wujud.")
    return name


@router.get("")
async def list_classes(ctx: RequestContext = Depends(require_session)):
    """Every class with its member count and savings total."""
    snapshot = await current_snapshot(ctx)
    return {"classes": compute_class_summaries(snapshot.students, snapshot.classes)}


@router.post("", status_code=201)
async def create_class(payload: ClassIn, ctx: RequestContext = Depends(require_session)):
    try:
        name = _clean_class_name(payload, await current_snapshot(ctx))
        created = await ctx.gateway.insert_class({"name": name})
    except SaveError as e:
        raise http_error(e)

    await refresh_after_write(ctx)
    return created


@router.patch("/{class_id}")
async def update_class(class_id: str, payload: ClassIn, ctx: RequestContext = Depends(require_session)):
    try:
        name = _clean_class_name(payload, await current_snapshot(ctx), ignore_id=class_id)
        updated = await ctx.gateway.update_class(class_id, {"name": name})
    except SaveError as e:
        raise http_error(e)

    await refresh_after_write(ctx)
    return updated


@router.delete("/{class_id}")
async def delete_class(class_id: str, ctx: RequestContext = Depends(require_session)):
    """Delete a class. Its members stay, without a class."""
    try:
        await ctx.gateway.delete_class(class_id)
    except SaveError as e:
        logger.info("Delete of class %s rejected: %s", class_id, e.message)
        raise http_error(e)

    await refresh_after_write(ctx)
    return {"status": "ok", "message": f"Kelas {class_id} dipadam."}


@router.get("/{class_id}/students")
async def class_students(class_id: str, ctx: RequestContext = Depends(require_session)):
    snapshot = await current_snapshot(ctx)
    class_record = snapshot.find_class(class_id)
    if class_record is None:
        raise HTTPException(404, f"Kelas {class_id} tidak dijumpai.")

    members = [s for s in snapshot.students if as_text(s.get("class_id")) == as_text(class_record["id"])]
    return {
        "class": class_record,
        "count": len(members),
        "students": with_class_names(members, snapshot.classes),
    }
