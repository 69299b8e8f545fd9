"""
Report routes — PDF and Excel report generation endpoints.

Documents are rendered in memory and streamed back as attachments; nothing
is written to disk.
"""

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from core.errors import ExportError
from core.filters import filter_students
from core.report_builder import (
    build_class_report,
    build_statistics_report,
    build_workbook_model,
    render_report_pdf,
    render_workbook,
)
from core.stats import compute_statistics, filter_by_time_range
from routes.analyze import describe_filters, parse_query
from routes.deps import RequestContext, current_snapshot, http_error, local_now, require_session

logger = logging.getLogger(__name__)

router = APIRouter()

ORGANIZATION_NAME = os.getenv("ORGANIZATION_NAME", "KOPERASI SMK KHIR JOHARI")
SESSION_LABEL = os.getenv("SESSION_LABEL", "Sesi Persekolahan 2026")
LOGO_PATH = os.getenv("LOGO_PATH") or None

PDF_MEDIA_TYPE = "application/pdf"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _attachment(content: bytes, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/statistics-pdf")
async def statistics_pdf(
    time_range: Optional[str] = None,
    gender: Optional[str] = None,
    class_id: Optional[str] = None,
    search: Optional[str] = None,
    ctx: RequestContext = Depends(require_session),
):
    """Company-wide statistics report for the filtered, time-ranged record set."""
    tr, filters = parse_query(time_range, gender, class_id, search)
    snapshot = await current_snapshot(ctx)
    now = local_now()

    records = filter_by_time_range(filter_students(snapshot.students, filters), tr, now=now)
    stats = compute_statistics(records, snapshot.classes, time_range=tr, now=now)
    context = {**describe_filters(tr, filters, snapshot), "label": "Laporan_Statistik"}

    try:
        model = build_statistics_report(
            records, snapshot.classes, stats, ORGANIZATION_NAME,
            context=context, generated_at=now,
        )
        pdf = render_report_pdf(model)
    except ExportError as e:
        logger.exception("Statistics PDF export failed")
        raise http_error(e)

    return _attachment(pdf, model["filename"], PDF_MEDIA_TYPE)


@router.get("/class-pdf/{class_id}")
async def class_pdf(class_id: str, ctx: RequestContext = Depends(require_session)):
    """Member list of one class with the class savings total."""
    snapshot = await current_snapshot(ctx)
    class_record = snapshot.find_class(class_id)
    if class_record is None:
        raise HTTPException(404, f"Kelas {class_id} tidak dijumpai.")

    try:
        model = build_class_report(
            class_record, snapshot.students, ORGANIZATION_NAME,
            subtitle=SESSION_LABEL, logo_path=LOGO_PATH, generated_at=local_now(),
        )
        pdf = render_report_pdf(model)
    except ExportError as e:
        logger.exception("Class PDF export failed for class %s", class_id)
        raise http_error(e)

    return _attachment(pdf, model["filename"], PDF_MEDIA_TYPE)


@router.get("/workbook")
async def workbook(
    time_range: Optional[str] = None,
    gender: Optional[str] = None,
    class_id: Optional[str] = None,
    search: Optional[str] = None,
    ctx: RequestContext = Depends(require_session),
):
    """Excel export of the filtered, time-ranged record set: summary, students, per-class breakdown."""
    tr, filters = parse_query(time_range, gender, class_id, search)
    snapshot = await current_snapshot(ctx)
    now = local_now()

    records = filter_by_time_range(filter_students(snapshot.students, filters), tr, now=now)
    stats = compute_statistics(records, snapshot.classes, time_range=tr, now=now)

    try:
        model = build_workbook_model(records, snapshot.classes, stats, generated_at=now)
        content = render_workbook(model)
    except ExportError as e:
        logger.exception("Workbook export failed")
        raise http_error(e)

    return _attachment(content, model["filename"], XLSX_MEDIA_TYPE)
