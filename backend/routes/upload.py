"""
Upload routes — spreadsheet import of students (bulk upsert by IC number).
"""

import logging
import os
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from core.gateway import import_students
from core.errors import StudentImportError
from core.parser import SUPPORTED_EXTENSIONS, build_import_records, parse_upload
from routes.deps import RequestContext, current_snapshot, refresh_after_write, require_session

logger = logging.getLogger(__name__)

router = APIRouter()

IMPORT_BATCH_SIZE = int(os.getenv("IMPORT_BATCH_SIZE", "500"))
PREVIEW_ROWS = 10


@router.post("/students")
async def upload_students(file: UploadFile = File(...), ctx: RequestContext = Depends(require_session)):
    """
    Import a CSV, Excel, or ODS file of students.

    Rows are normalized, deduplicated by IC number and upserted in batches.
    A failing batch stops the import; earlier batches stay written and the
    error carries how many rows that is.
    """
    filename = file.filename or ""
    ext = Path(filename).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported file type: {ext or '(none)'}. Use CSV, Excel, or ODS.")

    content = await file.read()
    snapshot = await current_snapshot(ctx)

    try:
        df = parse_upload(content, filename=filename)
        records, report = build_import_records(df, snapshot.classes)
        upserted = await import_students(ctx.gateway, records, batch_size=IMPORT_BATCH_SIZE)
    except StudentImportError as e:
        logger.exception("Import of '%s' failed after %d rows", filename, e.upserted_count)
        if e.upserted_count:
            await refresh_after_write(ctx)
        raise HTTPException(400, {
            "message": e.message,
            "upserted_count": e.upserted_count,
            **e.details,
        })

    logger.info("Imported %d students from '%s'", upserted, filename)
    await refresh_after_write(ctx)
    return {
        "filename": filename,
        "upserted_count": upserted,
        "import_report": report,
        "preview": records[:PREVIEW_ROWS],
    }
