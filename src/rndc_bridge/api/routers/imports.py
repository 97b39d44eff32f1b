import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from rndc_bridge.api.deps import get_transport, require_auth
from rndc_bridge.config import settings
from rndc_bridge.data.spreadsheet import SpreadsheetAdapter
from rndc_bridge.domain.models import ImportPreviewRow, ImportResponse, OperationKind
from rndc_bridge.exceptions import UnsupportedOperationError
from rndc_bridge.records.factory import SubmissionRecordFactory
from rndc_bridge.sync.rndc_client import RndcClient

logger = logging.getLogger("rndc_bridge.api.imports")
router = APIRouter(prefix="/imports", tags=["Imports"])


def _read_upload(upload: UploadFile) -> bytes:
    max_bytes = settings.security.max_upload_mb * 1024 * 1024
    content = upload.file.read()
    if max_bytes and len(content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"File too large; max {settings.security.max_upload_mb}MB")
    return content


@router.post("/{kind}", response_model=ImportResponse)
async def import_spreadsheet(
    kind: OperationKind,
    file: UploadFile = File(...),
    transport: RndcClient = Depends(get_transport),
    _auth=Depends(require_auth),
):
    """
    Reads the first sheet of an uploaded .xlsx/.csv and returns the generated records plus a
    display preview. Nothing is persisted; the records are meant to be posted to /batches.
    """
    if kind == OperationKind.QUERY_BY_CONSECUTIVE:
        raise UnsupportedOperationError("query-by-consecutive rows are not batch submissions")

    rows = SpreadsheetAdapter.load(_read_upload(file), filename=file.filename)
    factory = SubmissionRecordFactory.for_kind(kind, query=transport.aquery)
    records = await factory.from_rows(rows, kind)
    logger.info("spreadsheet converted", extra={"kind": kind.value, "records": len(records)})

    preview = [
        ImportPreviewRow(
            row_index=r.row_index,
            row_key=r.row_key,
            event_start=r.event_start.display if r.event_start else "",
            event_end=r.event_end.display if r.event_end else "",
        )
        for r in records
    ]
    return ImportResponse(success=True, kind=kind, records=records, preview=preview)
