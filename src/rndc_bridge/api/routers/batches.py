import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import Response

from rndc_bridge.api.deps import get_exporter, get_processor, get_tracker, require_auth
from rndc_bridge.batch.processor import BatchProcessor
from rndc_bridge.batch.tracker import BatchTracker
from rndc_bridge.domain.models import (
    BatchEnvelope,
    BatchListEnvelope,
    BatchSubmitRequest,
    BatchSubmitResponse,
    RegistryAnswer,
    SingleSubmitRequest,
    SingleSubmitResponse,
    SubmissionEnvelope,
    SubmissionsEnvelope,
    SubmissionStatus,
)
from rndc_bridge.exceptions import BatchNotFoundError, EmptyBatchError, UnsupportedOperationError
from rndc_bridge.services.exporter import ResultsExporter

logger = logging.getLogger("rndc_bridge.api.batches")
router = APIRouter(tags=["Batches"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.post("/batches", response_model=BatchSubmitResponse)
def create_batch(
    payload: BatchSubmitRequest,
    background_tasks: BackgroundTasks,
    tracker: BatchTracker = Depends(get_tracker),
    processor: BatchProcessor = Depends(get_processor),
    _auth=Depends(require_auth),
):
    if not payload.submissions:
        raise EmptyBatchError("No hay registros para enviar")
    kinds = {s.kind for s in payload.submissions}
    if len(kinds) > 1:
        raise UnsupportedOperationError("A batch cannot mix operation kinds")

    batch_id = tracker.create_batch(payload.submissions, kinds.pop())
    background_tasks.add_task(processor.process, batch_id, payload.ws_url)
    return BatchSubmitResponse(
        success=True,
        batch_id=batch_id,
        message=f"Lote creado con {len(payload.submissions)} registros",
    )


@router.get("/batches", response_model=BatchListEnvelope)
def list_batches(
    type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    tracker: BatchTracker = Depends(get_tracker),
):
    return BatchListEnvelope(success=True, batches=tracker.list_batches(limit=limit, batch_type=type))


@router.get("/batches/{batch_id}", response_model=BatchEnvelope)
def get_batch(batch_id: str, tracker: BatchTracker = Depends(get_tracker)):
    batch = tracker.get_batch(batch_id)
    if batch is None:
        raise BatchNotFoundError(f"Lote {batch_id} no encontrado")
    return BatchEnvelope(success=True, batch=batch)


@router.get("/batches/{batch_id}/export")
def export_batch(batch_id: str, exporter: ResultsExporter = Depends(get_exporter)):
    content = exporter.export_batch(batch_id)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="batch_{batch_id}.xlsx"'},
    )


@router.get("/submissions", response_model=SubmissionsEnvelope)
def list_submissions(
    batch_id: str = Query(..., alias="batchId"),
    tracker: BatchTracker = Depends(get_tracker),
):
    return SubmissionsEnvelope(success=True, submissions=tracker.list_submissions(batch_id))


@router.get("/submissions/{submission_id}", response_model=SubmissionEnvelope)
def get_submission(submission_id: str, tracker: BatchTracker = Depends(get_tracker)):
    submission = tracker.get_submission(submission_id)
    if submission is None:
        raise BatchNotFoundError(f"Registro {submission_id} no encontrado")
    return SubmissionEnvelope(success=True, submission=submission)


@router.post("/submissions/single", response_model=SingleSubmitResponse)
def submit_single(
    payload: SingleSubmitRequest,
    tracker: BatchTracker = Depends(get_tracker),
    processor: BatchProcessor = Depends(get_processor),
    _auth=Depends(require_auth),
):
    """Sends one record synchronously. It is still tracked as a batch of one."""
    record = payload.submission
    if not record.xml_request.strip():
        raise EmptyBatchError("XML requerido")

    batch_id = tracker.create_batch([record], record.kind)
    processor.process(batch_id, payload.ws_url)
    sent = tracker.list_submissions(batch_id)[0]
    return SingleSubmitResponse(
        success=True,
        batch_id=batch_id,
        submission_id=sent.id,
        response=RegistryAnswer(
            success=sent.status == SubmissionStatus.SUCCESS,
            code=sent.response_code or "",
            message=sent.response_message or "",
        ),
    )
