import logging
import time
from typing import Callable, Optional, Protocol

from rndc_bridge.batch.tracker import BatchTracker
from rndc_bridge.domain.models import Batch, RndcResponse, SubmissionStatus
from rndc_bridge.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def send(self, xml_request: str, ws_url: Optional[str] = None) -> RndcResponse:
        ...


class BatchProcessor:
    """
    Sends a batch's submissions to the registry one at a time.
    Runs in the API's background task; it is the only writer of its batch.
    """

    def __init__(
        self,
        tracker: BatchTracker,
        transport: Transport,
        pacing_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.tracker = tracker
        self.transport = transport
        self.pacing_seconds = pacing_seconds
        self.sleep = sleep

    def process(self, batch_id: str, ws_url: Optional[str] = None) -> Batch:
        logger.info("batch processing started", extra={"batch_id": batch_id})
        try:
            pending = [s for s in self.tracker.list_submissions(batch_id) if s.status == SubmissionStatus.PENDING]
            for position, submission in enumerate(pending):
                if position and self.pacing_seconds:
                    self.sleep(self.pacing_seconds)
                self._process_one(submission.id, submission.xml_request, ws_url)
        finally:
            batch = self.tracker.finalize(batch_id)
        logger.info(
            "batch processing finished",
            extra={"batch_id": batch_id, "success": batch.success_count, "error": batch.error_count},
        )
        return batch

    def _process_one(self, submission_id: str, xml_request: str, ws_url: Optional[str]) -> None:
        try:
            self.tracker.mark_processing(submission_id)
        except InvalidTransitionError:
            logger.warning("submission no longer pending, skipped", extra={"submission_id": submission_id})
            return

        try:
            response = self.transport.send(xml_request, ws_url)
        except Exception as exc:
            logger.exception("transport raised while sending", extra={"submission_id": submission_id})
            response = RndcResponse(success=False, code="ERROR", message=str(exc) or "Error desconocido")
        self.tracker.record_result(submission_id, response)
