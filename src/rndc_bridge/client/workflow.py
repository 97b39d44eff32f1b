import logging
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from rndc_bridge.client.poller import Notification, ReconciliationPoller
from rndc_bridge.domain.models import OperationKind, SubmissionRecord
from rndc_bridge.exceptions import ConnectionFailure
from rndc_bridge.records.factory import SubmissionRecordFactory

logger = logging.getLogger(__name__)


class BatchSubmitter(Protocol):
    async def submit(self, records: Sequence[SubmissionRecord], ws_url: Optional[str] = None) -> str:
        ...


class SubmissionWorkflow:
    """
    Upload-to-reconciliation flow of one screen: rows -> records -> batch -> polling.
    """

    def __init__(self, factory: SubmissionRecordFactory, submitter: BatchSubmitter, poller: ReconciliationPoller):
        self.factory = factory
        self.submitter = submitter
        self.poller = poller
        self.records: list[SubmissionRecord] = []

    async def prepare(self, rows: Iterable[Mapping[str, Any]], kind: OperationKind | str) -> list[SubmissionRecord]:
        self.records = await self.factory.from_rows(rows, kind)
        return self.records

    async def submit(
        self,
        records: Optional[Sequence[SubmissionRecord]] = None,
        ws_url: Optional[str] = None,
    ) -> Optional[str]:
        """
        Sends the records as one batch and starts polling it.
        Returns None without touching the network when there is nothing to send, and also when
        the batch endpoint fails; the prepared records and poller state are then left as they were.
        """
        records = list(self.records if records is None else records)
        if not records:
            return None

        try:
            batch_id = await self.submitter.submit(records, ws_url)
        except ConnectionFailure as exc:
            logger.warning("batch submission failed", extra={"records": len(records), "error": str(exc)})
            self.poller.notify(Notification(title="Error", message=str(exc), level="error"))
            return None

        self.poller.notify(
            Notification(
                title="Lote enviado",
                message=f"Procesando {len(records)} registros",
                level="info",
                batch_id=batch_id,
            )
        )
        self.poller.start(batch_id)
        return batch_id
