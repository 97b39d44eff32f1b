from __future__ import annotations

import json
import logging
import sqlite3
from datetime import UTC, datetime
from typing import Iterable, Optional
from uuid import uuid4

from rndc_bridge.data.storage import Database
from rndc_bridge.domain.models import (
    Batch,
    BatchStatus,
    OperationKind,
    RndcResponse,
    SubmissionRecord,
    SubmissionStatus,
)
from rndc_bridge.exceptions import BatchNotFoundError, EmptyBatchError, InvalidTransitionError

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Procesamiento interrumpido"


def _now() -> str:
    return datetime.now(UTC).isoformat()


class BatchTracker:
    """
    Owns the batch/submission state machine.

    Submissions move pending -> processing -> success|error; a batch is processing until its
    pending count reaches zero and then completed for good. Every counter change and the
    completion transition share one SQLite transaction, so any reader sees
    success + error + pending == total.
    """

    def __init__(self, db: Database):
        self.db = db

    def create_batch(self, records: Iterable[SubmissionRecord], kind: OperationKind | str) -> str:
        records = list(records)
        if not records:
            raise EmptyBatchError("No hay registros para enviar")
        batch_type = OperationKind(kind).batch_type

        batch_id = uuid4().hex
        created_at = _now()
        with self.db._connect() as conn:
            conn.execute(
                """
                INSERT INTO batches
                    (id, type, total_records, success_count, error_count, pending_count, status, created_at)
                VALUES (?, ?, ?, 0, 0, ?, ?, ?)
                """,
                (batch_id, batch_type, len(records), len(records), BatchStatus.PROCESSING.value, created_at),
            )
            conn.executemany(
                """
                INSERT INTO submissions
                    (id, batch_id, kind, row_index, row_key, fields_json, xml_request, xml_query_request,
                     query_response, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        uuid4().hex,
                        batch_id,
                        record.kind.value,
                        record.row_index or idx,
                        record.row_key,
                        json.dumps(record.business_keys(), ensure_ascii=False),
                        record.xml_request,
                        record.xml_query_request,
                        record.query_response,
                        SubmissionStatus.PENDING.value,
                        created_at,
                    )
                    for idx, record in enumerate(records, start=1)
                ],
            )
        logger.info("batch created", extra={"batch_id": batch_id, "type": batch_type, "records": len(records)})
        return batch_id

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        with self.db._connect() as conn:
            row = conn.execute("SELECT * FROM batches WHERE id = ?", (batch_id,)).fetchone()
        return self._to_batch(row) if row else None

    def list_batches(self, limit: int = 50, batch_type: Optional[str] = None) -> list[Batch]:
        query = "SELECT * FROM batches"
        params: list = []
        if batch_type:
            query += " WHERE type = ?"
            params.append(batch_type)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self.db._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._to_batch(r) for r in rows]

    def list_submissions(self, batch_id: str) -> list[SubmissionRecord]:
        with self.db._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM submissions WHERE batch_id = ? ORDER BY row_index", (batch_id,)
            ).fetchall()
        return [self._to_submission(r) for r in rows]

    def get_submission(self, submission_id: str) -> Optional[SubmissionRecord]:
        with self.db._connect() as conn:
            row = conn.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()
        return self._to_submission(row) if row else None

    def mark_processing(self, submission_id: str) -> None:
        with self.db._connect() as conn:
            status = self._submission_status(conn, submission_id)
            if status != SubmissionStatus.PENDING:
                raise InvalidTransitionError(f"submission {submission_id}: {status.value} -> processing")
            conn.execute(
                "UPDATE submissions SET status = ? WHERE id = ?",
                (SubmissionStatus.PROCESSING.value, submission_id),
            )

    def record_result(self, submission_id: str, response: RndcResponse) -> Batch:
        """Stores the registry answer and moves the batch counters in the same transaction."""
        outcome = SubmissionStatus.SUCCESS if response.success else SubmissionStatus.ERROR
        with self.db._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            status = self._submission_status(conn, submission_id)
            if status.is_terminal or status == SubmissionStatus.READY:
                raise InvalidTransitionError(f"submission {submission_id}: {status.value} -> {outcome.value}")

            batch_id = conn.execute("SELECT batch_id FROM submissions WHERE id = ?", (submission_id,)).fetchone()[0]
            processed_at = _now()
            conn.execute(
                """
                UPDATE submissions
                SET status = ?, response_code = ?, response_message = ?, xml_response = ?, processed_at = ?
                WHERE id = ?
                """,
                (outcome.value, response.code, response.message, response.raw_xml, processed_at, submission_id),
            )
            success_inc = 1 if outcome == SubmissionStatus.SUCCESS else 0
            conn.execute(
                """
                UPDATE batches
                SET success_count = success_count + ?, error_count = error_count + ?, pending_count = pending_count - 1
                WHERE id = ?
                """,
                (success_inc, 1 - success_inc, batch_id),
            )
            self._complete_if_drained(conn, batch_id, processed_at)
            row = conn.execute("SELECT * FROM batches WHERE id = ?", (batch_id,)).fetchone()
        return self._to_batch(row)

    def finalize(self, batch_id: str) -> Batch:
        """
        Closes a batch whose processor stopped early: anything still pending or processing is
        recorded as an error so the batch can complete. No-op on a completed batch.
        """
        with self.db._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT * FROM batches WHERE id = ?", (batch_id,)).fetchone()
            if row is None:
                raise BatchNotFoundError(batch_id)
            if row["status"] == BatchStatus.COMPLETED.value:
                return self._to_batch(row)

            now = _now()
            stranded = conn.execute(
                "UPDATE submissions SET status = ?, response_code = ?, response_message = ?, processed_at = ? "
                "WHERE batch_id = ? AND status IN (?, ?)",
                (
                    SubmissionStatus.ERROR.value,
                    "ERROR",
                    INTERRUPTED_MESSAGE,
                    now,
                    batch_id,
                    SubmissionStatus.PENDING.value,
                    SubmissionStatus.PROCESSING.value,
                ),
            ).rowcount
            if stranded:
                logger.warning("batch finalized with unprocessed records", extra={"batch_id": batch_id, "records": stranded})
                conn.execute(
                    "UPDATE batches SET error_count = error_count + ?, pending_count = pending_count - ? WHERE id = ?",
                    (stranded, stranded, batch_id),
                )
            self._complete_if_drained(conn, batch_id, now)
            row = conn.execute("SELECT * FROM batches WHERE id = ?", (batch_id,)).fetchone()
        return self._to_batch(row)

    @staticmethod
    def _complete_if_drained(conn: sqlite3.Connection, batch_id: str, completed_at: str) -> None:
        updated = conn.execute(
            "UPDATE batches SET status = ?, completed_at = ? WHERE id = ? AND pending_count = 0 AND status = ?",
            (BatchStatus.COMPLETED.value, completed_at, batch_id, BatchStatus.PROCESSING.value),
        ).rowcount
        if updated:
            logger.info("batch completed", extra={"batch_id": batch_id})

    @staticmethod
    def _submission_status(conn: sqlite3.Connection, submission_id: str) -> SubmissionStatus:
        row = conn.execute("SELECT status FROM submissions WHERE id = ?", (submission_id,)).fetchone()
        if row is None:
            raise BatchNotFoundError(f"submission {submission_id} not found")
        return SubmissionStatus(row[0])

    @staticmethod
    def _to_batch(row: sqlite3.Row) -> Batch:
        return Batch(
            id=row["id"],
            type=row["type"],
            total_records=row["total_records"],
            success_count=row["success_count"],
            error_count=row["error_count"],
            pending_count=row["pending_count"],
            status=BatchStatus(row["status"]),
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _to_submission(row: sqlite3.Row) -> SubmissionRecord:
        fields = json.loads(row["fields_json"] or "{}")
        return SubmissionRecord(
            **fields,
            id=row["id"],
            batch_id=row["batch_id"],
            kind=OperationKind(row["kind"]),
            row_index=row["row_index"],
            row_key=row["row_key"] or "",
            xml_request=row["xml_request"],
            xml_query_request=row["xml_query_request"],
            query_response=row["query_response"],
            status=SubmissionStatus(row["status"]),
            response_code=row["response_code"],
            response_message=row["response_message"],
            xml_response=row["xml_response"],
            created_at=row["created_at"],
            processed_at=row["processed_at"],
        )
