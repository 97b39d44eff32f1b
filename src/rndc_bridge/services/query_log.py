import json
import logging
import sqlite3
from datetime import UTC, datetime
from typing import Optional
from uuid import uuid4

from rndc_bridge.data.storage import Database
from rndc_bridge.domain.models import QueryExecuteRequest, RegistryQuery, RndcResponse, SubmissionStatus
from rndc_bridge.exceptions import BatchNotFoundError
from rndc_bridge.sync.rndc_client import extract_query_data

logger = logging.getLogger(__name__)


class QueryLog:
    """
    History of registry queries (third parties, vehicles, shipments...).
    A query is stored as processing before it is sent and completed with the registry answer.
    """

    def __init__(self, db: Database):
        self.db = db

    def create(self, request: QueryExecuteRequest) -> RegistryQuery:
        query_id = uuid4().hex
        with self.db._connect() as conn:
            conn.execute(
                """
                INSERT INTO queries
                    (id, query_type, query_name, num_nit_empresa, num_id_tercero, xml_request, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    query_id,
                    request.query_type,
                    request.query_name,
                    request.num_nit_empresa,
                    request.num_id_tercero,
                    request.xml_request,
                    SubmissionStatus.PROCESSING.value,
                    datetime.now(UTC).isoformat(),
                ),
            )
        return self.get(query_id)

    def complete(self, query_id: str, response: RndcResponse) -> RegistryQuery:
        data = extract_query_data(response.raw_xml) if response.success and response.raw_xml else {}
        status = SubmissionStatus.SUCCESS if response.success else SubmissionStatus.ERROR
        with self.db._connect() as conn:
            updated = conn.execute(
                """
                UPDATE queries
                SET xml_response = ?, response_data = ?, response_code = ?, response_message = ?, status = ?
                WHERE id = ?
                """,
                (
                    response.raw_xml,
                    json.dumps(data, ensure_ascii=False) if data else None,
                    response.code,
                    response.message,
                    status.value,
                    query_id,
                ),
            ).rowcount
        if not updated:
            raise BatchNotFoundError(f"Consulta {query_id} no encontrada")
        logger.info("registry query answered", extra={"query_id": query_id, "status": status.value, "code": response.code})
        return self.get(query_id)

    def get(self, query_id: str) -> Optional[RegistryQuery]:
        with self.db._connect() as conn:
            row = conn.execute("SELECT * FROM queries WHERE id = ?", (query_id,)).fetchone()
        return self._to_query(row) if row else None

    def list_queries(self, limit: int = 50, query_type: Optional[str] = None) -> list[RegistryQuery]:
        query = "SELECT * FROM queries"
        params: list = []
        if query_type:
            query += " WHERE query_type = ?"
            params.append(query_type)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self.db._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._to_query(r) for r in rows]

    @staticmethod
    def _to_query(row: sqlite3.Row) -> RegistryQuery:
        return RegistryQuery(
            id=row["id"],
            query_type=row["query_type"],
            query_name=row["query_name"],
            num_nit_empresa=row["num_nit_empresa"],
            num_id_tercero=row["num_id_tercero"],
            xml_request=row["xml_request"],
            xml_response=row["xml_response"],
            response_data=json.loads(row["response_data"]) if row["response_data"] else None,
            status=SubmissionStatus(row["status"]),
            response_code=row["response_code"],
            response_message=row["response_message"],
            created_at=row["created_at"],
        )
