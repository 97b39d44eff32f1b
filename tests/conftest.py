from typing import Callable, Optional

import pytest

from rndc_bridge.batch.tracker import BatchTracker
from rndc_bridge.data.storage import Database
from rndc_bridge.domain.models import Credentials, OperationKind, QueryResult, RndcResponse, SubmissionRecord


class FakeTransport:
    """
    Stands in for RndcClient: answers from a callable and remembers every XML it was sent.
    """

    def __init__(self, answer: Optional[Callable[[str], RndcResponse]] = None, query_data: Optional[dict] = None):
        self.answer = answer or (lambda xml: RndcResponse(success=True, code="1001", message="Registro aceptado"))
        self.query_data = query_data
        self.sent: list[str] = []
        self.queries: list[str] = []

    def send(self, xml_request: str, ws_url: Optional[str] = None) -> RndcResponse:
        self.sent.append(xml_request)
        return self.answer(xml_request)

    def query(self, xml_request: str, ws_url: Optional[str] = None) -> QueryResult:
        self.queries.append(xml_request)
        if self.query_data is None:
            return QueryResult(success=False, message="no data")
        return QueryResult(success=True, data=dict(self.query_data), raw_xml="<root/>")

    async def aquery(self, xml_request: str, ws_url: Optional[str] = None) -> QueryResult:
        return self.query(xml_request, ws_url)

    def ping(self, url=None, timeout=10.0):
        return {"status": "online", "latency": 5, "status_code": 200}


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "rndc.db")


@pytest.fixture
def tracker(db):
    return BatchTracker(db)


@pytest.fixture
def credentials():
    return Credentials(username="operador", password="secreto", gps_id="9999999999")


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def make_records():
    def _make(count: int, kind: OperationKind = OperationKind.SHIPMENT_COMPLETION) -> list[SubmissionRecord]:
        return [
            SubmissionRecord(
                kind=kind,
                row_index=i,
                row_key=str(100 + i),
                consecutivo_remesa=str(100 + i),
                xml_request=f"<root><n>{i}</n></root>",
            )
            for i in range(1, count + 1)
        ]

    return _make
