import asyncio
import random

import pytest

from rndc_bridge.config import RndcSettings
from rndc_bridge.domain.models import OperationKind, QueryResult
from rndc_bridge.exceptions import UnsupportedOperationError
from rndc_bridge.messages.builder import PositionTiming
from rndc_bridge.records.factory import SubmissionRecordFactory, credentials_for

ROWS = [
    {
        "CONSECUTIVOREMESA": str(200 + i),
        "NUMNITEMPRESATRANSPORTE": "9013690938",
        "NUMPLACA": "WHK426",
        "ORIGEN": "BOGOTA",
        "DESTINO": "MEDELLIN",
        "FECHALLEGADACARGUE": 45678,
        "HORALLEGADACARGUE": 0.333333,
        "FECHALLEGADADESCARGUE": 45679,
        "HORALLEGADADESCARGUE": 0.5,
    }
    for i in range(6)
]


class RecordingQuery:
    """Answers quantity lookups; consecutives listed in `fail` raise, those in `empty` come back without data."""

    def __init__(self, fail=(), empty=(), delay=0.0):
        self.fail = set(fail)
        self.empty = set(empty)
        self.delay = delay
        self.seen: list[str] = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, xml: str) -> QueryResult:
        consecutive = xml.split("<CONSECUTIVOREMESA>'")[1].split("'")[0]
        self.seen.append(consecutive)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if consecutive in self.fail:
                raise ConnectionError("registry down")
            if consecutive in self.empty:
                return QueryResult(success=True, data={}, raw_xml="<root/>")
            return QueryResult(success=True, data={"CANTIDADCARGADA": f"{consecutive}0"}, raw_xml="<root/>")
        finally:
            self.active -= 1


def test_shipment_quantities_come_from_own_row_query(credentials):
    query = RecordingQuery()
    factory = SubmissionRecordFactory(credentials, query=query)
    records = asyncio.run(factory.from_rows(ROWS, OperationKind.SHIPMENT_COMPLETION))

    assert [r.row_key for r in records] == [row["CONSECUTIVOREMESA"] for row in ROWS]
    assert [r.row_index for r in records] == list(range(1, len(ROWS) + 1))
    for record in records:
        assert record.cantidad_cargada == f"{record.consecutivo_remesa}0"
        assert record.cantidad_entregada == record.cantidad_cargada
        assert f"<CANTIDADCARGADA>{record.cantidad_cargada}</CANTIDADCARGADA>" in record.xml_request
        assert f"<CONSECUTIVOREMESA>'{record.consecutivo_remesa}'</CONSECUTIVOREMESA>" in record.xml_query_request
    assert sorted(query.seen) == sorted(row["CONSECUTIVOREMESA"] for row in ROWS)


def test_failed_or_empty_lookups_fall_back(credentials, caplog):
    query = RecordingQuery(fail={"201"}, empty={"203"})
    factory = SubmissionRecordFactory(credentials, query=query, fallback_quantity="10000")
    records = asyncio.run(factory.from_rows(ROWS, OperationKind.SHIPMENT_COMPLETION))

    by_key = {r.row_key: r for r in records}
    assert by_key["201"].cantidad_cargada == "10000"
    assert by_key["203"].cantidad_cargada == "10000"
    assert by_key["202"].cantidad_cargada == "2020"
    assert "quantity lookup failed" in caplog.text


def test_without_query_every_row_uses_fallback(credentials):
    factory = SubmissionRecordFactory(credentials, fallback_quantity="777")
    records = asyncio.run(factory.from_rows(ROWS[:2], OperationKind.SHIPMENT_COMPLETION))
    assert [r.cantidad_cargada for r in records] == ["777", "777"]
    assert all(r.query_response is None for r in records)


def test_lookups_are_bounded_and_order_preserved(credentials):
    query = RecordingQuery(delay=0.01)
    factory = SubmissionRecordFactory(credentials, query=query, concurrency=2)
    records = asyncio.run(factory.from_rows(ROWS, OperationKind.SHIPMENT_COMPLETION))
    assert query.max_active <= 2
    assert [r.row_key for r in records] == [row["CONSECUTIVOREMESA"] for row in ROWS]


def test_shipment_events_are_load_and_unload(credentials):
    records = asyncio.run(SubmissionRecordFactory(credentials).from_rows(ROWS[:1], "shipment-completion"))
    record = records[0]
    assert record.event_start.display == "21/01/2025 08:00"
    assert record.event_end.display == "22/01/2025 12:00"


def test_position_reports(credentials):
    rows = [
        {"INGRESOIDMANIFIESTO": "77001", "CODPUNTOCONTROL": "1", "NUMPLACA": "ABC123", "FECHACITA": "10/06/2024", "HORACITA": "08:00"},
        {"INGRESOIDMANIFIESTO": "77001", "CODPUNTOCONTROL": "2", "NUMPLACA": "ABC123", "FECHACITA": "10/06/2024", "HORACITA": "14:00"},
    ]
    factory = SubmissionRecordFactory(credentials, timing=PositionTiming(rng=random.Random(7)))
    records = asyncio.run(factory.from_rows(rows, OperationKind.POSITION_REPORT))

    assert [r.row_key for r in records] == ["77001/1", "77001/2"]
    for record in records:
        assert f"<fechallegada>{record.event_start.date}</fechallegada>" in record.xml_request
        assert f"<horasalida>{record.event_end.time}</horasalida>" in record.xml_request
        assert record.num_id_gps == "9999999999"


def test_manifest_completions(credentials):
    rows = [{"NUMMANIFIESTOCARGA": "5501", "NUMNITEMPRESATRANSPORTE": "900", "FECHALLEGADADESCARGUE": "20/06/2024"}]
    records = asyncio.run(SubmissionRecordFactory(credentials).from_rows(rows, OperationKind.MANIFEST_COMPLETION))
    assert records[0].row_key == "5501"
    assert "<FECHAENTREGADOCUMENTOS>20/06/2024</FECHAENTREGADOCUMENTOS>" in records[0].xml_request


def test_query_kind_is_rejected(credentials):
    factory = SubmissionRecordFactory(credentials)
    with pytest.raises(UnsupportedOperationError):
        asyncio.run(factory.from_rows(ROWS, OperationKind.QUERY_BY_CONSECUTIVE))


def test_credentials_follow_operation_kind():
    rndc = RndcSettings(username="reg", password="regpw", gps_username="gps", gps_password="gpspw", company_nit="123")
    gps = credentials_for(OperationKind.POSITION_REPORT, rndc)
    registry = credentials_for(OperationKind.MANIFEST_COMPLETION, rndc)
    assert (gps.username, gps.password, gps.gps_id) == ("gps", "gpspw", "123")
    assert (registry.username, registry.password) == ("reg", "regpw")
