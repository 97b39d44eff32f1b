"""
XML messages for the RNDC AtenderMensajeRNDC operation.

The registry is strict about element names and order, so each template is a fixed sequence
of (tag, value) pairs rendered one element per line. Values are always XML-escaped.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional
from xml.sax.saxutils import escape

from rndc_bridge.data.temporal import decode
from rndc_bridge.domain.models import Credentials, NormalizedDateTime, OperationKind

XML_DECLARATION = "<?xml version='1.0' encoding='iso-8859-1' ?>"

OPERATION_CODES: dict[OperationKind, tuple[int, int]] = {
    OperationKind.POSITION_REPORT: (1, 60),
    OperationKind.QUERY_BY_CONSECUTIVE: (3, 3),
    OperationKind.SHIPMENT_COMPLETION: (1, 5),
    OperationKind.MANIFEST_COMPLETION: (1, 6),
}

QUERY_FIELDS = "INGRESOID,FECHAING,CANTIDADCARGADA"
LOAD_TIME_OFFSET_MINUTES = 5
UNIT_OF_MEASURE = "1"
COMPLETION_TYPE = "C"


@dataclass
class PositionTiming:
    """
    Arrival/departure heuristic for position reports.
    Real times are unknown, so arrival is the scheduled appointment plus a random delay and
    departure follows after a random dwell. Pass a seeded Random to pin the values.
    """

    arrival_window: tuple[int, int] = (60, 90)
    dwell_window: tuple[int, int] = (90, 140)
    rng: random.Random = field(default_factory=random.Random)

    def schedule(self, date_cell: Any, time_cell: Any) -> tuple[NormalizedDateTime, NormalizedDateTime]:
        arrival_delay = self.rng.randint(*self.arrival_window)
        dwell = self.rng.randint(*self.dwell_window)
        arrival = decode(date_cell, time_cell, arrival_delay)
        departure = decode(date_cell, time_cell, arrival_delay + dwell)
        return arrival, departure


def build(
    kind: OperationKind | str,
    row: Mapping[str, Any],
    credentials: Credentials,
    computed_fields: Optional[Mapping[str, Any]] = None,
    *,
    timing: Optional[PositionTiming] = None,
) -> str:
    kind = OperationKind(kind)
    computed = dict(computed_fields or {})
    renderer = _RENDERERS[kind]
    if kind == OperationKind.POSITION_REPORT:
        return renderer(row, credentials, computed, timing or PositionTiming())
    return renderer(row, credentials, computed)


def cell(row: Mapping[str, Any], *names: str) -> str:
    """First non-empty value among the given columns, as registry text."""
    for name in names:
        text = text_value(row.get(name))
        if text:
            return text
    return ""


def text_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def _element(tag: str, value: Any) -> str:
    return f"<{tag}>{escape(text_value(value))}</{tag}>"


def _envelope(kind: OperationKind, credentials: Credentials, body: list[str]) -> str:
    tipo, procesoid = OPERATION_CODES[kind]
    lines = [
        XML_DECLARATION,
        "<root>",
        "<acceso>",
        _element("username", credentials.username),
        _element("password", credentials.password),
        "</acceso>",
        "<solicitud>",
        f"<tipo>{tipo}</tipo>",
        f"<procesoid>{procesoid}</procesoid>",
        "</solicitud>",
        *body,
        "</root>",
    ]
    return "\n".join(lines)


def _variables(pairs: list[tuple[str, Any]]) -> list[str]:
    return ["<variables>", *(_element(tag, value) for tag, value in pairs), "</variables>"]


def _position_report(
    row: Mapping[str, Any],
    credentials: Credentials,
    computed: dict[str, Any],
    timing: PositionTiming,
) -> str:
    arrival = computed.get("arrival")
    departure = computed.get("departure")
    if arrival is None or departure is None:
        arrival, departure = timing.schedule(row.get("FECHACITA"), row.get("HORACITA"))

    pairs = [
        ("numidgps", cell(row, "NUMIDGPS") or credentials.gps_id),
        ("ingresoidmanifiesto", cell(row, "INGRESOIDMANIFIESTO", "INGRESOID")),
        ("numplaca", cell(row, "NUMPLACA", "PLACA")),
        ("codpuntocontrol", cell(row, "CODPUNTOCONTROL")),
        ("latitud", cell(row, "LATITUD")),
        ("longitud", cell(row, "LONGITUD")),
        ("fechallegada", arrival.date),
        ("horallegada", arrival.time),
        ("fechasalida", departure.date),
        ("horasalida", departure.time),
    ]
    return _envelope(OperationKind.POSITION_REPORT, credentials, _variables(pairs))


def _query_by_consecutive(row: Mapping[str, Any], credentials: Credentials, computed: dict[str, Any]) -> str:
    nit = escape(cell(row, "NUMNITEMPRESATRANSPORTE"))
    consecutive = escape(cell(row, "CONSECUTIVOREMESA"))
    body = [
        f"<variables>{QUERY_FIELDS}</variables>",
        "<documento>",
        f"<NUMNITEMPRESATRANSPORTE>'{nit}'</NUMNITEMPRESATRANSPORTE>",
        f"<CONSECUTIVOREMESA>'{consecutive}'</CONSECUTIVOREMESA>",
        "</documento>",
    ]
    return _envelope(OperationKind.QUERY_BY_CONSECUTIVE, credentials, body)


def shipment_event_times(row: Mapping[str, Any]) -> tuple[NormalizedDateTime, NormalizedDateTime, NormalizedDateTime]:
    """(load, load time reported to the registry, unload) for a shipment completion row."""
    load = decode(row.get("FECHALLEGADACARGUE"), row.get("HORALLEGADACARGUE"))
    load_reported = decode(row.get("FECHALLEGADACARGUE"), row.get("HORALLEGADACARGUE"), LOAD_TIME_OFFSET_MINUTES)
    unload = decode(row.get("FECHALLEGADADESCARGUE"), row.get("HORALLEGADADESCARGUE"))
    return load, load_reported, unload


def _shipment_completion(row: Mapping[str, Any], credentials: Credentials, computed: dict[str, Any]) -> str:
    load, load_reported, unload = shipment_event_times(row)
    quantity = computed.get("cantidadCargada")
    pairs = [
        ("NUMNITEMPRESATRANSPORTE", cell(row, "NUMNITEMPRESATRANSPORTE")),
        ("CONSECUTIVOREMESA", cell(row, "CONSECUTIVOREMESA")),
        ("TIPOCUMPLIDOREMESA", COMPLETION_TYPE),
        ("CANTIDADCARGADA", quantity),
        ("CANTIDADENTREGADA", quantity),
        ("UNIDADMEDIDACAPACIDAD", UNIT_OF_MEASURE),
        ("FECHAENTRADACARGUE", load.date),
        ("HORAENTRADACARGUEREMESA", load_reported.time),
        ("FECHAENTRADADESCARGUE", unload.date),
        ("HORAENTRADADESCARGUECUMPLIDO", unload.time),
    ]
    return _envelope(OperationKind.SHIPMENT_COMPLETION, credentials, _variables(pairs))


def _manifest_completion(row: Mapping[str, Any], credentials: Credentials, computed: dict[str, Any]) -> str:
    unload = decode(row.get("FECHALLEGADADESCARGUE"), row.get("HORALLEGADADESCARGUE"))
    pairs = [
        ("NUMNITEMPRESATRANSPORTE", cell(row, "NUMNITEMPRESATRANSPORTE", "NUMIDGPS")),
        ("NUMMANIFIESTOCARGA", cell(row, "NUMMANIFIESTOCARGA", "CONSECUTIVOREMESA")),
        ("TIPOCUMPLIDOMANIFIESTO", COMPLETION_TYPE),
        ("FECHAENTREGADOCUMENTOS", unload.date),
    ]
    return _envelope(OperationKind.MANIFEST_COMPLETION, credentials, _variables(pairs))


_RENDERERS: dict[OperationKind, Callable[..., str]] = {
    OperationKind.POSITION_REPORT: _position_report,
    OperationKind.QUERY_BY_CONSECUTIVE: _query_by_consecutive,
    OperationKind.SHIPMENT_COMPLETION: _shipment_completion,
    OperationKind.MANIFEST_COMPLETION: _manifest_completion,
}
