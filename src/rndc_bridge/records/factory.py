from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from rndc_bridge.config import RndcSettings, Settings, settings
from rndc_bridge.data.temporal import decode
from rndc_bridge.domain.models import Credentials, OperationKind, QueryResult, SubmissionRecord
from rndc_bridge.exceptions import UnsupportedOperationError
from rndc_bridge.messages.builder import PositionTiming, build, cell, shipment_event_times

logger = logging.getLogger(__name__)

QueryFn = Callable[[str], Awaitable[QueryResult]]

DEFAULT_FALLBACK_QUANTITY = "10000"


def credentials_for(kind: OperationKind | str, rndc: RndcSettings) -> Credentials:
    """Position reports are signed with the GPS account, everything else with the registry account."""
    if OperationKind(kind) == OperationKind.POSITION_REPORT:
        return Credentials(username=rndc.gps_username, password=rndc.gps_password, gps_id=rndc.company_nit)
    return Credentials(username=rndc.username, password=rndc.password, gps_id=rndc.company_nit)


class SubmissionRecordFactory:
    """
    Turns spreadsheet rows into ready-to-send SubmissionRecords.

    Shipment completions need the loaded quantity, which only the registry knows, so each row
    is first looked up with a query-by-consecutive message. Lookups run concurrently (bounded)
    and any failure falls back to a default quantity instead of blocking the batch.
    """

    def __init__(
        self,
        credentials: Credentials,
        query: Optional[QueryFn] = None,
        timing: Optional[PositionTiming] = None,
        fallback_quantity: str = DEFAULT_FALLBACK_QUANTITY,
        concurrency: int = 5,
    ):
        self.credentials = credentials
        self.query = query
        self.timing = timing or PositionTiming()
        self.fallback_quantity = fallback_quantity
        self.concurrency = max(1, concurrency)

    @classmethod
    def for_kind(
        cls, kind: OperationKind | str, query: Optional[QueryFn] = None, config: Optional[Settings] = None
    ) -> "SubmissionRecordFactory":
        config = config or settings
        return cls(
            credentials=credentials_for(kind, config.rndc),
            query=query,
            timing=PositionTiming(
                arrival_window=config.batch.arrival_window_minutes,
                dwell_window=config.batch.dwell_window_minutes,
            ),
            fallback_quantity=config.batch.fallback_quantity,
            concurrency=config.batch.query_concurrency,
        )

    async def from_rows(self, rows: Iterable[Mapping[str, Any]], kind: OperationKind | str) -> list[SubmissionRecord]:
        kind = OperationKind(kind)
        if kind == OperationKind.QUERY_BY_CONSECUTIVE:
            raise UnsupportedOperationError("query-by-consecutive rows are not batch submissions")

        rows = list(rows)
        if kind == OperationKind.POSITION_REPORT:
            return [self._position_report(idx, row) for idx, row in enumerate(rows, start=1)]
        if kind == OperationKind.MANIFEST_COMPLETION:
            return [self._manifest_completion(idx, row) for idx, row in enumerate(rows, start=1)]

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(idx: int, row: Mapping[str, Any]) -> SubmissionRecord:
            async with semaphore:
                return await self._shipment_completion(idx, row)

        # gather keeps input order
        return list(await asyncio.gather(*(bounded(idx, row) for idx, row in enumerate(rows, start=1))))

    def _position_report(self, row_index: int, row: Mapping[str, Any]) -> SubmissionRecord:
        arrival, departure = self.timing.schedule(row.get("FECHACITA"), row.get("HORACITA"))
        xml = build(
            OperationKind.POSITION_REPORT,
            row,
            self.credentials,
            {"arrival": arrival, "departure": departure},
        )
        manifest_id = cell(row, "INGRESOIDMANIFIESTO", "INGRESOID")
        control_point = cell(row, "CODPUNTOCONTROL")
        return SubmissionRecord(
            kind=OperationKind.POSITION_REPORT,
            row_index=row_index,
            row_key=f"{manifest_id}/{control_point}",
            num_id_gps=cell(row, "NUMIDGPS") or self.credentials.gps_id,
            ingreso_id_manifiesto=manifest_id,
            num_placa=cell(row, "NUMPLACA", "PLACA"),
            cod_punto_control=control_point,
            latitud=cell(row, "LATITUD"),
            longitud=cell(row, "LONGITUD"),
            event_start=arrival,
            event_end=departure,
            xml_request=xml,
        )

    async def _shipment_completion(self, row_index: int, row: Mapping[str, Any]) -> SubmissionRecord:
        consecutive = cell(row, "CONSECUTIVOREMESA")
        query_xml = build(OperationKind.QUERY_BY_CONSECUTIVE, row, self.credentials)
        quantity, raw_response = await self._loaded_quantity(consecutive, query_xml)

        load, _, unload = shipment_event_times(row)
        xml = build(OperationKind.SHIPMENT_COMPLETION, row, self.credentials, {"cantidadCargada": quantity})
        return SubmissionRecord(
            kind=OperationKind.SHIPMENT_COMPLETION,
            row_index=row_index,
            row_key=consecutive,
            consecutivo_remesa=consecutive,
            num_nit_empresa=cell(row, "NUMNITEMPRESATRANSPORTE"),
            num_placa=cell(row, "NUMPLACA", "PLACA"),
            origen=cell(row, "ORIGEN"),
            destino=cell(row, "DESTINO"),
            cantidad_cargada=quantity,
            cantidad_entregada=quantity,
            event_start=load,
            event_end=unload,
            xml_request=xml,
            xml_query_request=query_xml,
            query_response=raw_response,
        )

    def _manifest_completion(self, row_index: int, row: Mapping[str, Any]) -> SubmissionRecord:
        manifest = cell(row, "NUMMANIFIESTOCARGA", "CONSECUTIVOREMESA")
        xml = build(OperationKind.MANIFEST_COMPLETION, row, self.credentials)
        return SubmissionRecord(
            kind=OperationKind.MANIFEST_COMPLETION,
            row_index=row_index,
            row_key=manifest,
            num_manifiesto_carga=manifest,
            num_nit_empresa=cell(row, "NUMNITEMPRESATRANSPORTE", "NUMIDGPS"),
            num_placa=cell(row, "NUMPLACA", "PLACA"),
            origen=cell(row, "ORIGEN"),
            destino=cell(row, "DESTINO"),
            event_start=decode(row.get("FECHALLEGADACARGUE"), row.get("HORALLEGADACARGUE")),
            event_end=decode(row.get("FECHALLEGADADESCARGUE"), row.get("HORALLEGADADESCARGUE")),
            xml_request=xml,
        )

    async def _loaded_quantity(self, consecutive: str, query_xml: str) -> tuple[str, Optional[str]]:
        if self.query is None:
            logger.warning(
                "no registry query configured, using fallback quantity",
                extra={"consecutivo": consecutive, "fallback": self.fallback_quantity},
            )
            return self.fallback_quantity, None

        try:
            result = await self.query(query_xml)
        except Exception as exc:
            logger.warning(
                "quantity lookup failed, using fallback",
                extra={"consecutivo": consecutive, "error": str(exc), "fallback": self.fallback_quantity},
            )
            return self.fallback_quantity, None

        quantity = str(result.data.get("CANTIDADCARGADA") or "").strip() if result.success else ""
        if not quantity:
            logger.warning(
                "quantity missing from registry answer, using fallback",
                extra={"consecutivo": consecutive, "detail": result.message, "fallback": self.fallback_quantity},
            )
            return self.fallback_quantity, result.raw_xml or None
        return quantity, result.raw_xml or None
