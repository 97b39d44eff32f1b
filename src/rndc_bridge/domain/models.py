from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from rndc_bridge.exceptions import UnsupportedOperationError


class OperationKind(str, Enum):
    POSITION_REPORT = "position-report"
    QUERY_BY_CONSECUTIVE = "query-by-consecutive"
    SHIPMENT_COMPLETION = "shipment-completion"
    MANIFEST_COMPLETION = "manifest-completion"

    @property
    def batch_type(self) -> str:
        try:
            return _BATCH_TYPES[self]
        except KeyError:
            raise UnsupportedOperationError(f"{self.value} cannot be submitted as a batch")

    @classmethod
    def from_batch_type(cls, batch_type: str) -> "OperationKind":
        for kind, label in _BATCH_TYPES.items():
            if label == batch_type:
                return kind
        raise ValueError(f"unknown batch type: {batch_type}")


_BATCH_TYPES = {
    OperationKind.POSITION_REPORT: "puntos_control",
    OperationKind.SHIPMENT_COMPLETION: "cumplido_remesa",
    OperationKind.MANIFEST_COMPLETION: "cumplido_manifiesto",
}


class SubmissionStatus(str, Enum):
    READY = "ready"
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SubmissionStatus.SUCCESS, SubmissionStatus.ERROR)


class BatchStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NormalizedDateTime(WireModel):
    model_config = ConfigDict(frozen=True)

    date: str  # DD/MM/YYYY
    time: str  # HH:MM
    degraded: bool = False

    def to_datetime(self) -> datetime:
        return datetime.strptime(f"{self.date} {self.time}", "%d/%m/%Y %H:%M")

    @property
    def display(self) -> str:
        return f"{self.date} {self.time}"


class Credentials(BaseModel):
    """Operator account used in the <acceso> block of every message."""

    username: str = ""
    password: str = ""
    gps_id: str = ""  # numidgps fallback for position reports


class SubmissionRecord(WireModel):
    id: Optional[str] = None
    batch_id: Optional[str] = None
    kind: OperationKind
    row_index: int = 0
    row_key: str = ""

    # position report
    num_id_gps: Optional[str] = None
    ingreso_id_manifiesto: Optional[str] = None
    cod_punto_control: Optional[str] = None
    latitud: Optional[str] = None
    longitud: Optional[str] = None

    # shared by completions (and plate for position reports)
    num_placa: Optional[str] = None
    num_nit_empresa: Optional[str] = None
    origen: Optional[str] = None
    destino: Optional[str] = None

    # shipment completion
    consecutivo_remesa: Optional[str] = None
    cantidad_cargada: Optional[str] = None
    cantidad_entregada: Optional[str] = None

    # manifest completion
    num_manifiesto_carga: Optional[str] = None

    event_start: Optional[NormalizedDateTime] = None  # arrival / load
    event_end: Optional[NormalizedDateTime] = None  # departure / unload

    xml_request: str
    xml_query_request: Optional[str] = None
    query_response: Optional[str] = None

    status: SubmissionStatus = SubmissionStatus.READY
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    xml_response: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def business_keys(self) -> dict[str, Any]:
        """Kind-specific fields, as persisted in the submission's JSON column."""
        return self.model_dump(
            mode="json",
            exclude={
                "id",
                "batch_id",
                "kind",
                "row_index",
                "row_key",
                "xml_request",
                "xml_query_request",
                "query_response",
                "status",
                "response_code",
                "response_message",
                "xml_response",
                "created_at",
                "processed_at",
            },
            exclude_none=True,
        )


class Batch(WireModel):
    id: str
    type: str
    total_records: int
    success_count: int = 0
    error_count: int = 0
    pending_count: int
    status: BatchStatus = BatchStatus.PROCESSING
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_counts(self) -> "Batch":
        if self.success_count + self.error_count + self.pending_count != self.total_records:
            raise ValueError(
                f"batch {self.id} counts do not add up: "
                f"{self.success_count}+{self.error_count}+{self.pending_count} != {self.total_records}"
            )
        if self.status == BatchStatus.COMPLETED and self.pending_count != 0:
            raise ValueError(f"batch {self.id} completed with {self.pending_count} pending records")
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == BatchStatus.COMPLETED


class RndcResponse(BaseModel):
    """Interpreted answer of one AtenderMensajeRNDC call."""

    success: bool
    code: str
    message: str
    raw_xml: str = ""


class QueryResult(WireModel):
    success: bool
    data: dict[str, Any] = Field(default_factory=dict)
    raw_xml: str = ""
    message: Optional[str] = None


# ----- API payloads -----
class BatchSubmitRequest(WireModel):
    submissions: list[SubmissionRecord] = Field(default_factory=list)
    ws_url: Optional[str] = None


class BatchSubmitResponse(WireModel):
    success: bool
    batch_id: Optional[str] = None
    message: str = ""


class BatchEnvelope(WireModel):
    success: bool
    batch: Batch


class BatchListEnvelope(WireModel):
    success: bool
    batches: list[Batch] = Field(default_factory=list)


class SubmissionsEnvelope(WireModel):
    success: bool
    submissions: list[SubmissionRecord] = Field(default_factory=list)


class SubmissionEnvelope(WireModel):
    success: bool
    submission: SubmissionRecord


class QueryRequest(WireModel):
    xml_request: str
    ws_url: Optional[str] = None


class RegistryQuery(WireModel):
    """One logged registry query and, once answered, its outcome."""

    id: str
    query_type: str
    query_name: str
    num_nit_empresa: Optional[str] = None
    num_id_tercero: Optional[str] = None
    xml_request: str
    xml_response: Optional[str] = None
    response_data: Optional[dict[str, Any]] = None
    status: SubmissionStatus = SubmissionStatus.PROCESSING
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    created_at: Optional[datetime] = None


class QueryExecuteRequest(WireModel):
    query_type: str
    query_name: str
    num_nit_empresa: Optional[str] = None
    num_id_tercero: Optional[str] = None
    xml_request: str
    ws_url: Optional[str] = None


class RegistryAnswer(WireModel):
    success: bool
    code: str
    message: str
    raw_xml: Optional[str] = None


class QueryExecuteResponse(WireModel):
    success: bool
    query: RegistryQuery
    response: RegistryAnswer


class QueryListEnvelope(WireModel):
    success: bool
    queries: list[RegistryQuery] = Field(default_factory=list)


class QueryEnvelope(WireModel):
    success: bool
    query: RegistryQuery


class SingleSubmitRequest(WireModel):
    submission: SubmissionRecord
    ws_url: Optional[str] = None


class SingleSubmitResponse(WireModel):
    success: bool
    batch_id: str
    submission_id: str
    response: RegistryAnswer


class ImportPreviewRow(WireModel):
    row_index: int
    row_key: str
    event_start: str = ""
    event_end: str = ""


class ImportResponse(WireModel):
    success: bool
    kind: OperationKind
    records: list[SubmissionRecord] = Field(default_factory=list)
    preview: list[ImportPreviewRow] = Field(default_factory=list)
