import io
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from rndc_bridge.batch.tracker import BatchTracker
from rndc_bridge.config import settings
from rndc_bridge.domain.models import Batch, OperationKind, SubmissionRecord, SubmissionStatus
from rndc_bridge.exceptions import BatchNotFoundError

Column = tuple[str, Callable[[SubmissionRecord], object]]

STATUS_LABELS = {SubmissionStatus.SUCCESS: "Exitoso", SubmissionStatus.ERROR: "Error"}


def _start_date(s: SubmissionRecord) -> str:
    return s.event_start.date if s.event_start else ""


def _start_time(s: SubmissionRecord) -> str:
    return s.event_start.time if s.event_start else ""


def _end_date(s: SubmissionRecord) -> str:
    return s.event_end.date if s.event_end else ""


def _end_time(s: SubmissionRecord) -> str:
    return s.event_end.time if s.event_end else ""


def _processed(s: SubmissionRecord) -> str:
    return s.processed_at.strftime("%d/%m/%Y %H:%M:%S") if s.processed_at else ""


RESULT_COLUMNS: list[Column] = [
    ("Estado", lambda s: STATUS_LABELS.get(s.status, s.status.value)),
    ("Código Respuesta", lambda s: s.response_code or ""),
    ("Mensaje Respuesta", lambda s: s.response_message or ""),
    ("Fecha Procesamiento", _processed),
    ("XML Enviado", lambda s: s.xml_request or ""),
    ("XML Respuesta", lambda s: s.xml_response or ""),
]

KIND_COLUMNS: dict[OperationKind, list[Column]] = {
    OperationKind.POSITION_REPORT: [
        ("Manifiesto", lambda s: s.ingreso_id_manifiesto),
        ("Punto Control", lambda s: s.cod_punto_control),
        ("GPS", lambda s: s.num_id_gps),
        ("Placa", lambda s: s.num_placa),
        ("Fecha Llegada", _start_date),
        ("Hora Llegada", _start_time),
        ("Fecha Salida", _end_date),
        ("Hora Salida", _end_time),
    ],
    OperationKind.SHIPMENT_COMPLETION: [
        ("Consecutivo Remesa", lambda s: s.consecutivo_remesa),
        ("NIT Empresa", lambda s: s.num_nit_empresa),
        ("Placa", lambda s: s.num_placa),
        ("Origen", lambda s: s.origen),
        ("Destino", lambda s: s.destino),
        ("Cantidad Cargada", lambda s: s.cantidad_cargada),
        ("Cantidad Entregada", lambda s: s.cantidad_entregada),
        ("Fecha Entrada Cargue", _start_date),
        ("Hora Entrada Cargue", _start_time),
    ],
    OperationKind.MANIFEST_COMPLETION: [
        ("Manifiesto", lambda s: s.num_manifiesto_carga),
        ("NIT Empresa", lambda s: s.num_nit_empresa),
        ("Placa", lambda s: s.num_placa),
        ("Origen", lambda s: s.origen),
        ("Destino", lambda s: s.destino),
        ("Fecha Entrega Docs", _end_date),
    ],
}

SHEET_TITLES = {
    OperationKind.POSITION_REPORT: "Puntos de Control",
    OperationKind.SHIPMENT_COMPLETION: "Cumplidos Remesa",
    OperationKind.MANIFEST_COMPLETION: "Cumplidos Manifiesto",
}


class ResultsExporter:
    """
    Writes the per-record outcome of a batch to an Excel workbook, one row per submission.
    """

    def __init__(self, tracker: BatchTracker, output_dir: Optional[Path] = None):
        self.tracker = tracker
        self.output_dir = Path(output_dir or settings.paths.output_dir)

    def export_batch(self, batch_id: str) -> bytes:
        batch, submissions = self._load(batch_id)
        kind = OperationKind.from_batch_type(batch.type)
        columns = KIND_COLUMNS[kind] + RESULT_COLUMNS

        wb = Workbook()
        ws = wb.active
        ws.title = SHEET_TITLES[kind]
        ws.append([header for header, _ in columns])
        for cell in ws[1]:
            cell.font = Font(bold=True)
        for submission in submissions:
            ws.append([_cell_value(getter(submission)) for _, getter in columns])
        _autosize(ws)

        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    def save_batch(self, batch_id: str) -> Path:
        batch, _ = self._load(batch_id)
        content = self.export_batch(batch_id)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / self.filename(batch)
        path.write_bytes(content)
        return path

    @staticmethod
    def filename(batch: Batch, now: Optional[datetime] = None) -> str:
        stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H%M")
        return f"{batch.type}_{stamp}_{batch.id[:8]}.xlsx"

    def _load(self, batch_id: str) -> tuple[Batch, list[SubmissionRecord]]:
        batch = self.tracker.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Lote {batch_id} no encontrado")
        return batch, self.tracker.list_submissions(batch_id)


def _cell_value(value: object) -> object:
    return "" if value is None else value


def _autosize(ws):
    for column_cells in ws.columns:
        length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column_cells)
        ws.column_dimensions[get_column_letter(column_cells[0].column)].width = min(max(length + 2, 12), 60)
