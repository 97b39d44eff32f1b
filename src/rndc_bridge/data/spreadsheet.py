import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
from openpyxl import load_workbook

from rndc_bridge.exceptions import DataSourceError

logger = logging.getLogger(__name__)

SpreadsheetRow = Dict[str, Any]

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}
CSV_SUFFIXES = {".csv"}


class SpreadsheetAdapter:
    """
    Reads an uploaded logistics spreadsheet into plain row dicts.
    Only the first sheet is used. The first row is the header; headers are stripped and upper-cased
    so that column lookups (NUMIDGPS, CONSECUTIVOREMESA, ...) do not depend on the author's casing.
    Numeric cells are kept numeric so that serial dates survive for the temporal decoder.
    """

    @classmethod
    def load(cls, source: Union[Path, bytes], filename: Optional[str] = None) -> List[SpreadsheetRow]:
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.exists():
                raise DataSourceError(f"Input file not found: {path}")
            content = path.read_bytes()
            filename = filename or path.name
        else:
            content = source

        suffix = Path(filename or "").suffix.lower() or ".xlsx"
        if suffix in CSV_SUFFIXES:
            rows = cls._load_csv(content)
        elif suffix in EXCEL_SUFFIXES:
            rows = cls._load_excel(content)
        else:
            raise DataSourceError(f"Unsupported spreadsheet type '{suffix}'. Use .xlsx or .csv")

        logger.info("spreadsheet loaded", extra={"source_file": filename, "rows": len(rows)})
        return rows

    @classmethod
    def _load_excel(cls, content: bytes) -> List[SpreadsheetRow]:
        try:
            wb = load_workbook(io.BytesIO(content), data_only=True, read_only=True)
        except Exception as exc:
            raise DataSourceError(f"Could not open workbook: {exc}") from exc
        try:
            if not wb.worksheets:
                raise DataSourceError("Workbook has no sheets")
            ws = wb.worksheets[0]
            raw_rows = list(ws.iter_rows(values_only=True))
        finally:
            wb.close()
        return cls._rows_from_matrix(raw_rows)

    @classmethod
    def _load_csv(cls, content: bytes) -> List[SpreadsheetRow]:
        # Everything as text: ids keep their leading zeros, the decoder handles numeric text.
        try:
            df = pd.read_csv(io.BytesIO(content), header=None, dtype=str, keep_default_na=False)
        except pd.errors.EmptyDataError:
            raise DataSourceError("Spreadsheet is empty; a header row is required")
        except Exception as exc:
            raise DataSourceError(f"Could not read CSV: {exc}") from exc
        return cls._rows_from_matrix(df.values.tolist())

    @classmethod
    def _rows_from_matrix(cls, raw_rows: List[Any]) -> List[SpreadsheetRow]:
        if not raw_rows:
            raise DataSourceError("Spreadsheet is empty; a header row is required")

        headers = [cls._header(h) for h in raw_rows[0]]
        if not any(headers):
            raise DataSourceError("Header row is missing or blank")

        rows: List[SpreadsheetRow] = []
        for raw in raw_rows[1:]:
            if all(cls._is_blank(cell) for cell in raw):
                continue
            row: SpreadsheetRow = {}
            for header, value in zip(headers, raw):
                if not header:
                    continue
                row[header] = value.strip() if isinstance(value, str) else value
            rows.append(row)
        return rows

    @staticmethod
    def _header(value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip().upper()

    @staticmethod
    def _is_blank(value: Any) -> bool:
        return value is None or (isinstance(value, str) and value.strip() == "")
