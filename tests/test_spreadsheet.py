from datetime import datetime

import pytest
from openpyxl import Workbook

from rndc_bridge.data.spreadsheet import SpreadsheetAdapter
from rndc_bridge.exceptions import DataSourceError


def _write_xlsx(path, rows, extra_sheet=False):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    if extra_sheet:
        wb.create_sheet("Otra").append(["IGNORADA"])
    wb.save(path)
    return path


def test_reads_first_sheet_with_normalized_headers(tmp_path):
    path = _write_xlsx(
        tmp_path / "remesas.xlsx",
        [
            [" consecutivoRemesa ", "FechaLlegadaCargue", "HORALLEGADACARGUE", None],
            ["112", 45678, 0.333333, None],
            [None, None, None, None],
            [" 113 ", datetime(2025, 1, 22, 0, 0), "07:30", None],
        ],
        extra_sheet=True,
    )
    rows = SpreadsheetAdapter.load(path)

    assert len(rows) == 2
    assert rows[0] == {"CONSECUTIVOREMESA": "112", "FECHALLEGADACARGUE": 45678, "HORALLEGADACARGUE": 0.333333}
    assert rows[1]["CONSECUTIVOREMESA"] == "113"
    assert rows[1]["FECHALLEGADACARGUE"] == datetime(2025, 1, 22, 0, 0)


def test_reads_csv_bytes_as_text():
    content = b"NUMMANIFIESTOCARGA,FECHALLEGADADESCARGUE\n00901,20/06/2024\n\n"
    rows = SpreadsheetAdapter.load(content, filename="manifiestos.csv")
    assert rows == [{"NUMMANIFIESTOCARGA": "00901", "FECHALLEGADADESCARGUE": "20/06/2024"}]


def test_empty_csv_is_rejected():
    with pytest.raises(DataSourceError):
        SpreadsheetAdapter.load(b"", filename="vacio.csv")


def test_blank_header_is_rejected():
    with pytest.raises(DataSourceError):
        SpreadsheetAdapter.load(b" , \n1,2\n", filename="sin_encabezado.csv")


def test_unsupported_type_and_missing_file(tmp_path):
    with pytest.raises(DataSourceError):
        SpreadsheetAdapter.load(b"data", filename="notas.txt")
    with pytest.raises(DataSourceError):
        SpreadsheetAdapter.load(tmp_path / "no_existe.xlsx")
