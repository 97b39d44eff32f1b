"""
Date/time decoding for spreadsheet cells.

Cells arrive as spreadsheet serial numbers (days since 1899-12-30, the fraction being the
time of day), as locale-formatted strings, or as datetime objects when openpyxl recognised
the cell format. Everything is normalized to the registry's "DD/MM/YYYY" + "HH:MM" pair.
Bad input never raises: the affected component falls back and the result is flagged degraded.
"""

from __future__ import annotations

import logging
import math
import numbers
import re
import warnings
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

import pandas as pd

from rndc_bridge.domain.models import NormalizedDateTime

logger = logging.getLogger(__name__)

EXCEL_UNIX_EPOCH_SERIAL = 25569  # serial value of 1970-01-01
UNIX_EPOCH = date(1970, 1, 1)
MINUTES_PER_DAY = 24 * 60

_DATE_SEPARATORS = re.compile(r"[-/]")
_NUMERIC_TEXT = re.compile(r"^-?\d+(?:[.,]\d+)?$")


def decode(
    date_cell: Any,
    time_cell: Any,
    offset_minutes: int = 0,
    *,
    now: Optional[datetime] = None,
) -> NormalizedDateTime:
    current = now or datetime.now()
    degraded = False

    day = _decode_date(date_cell)
    if day is None:
        base = current.replace(second=0, microsecond=0)
        degraded = True
    else:
        base = datetime.combine(day, time())

    hours_minutes = _decode_time(time_cell)
    if hours_minutes is None:
        degraded = True
    else:
        hours, minutes = hours_minutes
        base = base.replace(hour=hours, minute=minutes)

    try:
        instant = base + timedelta(minutes=offset_minutes)
    except OverflowError:
        # clamped to the calendar edge
        instant = (datetime.max if offset_minutes > 0 else datetime.min).replace(second=0, microsecond=0)
        degraded = True

    if degraded:
        logger.debug(
            "date/time cell degraded",
            extra={"date_cell": repr(date_cell), "time_cell": repr(time_cell), "offset": offset_minutes},
        )

    return NormalizedDateTime(
        date=f"{instant.day:02d}/{instant.month:02d}/{instant.year:04d}",
        time=f"{instant.hour:02d}:{instant.minute:02d}",
        degraded=degraded,
    )


def decode_display(date_cell: Any, time_cell: Any, *, now: Optional[datetime] = None) -> str:
    """Human readable "DD/MM/YYYY HH:MM" for table previews."""
    return decode(date_cell, time_cell, now=now).display


def serial_to_date(serial: float) -> date:
    return UNIX_EPOCH + timedelta(days=math.floor(serial) - EXCEL_UNIX_EPOCH_SERIAL)


def fraction_to_hours_minutes(fraction: float) -> tuple[int, int]:
    # Half-up rounding to the nearest minute, as spreadsheet tools do.
    total = math.floor(fraction * MINUTES_PER_DAY + 0.5)
    return (total // 60) % 24, total % 60


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(float(value))


def _decode_date(cell: Any) -> Optional[date]:
    if cell is None:
        return None
    if isinstance(cell, datetime):
        return cell.date()
    if isinstance(cell, date):
        return cell
    if _is_number(cell):
        return _safe_serial(float(cell))
    if not isinstance(cell, str):
        return None

    text = cell.strip()
    if not text:
        return None

    parts = _DATE_SEPARATORS.split(text)
    if len(parts) == 3:
        try:
            if len(parts[2]) == 4:
                return date(int(parts[2]), int(parts[1]), int(parts[0]))
            if len(parts[0]) == 4:
                return date(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            pass

    return _parse_generic_date(text)


def _parse_generic_date(text: str) -> Optional[date]:
    if _NUMERIC_TEXT.match(text):
        return _safe_serial(float(text.replace(",", ".")))
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            parsed = pd.to_datetime(text, dayfirst=True, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


def _safe_serial(serial: float) -> Optional[date]:
    try:
        return serial_to_date(serial)
    except (OverflowError, ValueError):
        return None


def _safe_fraction(fraction: float) -> Optional[tuple[int, int]]:
    try:
        return fraction_to_hours_minutes(fraction)
    except (OverflowError, ValueError):
        return None


def _decode_time(cell: Any) -> Optional[tuple[int, int]]:
    if cell is None:
        return None
    if isinstance(cell, (datetime, time)):
        return cell.hour, cell.minute
    if isinstance(cell, timedelta):
        minutes = int(cell.total_seconds() // 60)
        return (minutes // 60) % 24, minutes % 60
    if _is_number(cell):
        return _safe_fraction(float(cell))
    if not isinstance(cell, str):
        return None

    text = cell.strip()
    if not text:
        return None
    if _NUMERIC_TEXT.match(text):
        return _safe_fraction(float(text.replace(",", ".")))

    parts = text.split(":")
    if len(parts) < 2:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours, minutes
