from datetime import date, datetime, time, timedelta

import pytest

from rndc_bridge.data.temporal import (
    decode,
    decode_display,
    fraction_to_hours_minutes,
    serial_to_date,
)

NOW = datetime(2024, 5, 6, 7, 8)


@pytest.mark.parametrize("serial", [25569, 36526, 45000, 45678, 47000])
def test_numeric_date_maps_to_epoch_offset(serial):
    result = decode(serial, 0)
    expected = date(1970, 1, 1) + timedelta(days=serial - 25569)
    assert result.to_datetime().date() == expected
    assert not result.degraded


def test_fractional_part_of_date_is_ignored():
    assert decode(45678.9, 0).date == "21/01/2025"
    assert serial_to_date(45678.9) == date(2025, 1, 21)


def test_example_row_time_rounds_to_eight_oclock():
    result = decode(45678, 0.333333)
    assert (result.date, result.time) == ("21/01/2025", "08:00")
    assert decode_display(45678, 0.333333) == "21/01/2025 08:00"


def test_fraction_rounding_wraps_at_midnight():
    assert fraction_to_hours_minutes(0.5) == (12, 0)
    assert fraction_to_hours_minutes(0.9999999) == (0, 0)


def test_day_first_string():
    result = decode("15/03/2024", "14:30")
    assert (result.date, result.time, result.degraded) == ("15/03/2024", "14:30", False)


def test_year_first_string_and_seconds_ignored():
    result = decode("2024-03-15", "9:05:59")
    assert (result.date, result.time) == ("15/03/2024", "09:05")


def test_datetime_objects_from_openpyxl():
    result = decode(datetime(2024, 3, 15, 10, 0), time(14, 30))
    assert (result.date, result.time) == ("15/03/2024", "14:30")


def test_numeric_text_is_read_as_serial():
    result = decode("45678", "0.5")
    assert (result.date, result.time) == ("21/01/2025", "12:00")


def test_generic_date_text():
    assert decode("15 Mar 2024", "06:00").date == "15/03/2024"


def test_offsets_are_additive():
    for a, b in [(0, 5), (60, 90), (90, -30), (-15, 1440)]:
        base = decode("10/06/2024", "22:10", a).to_datetime()
        shifted = decode("10/06/2024", "22:10", a + b).to_datetime()
        assert shifted - base == timedelta(minutes=b)


def test_offset_crosses_year_boundary():
    result = decode("31/12/2024", "23:30", 45)
    assert (result.date, result.time) == ("01/01/2025", "00:15")


def test_unparseable_date_falls_back_to_now():
    result = decode("not a date", "10:00", now=NOW)
    assert (result.date, result.time) == ("06/05/2024", "10:00")
    assert result.degraded


def test_missing_time_keeps_midnight_and_is_degraded():
    result = decode("15/03/2024", None)
    assert (result.date, result.time) == ("15/03/2024", "00:00")
    assert result.degraded


def test_missing_everything_uses_current_instant():
    result = decode(None, "", now=NOW)
    assert (result.date, result.time) == ("06/05/2024", "07:08")
    assert result.degraded


@pytest.mark.parametrize("bad_time", ["25:00", "10:75", "ten", True])
def test_out_of_range_time_is_degraded(bad_time):
    result = decode("15/03/2024", bad_time)
    assert result.time == "00:00"
    assert result.degraded


def test_bool_is_not_a_serial():
    assert decode(True, "10:00", now=NOW).degraded


@pytest.mark.parametrize(
    "date_cell, time_cell, offset, expected",
    [
        ("31/12/9999", "23:59", 5, ("31/12/9999", "23:59")),
        ("01/01/0001", "00:00", -5, ("01/01/0001", "00:00")),
        (2958465, 0.99, 90, ("31/12/9999", "23:59")),
    ],
)
def test_offset_past_calendar_edge_is_clamped(date_cell, time_cell, offset, expected):
    result = decode(date_cell, time_cell, offset)
    assert (result.date, result.time) == expected
    assert result.degraded


@pytest.mark.parametrize("huge", [1e306, "1" * 400])
def test_huge_time_value_is_degraded(huge):
    result = decode("15/03/2024", huge)
    assert (result.date, result.time) == ("15/03/2024", "00:00")
    assert result.degraded
