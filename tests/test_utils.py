"""
tests/test_utils.py

Date, time and flag parsing for spreadsheet cell values.
"""

from __future__ import annotations

from datetime import date, datetime

import pytest

from lesson_sync.utils import build_datetime, format_time, parse_bool, parse_date, parse_time
from tests.conftest import TZ


class TestParseDate:
    @pytest.mark.parametrize(
        "text",
        ["2025-11-20", "2025/11/20", "2025.11.20", "2025年11月20日", "20.11.2025", "11/20/2025", "2025-11-20 00:00:00"],
    )
    def test_accepted_formats(self, text: str) -> None:
        assert parse_date(text) == date(2025, 11, 20)

    def test_spreadsheet_serial_number(self) -> None:
        assert parse_date("45000") == date(2023, 3, 15)

    @pytest.mark.parametrize("text", ["", "tomorrow", "2025-13-40", "-3"])
    def test_rejects_garbage(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_date(text)


class TestParseTime:
    def test_hours_and_minutes(self) -> None:
        assert parse_time("9:05") == (9, 5)
        assert parse_time("18:30:00") == (18, 30)

    def test_meridiem(self) -> None:
        assert parse_time("2:30 pm") == (14, 30)
        assert parse_time("12:00 AM") == (0, 0)

    def test_day_fraction(self) -> None:
        assert parse_time("0.5") == (12, 0)
        assert parse_time("0.375") == (9, 0)

    @pytest.mark.parametrize("text", ["", "25:00", "10:75", "3", "noon"])
    def test_rejects_invalid(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_time(text)


def test_format_time_pads() -> None:
    assert format_time(9, 5) == "09:05"


def test_build_datetime_is_timezone_aware() -> None:
    result = build_datetime(date(2025, 11, 20), "10:00", TZ)
    assert result == datetime(2025, 11, 20, 10, 0, tzinfo=TZ)
    assert result.utcoffset().total_seconds() == 8 * 3600


@pytest.mark.parametrize("text,expected", [("TRUE", True), ("yes", True), ("是", True), ("启用", True), ("", False), ("no", False), ("0", False)])
def test_parse_bool(text: str, expected: bool) -> None:
    assert parse_bool(text) is expected
