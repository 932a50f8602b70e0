from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d", "%Y年%m月%d日", "%d.%m.%Y", "%m/%d/%Y")
_TIME_REGEX = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([ap]\.?m\.?)?$", re.IGNORECASE)
# Spreadsheet serial dates count days from 1899-12-30.
_SERIAL_EPOCH = date(1899, 12, 30)


def parse_date(value: str) -> date:
    text = (value or "").strip()
    if not text:
        raise ValueError("empty date")
    # "2025-11-20 00:00:00" and ISO timestamps keep only the date part
    head = text.split("T", 1)[0].split(" ", 1)[0] if not text.endswith("日") else text
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(head, fmt).date()
        except ValueError:
            continue
    try:
        serial = float(text)
    except ValueError:
        raise ValueError(f"Cannot parse date from '{value}'") from None
    if serial <= 0:
        raise ValueError(f"Cannot parse date from '{value}'")
    return _SERIAL_EPOCH + timedelta(days=int(serial))


def parse_time(value: str) -> Tuple[int, int]:
    text = (value or "").strip()
    if not text:
        raise ValueError("empty time")
    match = _TIME_REGEX.match(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        meridiem = (match.group(4) or "").replace(".", "").lower()
        if meridiem == "pm" and hour < 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
    else:
        try:
            fraction = float(text)
        except ValueError:
            raise ValueError(f"Cannot parse time from '{value}'") from None
        if fraction < 0 or (fraction >= 1 and fraction.is_integer()):
            raise ValueError(f"Cannot parse time from '{value}'")
        # fraction of a day, as spreadsheets store times
        total_minutes = round((fraction % 1) * 24 * 60)
        hour, minute = divmod(total_minutes, 60)
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Time out of range: '{value}'")
    return hour, minute


def format_time(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def build_datetime(day: date, time_str: str, tz: ZoneInfo) -> datetime:
    hour, minute = parse_time(time_str)
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)


def now_str(tz: Optional[ZoneInfo] = None) -> str:
    return datetime.now(tz).strftime(TIMESTAMP_FORMAT)


def parse_bool(value: str) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "y", "on", "enabled", "是", "启用"}
