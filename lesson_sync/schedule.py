from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .config import TableConfig
from .errors import ConfigurationError, DataError
from .fingerprint import compute_fingerprint
from .headers import RECORD_ID_HEADER, SOURCE_HEADERS, HeaderMap, resolve_headers
from .models import Lesson
from .store import TabularStore
from .utils import build_datetime, parse_date

REQUIRED_COLUMNS = ("date", "start_time", "end_time")


@dataclass
class Schedule:
    table: str
    headers: HeaderMap
    lessons: List[Lesson] = field(default_factory=list)
    row_count: int = 0
    # record id -> row index, for rows skipped because of data errors
    held: Dict[str, int] = field(default_factory=dict)
    invalid: int = 0

    @property
    def record_id_col(self) -> int:
        col = self.headers.index("record_id")
        if col is None:
            raise ConfigurationError(f"{self.table} has no {RECORD_ID_HEADER} column")
        return col


def ensure_identity_column(store: TabularStore, table: str) -> int:
    rows = store.read_table(table)
    if not rows:
        raise ConfigurationError(f"{table} has no header row")
    headers = resolve_headers(rows[0], SOURCE_HEADERS)
    col = headers.index("record_id")
    if col is not None:
        return col
    return store.ensure_column(table, RECORD_ID_HEADER)


def parse_lesson(row: Sequence[str], row_index: int, headers: HeaderMap, config: TableConfig) -> Lesson:
    date_text = headers.value(row, "date")
    start_text = headers.value(row, "start_time")
    end_text = headers.value(row, "end_time")
    if not date_text:
        raise DataError(row_index, "missing date")
    if not start_text or not end_text:
        raise DataError(row_index, "missing start or end time")
    try:
        day = parse_date(date_text)
        start = build_datetime(day, start_text, config.timezone)
        end = build_datetime(day, end_text, config.timezone)
    except ValueError as exc:
        raise DataError(row_index, str(exc)) from exc
    if end <= start:
        raise DataError(row_index, f"end time {end_text} is not after start time {start_text}")

    lesson_number = headers.value(row, "lesson_number")
    lesson = Lesson(
        row_index=row_index,
        record_id=headers.value(row, "record_id"),
        lesson_number=lesson_number,
        date=day,
        start=start,
        end=end,
        title=headers.value(row, "title"),
        teacher_name=headers.value(row, "teacher_name"),
        student_name=headers.value(row, "student_name"),
        teacher_email=config.teacher_email,
        student_email=config.student_email,
    )
    lesson.fingerprint = compute_fingerprint(lesson)
    return lesson


def read_schedule(store: TabularStore, config: TableConfig) -> Schedule:
    """Read every valid lesson of a schedule table.

    Rows with data errors are logged and left out; their record ids are
    kept in ``held`` so their ledger entries are not mistaken for deletions.
    """
    if not config.teacher_email or not config.student_email:
        raise ConfigurationError(f"{config.name}: teacher and student addresses must both be configured")
    if not config.targets():
        raise ConfigurationError(f"{config.name}: no calendar configured")

    rows = store.read_table(config.name)
    if not rows:
        raise ConfigurationError(f"{config.name} has no header row")
    headers = resolve_headers(rows[0], SOURCE_HEADERS)
    missing = headers.missing(REQUIRED_COLUMNS)
    if missing:
        raise ConfigurationError(f"{config.name} is missing column(s): {', '.join(missing)}")

    schedule = Schedule(table=config.name, headers=headers, row_count=len(rows) - 1)
    for index, row in enumerate(rows[1:]):
        if not any(str(cell).strip() for cell in row):
            continue
        try:
            schedule.lessons.append(parse_lesson(row, index, headers, config))
        except DataError as exc:
            logging.warning("[%s] Skipping %s", config.name, exc)
            schedule.invalid += 1
            record_id = headers.value(row, "record_id")
            if record_id:
                schedule.held.setdefault(record_id, index)

    logging.info(
        "[%s] Read %d lesson(s) from %d row(s), %d invalid",
        config.name,
        len(schedule.lessons),
        schedule.row_count,
        schedule.invalid,
    )
    return schedule
