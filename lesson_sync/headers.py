"""Header resolution for the schedule, ledger and configuration tables.

Column positions are never hard-coded. Each logical field has a
prioritized tuple of accepted header names; the first one present in the
table wins. Legacy Chinese headers are kept so that spreadsheets set up
for the original add-on keep working.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

Synonyms = Mapping[str, Tuple[str, ...]]

RECORD_ID_HEADER = "Record ID"

SOURCE_HEADERS: Synonyms = {
    "record_id": (RECORD_ID_HEADER, "RecordID", "记录ID"),
    "lesson_number": ("Lesson", "Lesson Number", "Lesson No", "课次", "课程次数"),
    "date": ("Date", "Lesson Date", "日期", "课程日期"),
    "title": ("Title", "Topic", "Course", "课程内容/主题", "课程内容", "主题"),
    "teacher_name": ("Teacher", "Teacher Name", "老师"),
    "student_name": ("Student", "Student Name", "学生"),
    "start_time": ("Start Time", "Start", "开始时间"),
    "end_time": ("End Time", "End", "结束时间"),
}

LEDGER_HEADERS: Synonyms = {
    "record_id": (RECORD_ID_HEADER, "RecordID", "记录ID", "ID"),
    "lesson_number": ("Lesson", "Lesson Number", "课次", "课程次数"),
    "date": ("Date", "日期", "课程日期"),
    "fingerprint": ("Token", "Fingerprint", "令牌", "哈希"),
    "teacher_email_status": ("Teacher Email Status", "老师邮件状态", "老师邮件"),
    "teacher_email_time": ("Teacher Email Time", "老师邮件发送时间", "老师邮件时间"),
    "teacher_calendar_id": ("Teacher Calendar ID", "老师日历ID", "老师日历"),
    "teacher_event_id": ("Teacher Event ID", "老师日历事件ID", "老师事件ID"),
    "teacher_event_time": ("Teacher Event Time", "老师日历创建时间", "老师事件时间"),
    "student_email_status": ("Student Email Status", "学生邮件状态", "学生邮件"),
    "student_email_time": ("Student Email Time", "学生邮件发送时间", "学生邮件时间"),
    "student_calendar_id": ("Student Calendar ID", "学生日历ID", "学生日历"),
    "student_event_id": ("Student Event ID", "学生日历事件ID", "学生事件ID"),
    "student_event_time": ("Student Event Time", "学生日历创建时间", "学生事件时间"),
    "status": ("Status", "处理状态", "状态"),
    "updated_at": ("Last Updated", "Last Update Time", "最后更新时间", "更新时间"),
}

# Header row written when a ledger is created; order matches LEDGER_HEADERS.
LEDGER_COLUMNS: Tuple[str, ...] = tuple(names[0] for names in LEDGER_HEADERS.values())

CONFIG_HEADERS: Synonyms = {
    "sheet_name": ("Sheet Name", "Sheet", "Name", "Tab Name", "Sheet名称", "名称", "表名", "工作表名称", "工作表"),
    "enabled": ("Enabled", "Enable", "Active", "启用状态", "启用", "是否启用", "状态", "Status"),
    "teacher_calendar_id": ("Teacher Calendar ID", "TeacherCalendarId", "老师日历授权ID", "老师日历ID"),
    "student_calendar_id": ("Student Calendar ID", "StudentCalendarId", "学生日历授权ID", "学生日历ID"),
    "teacher_email": ("Teacher Email", "TeacherEmail", "老师邮箱", "老师Email", "老师邮件"),
    "student_email": ("Student Email", "StudentEmail", "学生邮箱", "学生Email", "学生邮件"),
    "timezone": ("Timezone", "Time Zone", "TZ", "时区"),
    "reminder_minutes": ("Reminder Minutes", "Reminder", "Minutes Before", "Email Reminder", "提醒时间", "提醒", "提前提醒", "邮件提醒"),
}

_WHITESPACE = re.compile(r"\s+")


def normalize_header(text: object) -> str:
    return _WHITESPACE.sub(" ", str(text or "")).strip().lower()


@dataclass
class HeaderMap:
    """Resolved positions of logical fields in one table's header row."""

    columns: Dict[str, int] = field(default_factory=dict)
    width: int = 0

    def index(self, name: str) -> Optional[int]:
        return self.columns.get(name)

    def has(self, name: str) -> bool:
        return name in self.columns

    def value(self, row: Sequence[object], name: str) -> str:
        col = self.columns.get(name)
        if col is None or col >= len(row):
            return ""
        cell = row[col]
        return "" if cell is None else str(cell).strip()

    def missing(self, names: Iterable[str]) -> List[str]:
        return [name for name in names if name not in self.columns]


def resolve_headers(header_row: Sequence[object], synonyms: Synonyms) -> HeaderMap:
    positions: Dict[str, int] = {}
    for index, header in enumerate(header_row):
        key = normalize_header(header)
        if key and key not in positions:
            positions[key] = index

    resolved = HeaderMap(width=len(header_row))
    for name, candidates in synonyms.items():
        for candidate in candidates:
            col = positions.get(normalize_header(candidate))
            if col is not None and col not in resolved.columns.values():
                resolved.columns[name] = col
                break
    return resolved
