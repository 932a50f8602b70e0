from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

MANAGED_BY = "lesson_sync"
ROLES = ("teacher", "student")


class RowStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial-failure"
    FAILED = "failed"

    @classmethod
    def parse(cls, text: str) -> Optional["RowStatus"]:
        text = (text or "").strip().lower()
        if not text:
            return None
        for status in cls:
            if status.value == text:
                return status
        return LEGACY_STATUS.get(text)


LEGACY_STATUS = {
    "已完成": RowStatus.COMPLETED,
    "部分失败": RowStatus.PARTIAL_FAILURE,
    "失败": RowStatus.FAILED,
    "处理中": RowStatus.PENDING,
}

NOTICE_SENT = "sent"
NOTICE_NOT_SENT = "not sent"
NOTICE_SKIPPED = "skipped"

# Text that can never be a real event id; seen in ledgers where status
# values were written into id columns.
STATUS_LABELS = frozenset(
    [s.value for s in RowStatus]
    + list(LEGACY_STATUS)
    + [NOTICE_SENT, NOTICE_NOT_SENT, NOTICE_SKIPPED, "已发送", "未发送"]
)


@dataclass
class Lesson:
    row_index: int
    record_id: str
    lesson_number: str
    date: date
    start: datetime
    end: datetime
    title: str
    teacher_name: str
    student_name: str
    teacher_email: str
    student_email: str
    fingerprint: str = ""

    @property
    def natural_key(self) -> str:
        return natural_key(self.lesson_number, self.date.isoformat())

    @property
    def display_title(self) -> str:
        return self.title or f"Lesson {self.lesson_number}".strip()

    def email_for(self, role: str) -> str:
        return self.teacher_email if role == "teacher" else self.student_email

    def name_for(self, role: str) -> str:
        return self.teacher_name if role == "teacher" else self.student_name

    def to_gcal_body(self, reminder_minutes: Optional[int] = None) -> dict:
        description = "\n".join(
            [
                f"Course: {self.display_title}",
                f"Teacher: {self.teacher_name}",
                f"Student: {self.student_name}",
                f"Lesson: {self.lesson_number}",
            ]
        )
        tz_name = getattr(self.start.tzinfo, "key", None)
        start = {"dateTime": self.start.isoformat()}
        end = {"dateTime": self.end.isoformat()}
        if tz_name:
            start["timeZone"] = tz_name
            end["timeZone"] = tz_name
        body = {
            "summary": self.display_title,
            "status": "confirmed",
            "description": description,
            "start": start,
            "end": end,
            "attendees": [{"email": email} for email in (self.teacher_email, self.student_email) if email],
            "extendedProperties": {
                "private": {
                    "managed_by": MANAGED_BY,
                    "record_id": self.record_id,
                }
            },
        }
        if reminder_minutes:
            body["reminders"] = {
                "useDefault": False,
                "overrides": [{"method": "email", "minutes": reminder_minutes}],
            }
        else:
            body["reminders"] = {"useDefault": False, "overrides": []}
        return body


def natural_key(lesson_number: str, date_text: str) -> str:
    return f"{lesson_number}_{date_text}"


@dataclass
class Binding:
    role: str
    calendar_id: str
    event_id: str
    created_at: str = ""


@dataclass
class Notice:
    status: str = ""
    sent_at: str = ""


@dataclass
class LedgerEntry:
    record_id: str = ""
    lesson_number: str = ""
    date: str = ""
    fingerprint: str = ""
    bindings: Dict[str, Binding] = field(default_factory=dict)
    notices: Dict[str, Notice] = field(default_factory=dict)
    status: Optional[RowStatus] = None
    updated_at: str = ""
    row_index: Optional[int] = None

    @property
    def natural_key(self) -> str:
        return natural_key(self.lesson_number, self.date)

    def is_blank(self) -> bool:
        return not (self.record_id or self.lesson_number or self.date)

    def binding(self, role: str) -> Optional[Binding]:
        bound = self.bindings.get(role)
        if bound and bound.event_id:
            return bound
        return None

    def bound(self) -> List[Binding]:
        return [b for b in self.bindings.values() if b.event_id]

    def notice(self, role: str) -> Notice:
        return self.notices.get(role) or Notice()


class Classification(str, Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED_VERIFIED = "unchanged-verified"
    UNCHANGED_STALE = "unchanged-stale"
    RETRY = "retry"
    TERMINAL_SKIP = "terminal-skip"
    DELETED = "deleted"
    SUPERSEDED = "superseded"
    DUPLICATE = "duplicate"

    @property
    def is_skip(self) -> bool:
        return self in (Classification.UNCHANGED_VERIFIED, Classification.TERMINAL_SKIP)

    @property
    def is_teardown(self) -> bool:
        return self in (Classification.DELETED, Classification.SUPERSEDED)

    @property
    def notifies(self) -> bool:
        return self in (Classification.NEW, Classification.CHANGED)


@dataclass
class PlanItem:
    classification: Classification
    lesson: Optional[Lesson] = None
    entry: Optional[LedgerEntry] = None
    dead_roles: List[str] = field(default_factory=list)
    replaced_by: str = ""
    reason: str = ""
    # (calendar_id, event_id) pairs a teardown must leave alone
    retained: Set[Tuple[str, str]] = field(default_factory=set)

    @property
    def label(self) -> str:
        if self.lesson is not None:
            return f"{self.lesson.lesson_number or '?'} ({self.lesson.record_id})"
        if self.entry is not None:
            return f"{self.entry.lesson_number or '?'} ({self.entry.record_id or self.entry.natural_key})"
        return "?"


@dataclass
class SyncPlan:
    rows: List[PlanItem] = field(default_factory=list)
    teardowns: List[PlanItem] = field(default_factory=list)

    def counts(self) -> Counter:
        return Counter(item.classification.value for item in self.rows + self.teardowns)

    def actionable(self) -> List[PlanItem]:
        return [item for item in self.rows if not item.classification.is_skip]


@dataclass
class ExecutionResult:
    status: RowStatus
    bindings: Dict[str, Binding] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)


@dataclass
class TableResult:
    table: str
    success: bool = True
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    partially_failed: int = 0
    failed: int = 0
    skipped: int = 0
    deleted: int = 0
    invalid: int = 0
    error: Optional[str] = None


@dataclass
class RunSummary:
    tables: List[TableResult] = field(default_factory=list)

    @property
    def tables_succeeded(self) -> int:
        return sum(1 for t in self.tables if t.success)

    @property
    def tables_failed(self) -> int:
        return sum(1 for t in self.tables if not t.success)

    def total(self, attr: str) -> int:
        return sum(getattr(t, attr) for t in self.tables)

    @property
    def ok(self) -> bool:
        return self.tables_failed == 0 and self.total("failed") == 0
