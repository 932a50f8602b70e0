"""
Shared fixtures: an in-memory spreadsheet, a fake calendar provider and a
recording notifier, so whole sync runs can be exercised without network.
"""

from __future__ import annotations

import copy
import itertools
from typing import Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import pytest

from lesson_sync.config import RateLimit, Settings, TableConfig
from lesson_sync.errors import EventNotFoundError
from lesson_sync.headers import RECORD_ID_HEADER, SOURCE_HEADERS, resolve_headers
from lesson_sync.models import Lesson
from lesson_sync.orchestrator import Orchestrator
from lesson_sync.schedule import parse_lesson
from lesson_sync.store import InMemoryStore

TZ = ZoneInfo("Asia/Shanghai")
TABLE = "Tom"
LEDGER = "_StatusLog_Tom"
TEACHER = "teacher@example.com"
STUDENT = "student@example.com"
NOW = "2025-11-01 09:00:00"

SOURCE_HEADER = ["Lesson", "Date", "Title", "Teacher", "Student", "Start Time", "End Time"]


def lesson_row(number: str, day: str, start: str = "10:00", end: str = "11:00", title: str = "") -> List[str]:
    return [number, day, title or f"Algebra {number}", "Ms Li", "Tom", start, end]


def make_lesson(row_index: int, number: str, day: str, record_id: str, config: TableConfig, **kwargs) -> Lesson:
    headers = resolve_headers(SOURCE_HEADER + [RECORD_ID_HEADER], SOURCE_HEADERS)
    return parse_lesson(lesson_row(number, day, **kwargs) + [record_id], row_index, headers, config)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeCalendar:
    """Calendar provider keeping events in a dict keyed by (calendar, id)."""

    def __init__(self) -> None:
        self.events: Dict[Tuple[str, str], dict] = {}
        self.calls: List[Tuple[str, str, str]] = []
        # (op, calendar, event id) -> notify flag of the last such call
        self.notify: Dict[Tuple[str, str, str], bool] = {}
        self.failures: Dict[str, List[Exception]] = {"create": [], "update": [], "get": [], "delete": []}
        self.broken: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    def _maybe_fail(self, op: str, calendar_id: str) -> None:
        if self.failures[op]:
            raise self.failures[op].pop(0)
        if op != "get" and calendar_id in self.broken:
            raise self.broken[calendar_id]

    def create_event(self, calendar_id: str, body: dict, notify: bool = True) -> str:
        self._maybe_fail("create", calendar_id)
        event_id = f"evt{next(self._ids)}"
        self.events[(calendar_id, event_id)] = copy.deepcopy(body)
        self.calls.append(("create", calendar_id, event_id))
        self.notify[("create", calendar_id, event_id)] = notify
        return event_id

    def update_event(self, calendar_id: str, event_id: str, body: dict, notify: bool = True) -> None:
        self._maybe_fail("update", calendar_id)
        if (calendar_id, event_id) not in self.events:
            raise EventNotFoundError(f"{event_id} not found")
        self.events[(calendar_id, event_id)].update(copy.deepcopy(body))
        self.calls.append(("update", calendar_id, event_id))
        self.notify[("update", calendar_id, event_id)] = notify

    def get_event(self, calendar_id: str, event_id: str) -> Optional[dict]:
        self._maybe_fail("get", calendar_id)
        self.calls.append(("get", calendar_id, event_id))
        event = self.events.get((calendar_id, event_id))
        return copy.deepcopy(event) if event is not None else None

    def delete_event(self, calendar_id: str, event_id: str, notify: bool = True) -> None:
        self._maybe_fail("delete", calendar_id)
        if (calendar_id, event_id) not in self.events:
            raise EventNotFoundError(f"{event_id} not found")
        del self.events[(calendar_id, event_id)]
        self.calls.append(("delete", calendar_id, event_id))
        self.notify[("delete", calendar_id, event_id)] = notify

    def remove(self, calendar_id: str, event_id: str) -> None:
        """Delete an event behind the sync's back."""
        del self.events[(calendar_id, event_id)]

    def mutations(self) -> List[Tuple[str, str, str]]:
        return [call for call in self.calls if call[0] != "get"]

    def events_for(self, record_id: str) -> List[Tuple[str, str]]:
        return [
            key
            for key, body in self.events.items()
            if body.get("extendedProperties", {}).get("private", {}).get("record_id") == record_id
        ]


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str]] = []
        self.fail_for: set = set()

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        if to in self.fail_for:
            raise RuntimeError(f"mailbox {to} unavailable")
        self.sent.append((to, subject, html_body))

    def subjects(self) -> List[str]:
        return [subject for _, subject, _ in self.sent]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def rate_limit() -> RateLimit:
    return RateLimit(operation_delay=0, max_retries=3, retry_delay=0)


@pytest.fixture()
def settings(rate_limit: RateLimit) -> Settings:
    return Settings(
        spreadsheet_id="sheet-1",
        timezone=TZ,
        google_client_secrets="",
        google_token_file="",
        rate_limit=rate_limit,
    )


@pytest.fixture()
def table_config() -> TableConfig:
    return TableConfig(
        name=TABLE,
        timezone=TZ,
        teacher_calendar_id=TEACHER,
        student_calendar_id=STUDENT,
        teacher_email=TEACHER,
        student_email=STUDENT,
    )


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore(
        {
            TABLE: [
                SOURCE_HEADER,
                lesson_row("1", "2025-11-20"),
                lesson_row("2", "2025-11-27"),
            ]
        }
    )


@pytest.fixture()
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def id_factory() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"REC_{next(counter)}"


@pytest.fixture()
def make_orchestrator(store, calendar, notifier, settings, id_factory):
    def make(dry_run: bool = False) -> Orchestrator:
        return Orchestrator(
            store,
            calendar,
            notifier,
            settings,
            dry_run=dry_run,
            id_factory=id_factory,
            now=lambda: NOW,
            sleep=lambda seconds: None,
        )

    return make
