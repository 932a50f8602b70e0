from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional, Set

from .ledger import LedgerSnapshot
from .models import Lesson
from .schedule import Schedule
from .store import TabularStore


def generate_record_id() -> str:
    return f"REC_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class IdentityRegistry:
    """Gives every schedule row a durable record id and writes it back."""

    def __init__(
        self,
        store: TabularStore,
        schedule: Schedule,
        snapshot: LedgerSnapshot,
        id_factory: Callable[[], str] = generate_record_id,
        persist: bool = True,
    ) -> None:
        self.store = store
        self.schedule = schedule
        self.snapshot = snapshot
        self.id_factory = id_factory
        self.persist = persist
        self.claimed: Set[str] = set(schedule.held)

    def ensure_all(self) -> int:
        """Assign ids to every lesson; returns how many rows got one."""
        lessons = sorted(self.schedule.lessons, key=lambda lesson: lesson.row_index)
        for lesson in lessons:
            if not lesson.record_id:
                continue
            if lesson.record_id in self.claimed:
                logging.warning(
                    "[%s] Row %d repeats record id %s, it gets a new one",
                    self.schedule.table,
                    lesson.row_index + 2,
                    lesson.record_id,
                )
                lesson.record_id = ""
            else:
                self.claimed.add(lesson.record_id)

        assigned = 0
        for lesson in lessons:
            if not lesson.record_id:
                self.ensure(lesson)
                assigned += 1
        if assigned:
            logging.info("[%s] Assigned record ids to %d row(s)", self.schedule.table, assigned)
        return assigned

    def _recover(self, lesson: Lesson) -> Optional[str]:
        entry = self.snapshot.at(lesson.row_index)
        if (
            entry is not None
            and entry.record_id
            and entry.record_id not in self.claimed
            and (not entry.lesson_number or entry.lesson_number == lesson.lesson_number)
        ):
            logging.debug("[%s] Row %d: record id %s from the aligned ledger row", self.schedule.table, lesson.row_index + 2, entry.record_id)
            return entry.record_id

        entry = self.snapshot.by_key.get(lesson.natural_key)
        if entry is not None and entry.record_id and entry.record_id not in self.claimed:
            logging.debug("[%s] Row %d: record id %s by lesson and date", self.schedule.table, lesson.row_index + 2, entry.record_id)
            return entry.record_id
        return None

    def ensure(self, lesson: Lesson) -> str:
        if lesson.record_id:
            return lesson.record_id
        record_id = self._recover(lesson)
        if record_id is None:
            record_id = self.id_factory()
            while record_id in self.claimed:
                record_id = self.id_factory()
            logging.info("[%s] Row %d: new record id %s", self.schedule.table, lesson.row_index + 2, record_id)
        lesson.record_id = record_id
        self.claimed.add(record_id)
        if self.persist:
            self.store.write_cell(self.schedule.table, lesson.row_index + 1, self.schedule.record_id_col, record_id)
        return record_id
