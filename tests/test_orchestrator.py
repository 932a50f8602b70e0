"""
tests/test_orchestrator.py

Whole sync runs over an in-memory spreadsheet, a fake calendar and a
recording notifier.

Coverage
--------
- first run creates events, record ids and an aligned ledger
- a second run without edits performs no write at all
- edits, date moves, inserted, deleted, reordered and replaced rows
- events deleted behind the sync's back are recreated
- rows with data errors keep their events
- one broken table does not stop the others
- deleted rows stay deleted on later runs
- runs interrupted halfway are finished without duplicate or lost events
- dry runs write nothing
"""

from __future__ import annotations

import itertools
from typing import List

import pytest

from lesson_sync.config import TableConfig
from lesson_sync.ledger import StatusLedger
from tests.conftest import LEDGER, SOURCE_HEADER, STUDENT, TABLE, TEACHER, TZ, lesson_row

ID_COL = len(SOURCE_HEADER)


def source_ids(store) -> List[str]:
    return [row[ID_COL] if len(row) > ID_COL else "" for row in store.read_table(TABLE)[1:]]


def ledger_ids(store) -> List[str]:
    return [entry.record_id for entry in StatusLedger(store, LEDGER).read().entries]


def ledger_entry(store, record_id: str):
    return StatusLedger(store, LEDGER).read().by_id[record_id]


@pytest.fixture()
def synced(make_orchestrator, table_config, store):
    """Store, calendar and notifier after one successful run."""
    summary = make_orchestrator().run([table_config])
    assert summary.ok
    return store


def rerun(make_orchestrator, table_config):
    summary = make_orchestrator().run([table_config])
    return summary, summary.tables[0]


def fail_ledger_write(monkeypatch, store, nth: int) -> None:
    """Make the nth ledger row write from now on raise, as if the process died."""
    original = store.write_row
    count = itertools.count(1)

    def write_row(name, row, values):
        if name == LEDGER and next(count) == nth:
            raise RuntimeError("connection lost")
        original(name, row, values)

    monkeypatch.setattr(store, "write_row", write_row)


# ---------------------------------------------------------------------------
# First run and idempotence
# ---------------------------------------------------------------------------


class TestFirstRun:
    def test_creates_events_ids_and_ledger(self, make_orchestrator, table_config, store, calendar, notifier) -> None:
        summary = make_orchestrator().run([table_config])

        result = summary.tables[0]
        assert summary.ok
        assert (result.total, result.processed, result.succeeded) == (2, 2, 2)
        assert source_ids(store) == ["REC_1", "REC_2"]
        assert ledger_ids(store) == ["REC_1", "REC_2"]
        assert len(calendar.events) == 4
        assert len(notifier.sent) == 4
        assert LEDGER in store.hidden

    def test_second_run_writes_nothing(self, synced, make_orchestrator, table_config, calendar, notifier) -> None:
        writes, mutations, sent = synced.writes, len(calendar.mutations()), len(notifier.sent)

        summary, result = rerun(make_orchestrator, table_config)

        assert summary.ok
        assert (result.processed, result.skipped) == (0, 2)
        assert synced.writes == writes
        assert len(calendar.mutations()) == mutations
        assert len(notifier.sent) == sent


# ---------------------------------------------------------------------------
# Source edits
# ---------------------------------------------------------------------------


class TestEdits:
    def test_time_change_updates_both_events(self, synced, make_orchestrator, table_config, calendar, notifier) -> None:
        synced.tables[TABLE][1][6] = "11:30"
        calendar.calls.clear()

        _, result = rerun(make_orchestrator, table_config)

        assert (result.succeeded, result.skipped) == (1, 1)
        assert calendar.mutations() == [("update", TEACHER, "evt1"), ("update", STUDENT, "evt2")]
        assert calendar.events[(TEACHER, "evt1")]["end"]["dateTime"] == "2025-11-20T11:30:00+08:00"
        assert len(notifier.sent) == 6

    def test_date_move_keeps_the_events(self, synced, make_orchestrator, table_config, calendar) -> None:
        synced.tables[TABLE][1][1] = "2025-11-21"
        calendar.calls.clear()

        rerun(make_orchestrator, table_config)

        assert [call[0] for call in calendar.mutations()] == ["update", "update"]
        entry = ledger_entry(synced, "REC_1")
        assert entry.date == "2025-11-21"
        assert entry.binding("teacher").event_id == "evt1"

    def test_inserted_row_gets_events_and_ledger_realigns(self, synced, make_orchestrator, table_config, calendar) -> None:
        synced.tables[TABLE].insert(1, lesson_row("3", "2025-12-04"))
        calendar.calls.clear()

        rerun(make_orchestrator, table_config)

        assert source_ids(synced) == ["REC_3", "REC_1", "REC_2"]
        assert ledger_ids(synced) == ["REC_3", "REC_1", "REC_2"]
        assert [call[0] for call in calendar.mutations()] == ["create", "create"]
        assert sorted(calendar.events_for("REC_3")) == [(STUDENT, "evt6"), (TEACHER, "evt5")]

    def test_reordered_rows_keep_their_identity(self, synced, make_orchestrator, table_config, calendar) -> None:
        rows = synced.tables[TABLE]
        rows[1], rows[2] = rows[2], rows[1]
        calendar.calls.clear()

        _, result = rerun(make_orchestrator, table_config)

        assert source_ids(synced) == ["REC_2", "REC_1"]
        assert ledger_ids(synced) == ["REC_2", "REC_1"]
        assert calendar.mutations() == []
        assert result.skipped == 2

    def test_deleted_row_is_torn_down(self, synced, make_orchestrator, table_config, calendar, notifier) -> None:
        del synced.tables[TABLE][1]

        _, result = rerun(make_orchestrator, table_config)

        assert result.deleted == 1
        assert calendar.events_for("REC_1") == []
        assert len(calendar.events_for("REC_2")) == 2
        assert ledger_ids(synced) == ["REC_2"]
        assert notifier.subjects()[-2:] == ["Lesson cancelled: Algebra 1"] * 2

    def test_deleted_row_stays_deleted(self, synced, make_orchestrator, table_config, calendar, notifier) -> None:
        del synced.tables[TABLE][1]
        rerun(make_orchestrator, table_config)
        mutations, sent = len(calendar.mutations()), len(notifier.sent)

        summary, result = rerun(make_orchestrator, table_config)

        assert summary.ok
        assert (result.processed, result.deleted, result.skipped) == (0, 0, 1)
        assert len(calendar.mutations()) == mutations
        assert len(notifier.sent) == sent
        assert calendar.events_for("REC_1") == []

    def test_replaced_row_supersedes_the_old_entry(self, synced, make_orchestrator, table_config, calendar, notifier) -> None:
        # lesson 2 was removed and entered again, on another date, at the top
        rows = synced.tables[TABLE]
        del rows[2]
        rows.insert(1, lesson_row("2", "2025-12-04"))

        _, result = rerun(make_orchestrator, table_config)

        assert result.deleted == 1
        assert source_ids(synced) == ["REC_3", "REC_1"]
        assert ledger_ids(synced) == ["REC_3", "REC_1"]
        assert calendar.events_for("REC_2") == []
        assert len(calendar.events_for("REC_3")) == 2
        assert not any(subject.startswith("Lesson cancelled") for subject in notifier.subjects())

    def test_invalid_row_keeps_its_events(self, synced, make_orchestrator, table_config, calendar) -> None:
        synced.tables[TABLE][1][1] = "someday"
        calendar.calls.clear()

        summary, result = rerun(make_orchestrator, table_config)

        assert summary.ok
        assert (result.invalid, result.deleted) == (1, 0)
        assert calendar.mutations() == []
        assert len(calendar.events_for("REC_1")) == 2
        assert ledger_ids(synced) == ["REC_1", "REC_2"]


# ---------------------------------------------------------------------------
# Drift and failures
# ---------------------------------------------------------------------------


class TestRecovery:
    def test_externally_deleted_event_is_recreated(self, synced, make_orchestrator, table_config, calendar, notifier) -> None:
        calendar.remove(TEACHER, "evt1")
        sent = len(notifier.sent)

        _, result = rerun(make_orchestrator, table_config)

        assert (result.succeeded, result.skipped) == (1, 1)
        assert ledger_entry(synced, "REC_1").binding("teacher").event_id == "evt5"
        assert len(notifier.sent) == sent

    def test_broken_table_does_not_stop_the_others(self, make_orchestrator, table_config, store) -> None:
        store.tables["Ann"] = [["Lesson", "Title"], ["1", "Algebra"]]
        ann = TableConfig(name="Ann", timezone=TZ, teacher_email=TEACHER, student_email=STUDENT)

        summary = make_orchestrator().run([ann, table_config])

        assert not summary.ok
        assert (summary.tables_succeeded, summary.tables_failed) == (1, 1)
        failed = summary.tables[0]
        assert (failed.table, failed.success) == ("Ann", False)
        assert "missing column" in failed.error
        assert summary.tables[1].succeeded == 2

    def test_failed_rows_fail_the_run(self, make_orchestrator, table_config, calendar) -> None:
        calendar.broken[TEACHER] = RuntimeError("Calendar not found")
        calendar.broken[STUDENT] = RuntimeError("Calendar not found")

        summary = make_orchestrator().run([table_config])

        assert summary.tables[0].success
        assert summary.total("failed") == 2
        assert not summary.ok


class TestInterruptedRuns:
    def test_interrupted_realign_is_finished_without_new_events(self, synced, make_orchestrator, table_config, calendar, monkeypatch) -> None:
        synced.tables[TABLE].insert(1, lesson_row("3", "2025-12-04"))
        fail_ledger_write(monkeypatch, synced, 2)

        summary, _ = rerun(make_orchestrator, table_config)
        assert not summary.ok
        assert {"REC_1", "REC_2"} <= set(ledger_ids(synced))

        monkeypatch.undo()
        summary, result = rerun(make_orchestrator, table_config)

        assert summary.ok
        assert (result.succeeded, result.skipped, result.deleted) == (1, 2, 0)
        assert len(calendar.events_for("REC_1")) == 2
        assert len(calendar.events_for("REC_2")) == 2
        assert len(calendar.events_for("REC_3")) == 2
        assert ledger_ids(synced) == ["REC_3", "REC_1", "REC_2"]

    def test_interrupted_teardown_is_finished(self, synced, make_orchestrator, table_config, calendar, notifier, monkeypatch) -> None:
        del synced.tables[TABLE][1]
        fail_ledger_write(monkeypatch, synced, 1)

        summary, _ = rerun(make_orchestrator, table_config)
        assert not summary.ok
        assert calendar.events_for("REC_1") == []

        monkeypatch.undo()
        summary, result = rerun(make_orchestrator, table_config)

        assert summary.ok
        assert result.deleted == 1
        assert ledger_ids(synced) == ["REC_2"]
        assert len(calendar.events_for("REC_2")) == 2
        assert notifier.subjects().count("Lesson cancelled: Algebra 1") == 2

    def test_duplicated_ledger_row_leaves_events_alone(self, synced, make_orchestrator, table_config, calendar, notifier) -> None:
        synced.tables[LEDGER].append(list(synced.tables[LEDGER][1]))
        calendar.calls.clear()
        sent = len(notifier.sent)

        summary, result = rerun(make_orchestrator, table_config)

        assert summary.ok
        assert (result.skipped, result.deleted) == (2, 0)
        assert calendar.mutations() == []
        assert len(notifier.sent) == sent
        assert ledger_ids(synced) == ["REC_1", "REC_2"]


class TestDryRun:
    def test_writes_nothing(self, make_orchestrator, table_config, store, calendar, notifier) -> None:
        summary = make_orchestrator(dry_run=True).run([table_config])

        assert summary.ok
        assert summary.tables[0].processed == 0
        assert store.writes == 0
        assert LEDGER not in store.tables
        assert store.read_table(TABLE)[0] == SOURCE_HEADER
        assert calendar.mutations() == []
        assert notifier.sent == []
