"""Status ledger: a hidden table mirroring the schedule row for row.

Ledger data row ``i`` always describes schedule data row ``i``. Writes are
full-row replacements keyed by position; columns are located by header
name so ledgers written by older versions (including the Chinese
headers of the original add-on) stay readable.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .headers import LEDGER_COLUMNS, LEDGER_HEADERS, HeaderMap, resolve_headers
from .models import ROLES, STATUS_LABELS, Binding, LedgerEntry, Lesson, Notice, RowStatus
from .store import TabularStore


@dataclass
class LedgerSnapshot:
    """Ledger contents loaded once per run, indexed for lookup."""

    entries: List[LedgerEntry] = field(default_factory=list)
    by_id: Dict[str, LedgerEntry] = field(default_factory=dict)
    by_key: Dict[str, LedgerEntry] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: List[LedgerEntry]) -> "LedgerSnapshot":
        snapshot = cls(entries=entries)
        for entry in entries:
            if entry.is_blank():
                continue
            if entry.record_id:
                if entry.record_id in snapshot.by_id:
                    logging.warning(
                        "Record ID %s appears twice in the ledger (rows %d and %d), keeping the first",
                        entry.record_id,
                        snapshot.by_id[entry.record_id].row_index + 2,
                        entry.row_index + 2,
                    )
                    continue
                snapshot.by_id[entry.record_id] = entry
            snapshot.by_key.setdefault(entry.natural_key, entry)
        return snapshot

    def __len__(self) -> int:
        return len(self.entries)

    def at(self, row_index: int) -> Optional[LedgerEntry]:
        if 0 <= row_index < len(self.entries) and not self.entries[row_index].is_blank():
            return self.entries[row_index]
        return None

    def live(self) -> List[LedgerEntry]:
        return [entry for entry in self.entries if not entry.is_blank()]

    def find(self, lesson: Lesson) -> Optional[LedgerEntry]:
        """Identity lookup first, legacy ``lesson_number + date`` key second.

        A key match is only accepted when the entry carries no other identity.
        """
        if lesson.record_id and lesson.record_id in self.by_id:
            return self.by_id[lesson.record_id]
        entry = self.by_key.get(lesson.natural_key)
        if entry is not None and entry.record_id in ("", lesson.record_id):
            return entry
        return None

    def with_lesson_number(self, lesson_number: str) -> List[LedgerEntry]:
        return [e for e in self.live() if lesson_number and e.lesson_number == lesson_number]


class StatusLedger:
    def __init__(self, store: TabularStore, table: str) -> None:
        self.store = store
        self.table = table
        self._headers: Optional[HeaderMap] = None

    def ensure(self) -> None:
        if not self.store.has_table(self.table):
            self.store.create_table(self.table, LEDGER_COLUMNS, hidden=True)
            logging.info("Created status ledger %s", self.table)
            self._headers = None

    def headers(self) -> HeaderMap:
        if self._headers is None:
            rows = self.store.read_table(self.table)
            header_row = rows[0] if rows else list(LEDGER_COLUMNS)
            self._headers = resolve_headers(header_row, LEDGER_HEADERS)
            missing = self._headers.missing(LEDGER_HEADERS)
            if missing:
                logging.warning("Ledger %s has no column for %s; they read as empty", self.table, ", ".join(missing))
        return self._headers

    def row_count(self) -> int:
        return max(0, len(self.store.read_table(self.table)) - 1)

    def read(self) -> LedgerSnapshot:
        rows = self.store.read_table(self.table)
        if rows:
            self._headers = resolve_headers(rows[0], LEDGER_HEADERS)
        headers = self.headers()
        entries = [self.row_to_entry(row, index, headers) for index, row in enumerate(rows[1:])]
        snapshot = LedgerSnapshot.from_entries(entries)
        logging.debug("Ledger %s: %d rows, %d with record ids", self.table, len(entries), len(snapshot.by_id))
        return snapshot

    def row_to_entry(self, row: List[str], row_index: int, headers: Optional[HeaderMap] = None) -> LedgerEntry:
        headers = headers or self.headers()
        entry = LedgerEntry(
            record_id=headers.value(row, "record_id"),
            lesson_number=headers.value(row, "lesson_number"),
            date=headers.value(row, "date"),
            fingerprint=headers.value(row, "fingerprint"),
            status=RowStatus.parse(headers.value(row, "status")),
            updated_at=headers.value(row, "updated_at"),
            row_index=row_index,
        )
        for role in ROLES:
            calendar_id = headers.value(row, f"{role}_calendar_id")
            event_id = headers.value(row, f"{role}_event_id")
            if event_id.lower() in STATUS_LABELS:
                logging.warning(
                    "Discarding %s event id %r in %s row %d: it is a status label, not an id",
                    role,
                    event_id,
                    self.table,
                    row_index + 2,
                )
                event_id = ""
            if calendar_id.lower() in STATUS_LABELS:
                calendar_id = ""
            if calendar_id or event_id:
                entry.bindings[role] = Binding(
                    role=role,
                    calendar_id=calendar_id,
                    event_id=event_id,
                    created_at=headers.value(row, f"{role}_event_time"),
                )
            status = headers.value(row, f"{role}_email_status")
            sent_at = headers.value(row, f"{role}_email_time")
            if status or sent_at:
                entry.notices[role] = Notice(status=status, sent_at=sent_at)
        return entry

    def entry_to_row(self, entry: Optional[LedgerEntry]) -> List[str]:
        headers = self.headers()
        width = max([headers.width] + [col + 1 for col in headers.columns.values()])
        row = [""] * width
        if entry is None or entry.is_blank():
            return row

        values: Dict[str, str] = {
            "record_id": entry.record_id,
            "lesson_number": entry.lesson_number,
            "date": entry.date,
            "fingerprint": entry.fingerprint,
            "status": entry.status.value if entry.status else "",
            "updated_at": entry.updated_at,
        }
        for role in ROLES:
            binding = entry.bindings.get(role)
            notice = entry.notice(role)
            values[f"{role}_calendar_id"] = binding.calendar_id if binding else ""
            values[f"{role}_event_id"] = binding.event_id if binding else ""
            values[f"{role}_event_time"] = binding.created_at if binding and binding.event_id else ""
            values[f"{role}_email_status"] = notice.status
            values[f"{role}_email_time"] = notice.sent_at
        for name, value in values.items():
            col = headers.index(name)
            if col is not None:
                row[col] = value or ""
        return row

    def write(self, row_index: int, entry: Optional[LedgerEntry]) -> None:
        """Overwrite ledger data row ``row_index`` in full."""
        self.store.write_row(self.table, row_index + 1, self.entry_to_row(entry))

    def clear(self, row_index: int) -> None:
        self.write(row_index, None)

    def sync(self, target_row_count: int) -> int:
        """Grow or shrink trailing rows so the ledger has ``target_row_count`` data rows."""
        current = self.row_count()
        if current < target_row_count:
            blank = self.entry_to_row(None)
            self.store.append_rows(self.table, [list(blank) for _ in range(target_row_count - current)])
            logging.info("Ledger %s: added %d row(s)", self.table, target_row_count - current)
        elif current > target_row_count:
            self.store.delete_rows(self.table, target_row_count + 1, current - target_row_count)
            logging.info("Ledger %s: removed %d trailing row(s)", self.table, current - target_row_count)
        return target_row_count - current

    def realign(self, snapshot: LedgerSnapshot, assignments: Mapping[int, Optional[LedgerEntry]], row_count: int) -> int:
        """Move entries to the positions of the rows they now belong to.

        ``assignments`` maps data row index to the entry matched to the row at
        that position; positions not listed become blank. A position is only
        overwritten once the entry it holds is stored somewhere else too, so
        an interrupted realign leaves duplicates behind, never gaps. Entries
        that only swap places with each other are first copied to a spare
        trailing row, which is removed again at the end.
        """
        blank = tuple(self.entry_to_row(None))
        current = [tuple(self.entry_to_row(snapshot.at(i))) for i in range(row_count)]
        wanted = [tuple(self.entry_to_row(assignments.get(i))) for i in range(row_count)]
        needed = set(wanted) - {blank}

        def vacant(row_index: int) -> bool:
            held = current[row_index]
            return held == blank or held not in needed or current.count(held) > 1

        # real entries first, blanks last
        pending = sorted((i for i in range(row_count) if wanted[i] != current[i]), key=lambda i: wanted[i] == blank)
        moved = 0
        spare = 0
        while pending:
            row_index = next((i for i in pending if vacant(i)), None)
            if row_index is None:
                keep = current[pending[0]]
                self.store.append_rows(self.table, [list(keep)])
                current.append(keep)
                spare += 1
                continue
            self.store.write_row(self.table, row_index + 1, list(wanted[row_index]))
            current[row_index] = wanted[row_index]
            pending.remove(row_index)
            moved += 1
        if spare:
            self.store.delete_rows(self.table, row_count + 1, spare)
        if moved:
            logging.info("Ledger %s: realigned %d row(s)", self.table, moved)
        return moved
