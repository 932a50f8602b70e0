"""Classification of schedule rows and ledger entries into sync actions.

Every lesson is matched to at most one ledger entry, by record id first
and by the legacy ``lesson_number + date`` key second. Matched pairs are
classified from their fingerprints and the liveness of their bindings;
ledger entries left unmatched are torn down.

Orphaned entries that share a lesson number with a row that is new (or
was moved to another date) were replaced by that row and are marked
superseded: their events go away without a cancellation notice. An entry
that shares a lesson number with a row it is *not* matched to, while it
is itself still matched to another live row, is a coincidence and is
left alone.

A second ledger entry carrying a record id already seen higher up is a
copy left by an interrupted run: it is cleared and nothing else. Events
still bound to a matched entry are never torn down with an orphan.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Mapping, Optional, Set

from .config import TableConfig
from .ledger import LedgerSnapshot
from .models import Binding, Classification, LedgerEntry, Lesson, PlanItem, RowStatus, SyncPlan

LivenessCheck = Callable[[Binding], bool]


class Reconciler:
    def __init__(self, config: TableConfig, exists: LivenessCheck) -> None:
        self.config = config
        self.exists = exists

    def _alive(self, binding: Binding) -> bool:
        if not binding.calendar_id:
            logging.info(
                "[%s] %s event %s has no calendar id and cannot be verified",
                self.config.name,
                binding.role,
                binding.event_id,
            )
            return False
        try:
            alive = self.exists(binding)
        except Exception as exc:
            logging.warning(
                "[%s] Could not verify %s event %s: %s",
                self.config.name,
                binding.role,
                binding.event_id,
                exc,
            )
            return False
        if not alive:
            logging.info(
                "[%s] %s event %s no longer exists in %s",
                self.config.name,
                binding.role,
                binding.event_id,
                binding.calendar_id,
            )
        return alive

    def classify(self, lesson: Lesson, entry: Optional[LedgerEntry]) -> PlanItem:
        if entry is None:
            return PlanItem(Classification.NEW, lesson=lesson, reason="no ledger entry")

        if entry.fingerprint != lesson.fingerprint:
            reason = "key fields changed"
            if entry.date and entry.date != lesson.date.isoformat():
                reason = f"moved from {entry.date} to {lesson.date.isoformat()}"
            return PlanItem(Classification.CHANGED, lesson=lesson, entry=entry, reason=reason)

        bound = entry.bound()
        if not bound:
            if entry.status == RowStatus.COMPLETED:
                return PlanItem(Classification.TERMINAL_SKIP, lesson=lesson, entry=entry, reason="completed without events")
            return PlanItem(Classification.RETRY, lesson=lesson, entry=entry, reason=f"previous status {entry.status.value if entry.status else 'unknown'}")

        dead = [binding.role for binding in bound if not self._alive(binding)]
        if dead:
            return PlanItem(
                Classification.UNCHANGED_STALE,
                lesson=lesson,
                entry=entry,
                dead_roles=dead,
                reason=f"missing {', '.join(dead)} event(s)",
            )

        targets = self.config.targets()
        missing = [
            role
            for role, calendar_id in targets.items()
            if entry.binding(role) is None or entry.binding(role).calendar_id != calendar_id
        ]
        if missing:
            return PlanItem(Classification.RETRY, lesson=lesson, entry=entry, reason=f"no {', '.join(missing)} event")
        return PlanItem(Classification.UNCHANGED_VERIFIED, lesson=lesson, entry=entry)

    def reconcile(
        self,
        lessons: Iterable[Lesson],
        snapshot: LedgerSnapshot,
        held: Optional[Mapping[str, int]] = None,
    ) -> SyncPlan:
        plan = SyncPlan()
        matched: Set[int] = set()

        for lesson in sorted(lessons, key=lambda l: l.row_index):
            entry = snapshot.find(lesson)
            if entry is not None:
                if id(entry) in matched:
                    # two rows resolved to one legacy entry; only the first keeps it
                    entry = None
                else:
                    matched.add(id(entry))
            plan.rows.append(self.classify(lesson, entry))

        for record_id in held or {}:
            entry = snapshot.by_id.get(record_id)
            if entry is not None:
                matched.add(id(entry))

        in_use = {
            (binding.calendar_id, binding.event_id)
            for entry in snapshot.live()
            if id(entry) in matched
            for binding in entry.bound()
        }

        successors: Dict[str, PlanItem] = {}
        for item in plan.rows:
            moved = item.classification == Classification.CHANGED and item.entry is not None and item.entry.date != item.lesson.date.isoformat()
            if item.lesson.lesson_number and (item.classification == Classification.NEW or moved):
                successors.setdefault(item.lesson.lesson_number, item)

        for entry in snapshot.live():
            if id(entry) in matched:
                continue
            if entry.record_id and snapshot.by_id.get(entry.record_id) is not entry:
                # a second copy of an entry, left by an interrupted run
                plan.teardowns.append(
                    PlanItem(
                        Classification.DUPLICATE,
                        entry=entry,
                        reason=f"copy of the entry in ledger row {snapshot.by_id[entry.record_id].row_index + 2}",
                    )
                )
                continue
            retained = {(b.calendar_id, b.event_id) for b in entry.bound()} & in_use
            successor = successors.get(entry.lesson_number) if entry.lesson_number else None
            if successor is not None and successor.lesson.record_id != entry.record_id:
                plan.teardowns.append(
                    PlanItem(
                        Classification.SUPERSEDED,
                        entry=entry,
                        replaced_by=successor.lesson.record_id,
                        reason=f"lesson {entry.lesson_number} now on {successor.lesson.date.isoformat()}",
                        retained=retained,
                    )
                )
            else:
                plan.teardowns.append(PlanItem(Classification.DELETED, entry=entry, reason="row removed", retained=retained))

        for item in plan.rows + plan.teardowns:
            if not item.classification.is_skip:
                logging.info("[%s] %s: %s %s", self.config.name, item.label, item.classification.value, item.reason)
        logging.info("[%s] Plan: %s", self.config.name, dict(plan.counts()))
        return plan

    def assignments(self, plan: SyncPlan, held: Mapping[str, int], snapshot: LedgerSnapshot) -> Dict[int, LedgerEntry]:
        """Row index -> ledger entry that belongs at that position after this run."""
        placed: Dict[int, LedgerEntry] = {}
        for item in plan.rows:
            if item.entry is not None:
                placed[item.lesson.row_index] = item.entry
        for record_id, row_index in held.items():
            entry = snapshot.by_id.get(record_id)
            if entry is not None:
                placed[row_index] = entry
        return placed
