"""Applies classified plan items to the calendars and records the outcome."""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from .config import RateLimit, TableConfig
from .errors import EventNotFoundError, ProviderError
from .gcal import CalendarProvider
from .ledger import StatusLedger
from .mail import Notifier, cancellation_notice, lesson_notice
from .models import (
    NOTICE_NOT_SENT,
    NOTICE_SENT,
    NOTICE_SKIPPED,
    ROLES,
    Binding,
    Classification,
    ExecutionResult,
    LedgerEntry,
    Notice,
    PlanItem,
    RowStatus,
)
from .throttle import Throttle, call_with_retry
from .utils import now_str


class SyncExecutor:
    def __init__(
        self,
        ledger: StatusLedger,
        calendar: CalendarProvider,
        notifier: Notifier,
        config: TableConfig,
        rate_limit: RateLimit,
        throttle: Optional[Throttle] = None,
        now: Optional[Callable[[], str]] = None,
        send_notifications: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.calendar = calendar
        self.notifier = notifier
        self.config = config
        self.rate_limit = rate_limit
        self.throttle = throttle or Throttle(rate_limit.operation_delay, sleep=sleep)
        self.now = now or (lambda: now_str(config.timezone))
        self.send_notifications = send_notifications
        self.sleep = sleep

    def _call(self, func, action: str, mutating: bool = True):
        return call_with_retry(
            func,
            self.rate_limit,
            action=action,
            throttle=self.throttle if mutating else None,
            sleep=self.sleep,
        )

    def _create(self, role: str, calendar_id: str, body: dict, stamp: str) -> Binding:
        event_id = self._call(lambda: self.calendar.create_event(calendar_id, body, notify=self.send_notifications), f"create {role} event")
        logging.info("[%s] Created %s event %s in %s", self.config.name, role, event_id, calendar_id)
        return Binding(role=role, calendar_id=calendar_id, event_id=event_id, created_at=stamp)

    def _update(self, old: Binding, body: dict, stamp: str) -> Binding:
        try:
            self._call(
                lambda: self.calendar.update_event(old.calendar_id, old.event_id, body, notify=self.send_notifications),
                f"update {old.role} event",
            )
        except EventNotFoundError:
            logging.info("[%s] %s event %s is gone, creating a new one", self.config.name, old.role, old.event_id)
            return self._create(old.role, old.calendar_id, body, stamp)
        logging.info("[%s] Updated %s event %s", self.config.name, old.role, old.event_id)
        return Binding(role=old.role, calendar_id=old.calendar_id, event_id=old.event_id, created_at=old.created_at or stamp)

    def _delete(self, binding: Binding, notify: bool) -> bool:
        try:
            self._call(
                lambda: self.calendar.delete_event(binding.calendar_id, binding.event_id, notify=notify),
                f"delete {binding.role} event",
            )
        except EventNotFoundError:
            logging.info("[%s] %s event %s was already deleted", self.config.name, binding.role, binding.event_id)
            return True
        except ProviderError as exc:
            logging.warning("[%s] Could not delete %s event %s: %s", self.config.name, binding.role, binding.event_id, exc)
            return False
        logging.info("[%s] Deleted %s event %s", self.config.name, binding.role, binding.event_id)
        return True

    def _sync_role(self, item: PlanItem, role: str, calendar_id: str, body: dict, stamp: str) -> Binding:
        """Bring one target calendar in line with the row and return its binding."""
        old = item.entry.binding(role) if item.entry is not None else None
        if old is not None and old.calendar_id != calendar_id:
            old = None
        kind = item.classification
        if old is None:
            return self._create(role, calendar_id, body, stamp)
        if kind in (Classification.NEW, Classification.CHANGED):
            return self._update(old, body, stamp)
        if kind == Classification.UNCHANGED_STALE and role in item.dead_roles:
            return self._create(role, calendar_id, body, stamp)
        return old

    def _notify(self, item: PlanItem, status: RowStatus, stamp: str) -> Dict[str, Notice]:
        previous = item.entry.notices if item.entry is not None else {}
        if not item.classification.notifies or status == RowStatus.FAILED:
            return dict(previous)
        if not self.send_notifications:
            return {role: Notice(NOTICE_SKIPPED, stamp) for role in ROLES}

        lesson = item.lesson
        notices: Dict[str, Notice] = {}
        sent: Dict[str, Notice] = {}
        for role in ROLES:
            email = lesson.email_for(role)
            if not email:
                notices[role] = Notice(NOTICE_NOT_SENT, stamp)
                continue
            if email in sent:
                notices[role] = sent[email]
                continue
            subject, html_body = lesson_notice(lesson, role)
            try:
                self.notifier.send_email(email, subject, html_body)
                notices[role] = Notice(NOTICE_SENT, stamp)
            except Exception as exc:
                logging.warning("[%s] Notice to %s failed: %s", self.config.name, email, exc)
                notices[role] = Notice(NOTICE_NOT_SENT, stamp)
            sent[email] = notices[role]
        return notices

    def apply(self, item: PlanItem) -> ExecutionResult:
        """Create, update or recreate the events of one row and record the outcome."""
        lesson = item.lesson
        entry = item.entry
        targets = self.config.targets()
        body = lesson.to_gcal_body(self.config.reminder_minutes)
        stamp = self.now()

        bindings: Dict[str, Binding] = {}
        errors: List[str] = []
        failed_roles: List[str] = []
        for role, calendar_id in targets.items():
            try:
                binding = self._sync_role(item, role, calendar_id, body, stamp)
            except ProviderError as exc:
                logging.error("[%s] %s: %s event failed: %s", self.config.name, item.label, role, exc)
                errors.append(f"{role}: {exc}")
                failed_roles.append(role)
                binding = entry.binding(role) if entry is not None else None
                if binding is not None and binding.calendar_id != calendar_id:
                    binding = None
                if binding is not None and role in item.dead_roles:
                    binding = None
            if binding is not None:
                bindings[role] = binding

        # bindings in calendars that are no longer targets
        if entry is not None:
            kept = {(b.calendar_id, b.event_id) for b in bindings.values()}
            for old in entry.bound():
                if (old.calendar_id, old.event_id) in kept:
                    continue
                if old.role in targets and old.calendar_id == targets[old.role]:
                    continue
                if old.calendar_id and not self._delete(old, notify=False):
                    bindings.setdefault(old.role, old)

        succeeded = [role for role in targets if role in bindings and role not in failed_roles]
        if len(succeeded) == len(targets):
            status = RowStatus.COMPLETED
        elif succeeded:
            status = RowStatus.PARTIAL_FAILURE
        else:
            status = RowStatus.FAILED

        fingerprint = lesson.fingerprint
        if status != RowStatus.COMPLETED and item.classification == Classification.CHANGED and entry is not None:
            # keep the old fingerprint so the change is picked up again
            fingerprint = entry.fingerprint

        self.ledger.write(
            lesson.row_index,
            LedgerEntry(
                record_id=lesson.record_id,
                lesson_number=lesson.lesson_number,
                date=lesson.date.isoformat(),
                fingerprint=fingerprint,
                bindings=bindings,
                notices=self._notify(item, status, stamp),
                status=status,
                updated_at=stamp,
                row_index=lesson.row_index,
            ),
        )
        logging.info("[%s] %s: %s", self.config.name, item.label, status.value)
        return ExecutionResult(status=status, bindings=bindings, errors=errors)

    def _read_event(self, binding: Binding) -> Optional[dict]:
        try:
            return self._call(
                lambda: self.calendar.get_event(binding.calendar_id, binding.event_id),
                f"read {binding.role} event",
                mutating=False,
            )
        except ProviderError as exc:
            logging.warning("[%s] Could not read %s event %s: %s", self.config.name, binding.role, binding.event_id, exc)
            return None

    def teardown(self, item: PlanItem) -> bool:
        """Delete the events of an orphaned entry and clear its ledger row.

        Deletion is best effort: the entry is cleared even when a delete
        fails. Events listed in ``item.retained`` belong to a live row and
        are left alone; duplicate entries are only cleared. Returns True
        when every delete went through.
        """
        entry = item.entry
        notify = item.classification == Classification.DELETED and self.send_notifications
        recipients: List[str] = []
        title = f"Lesson {entry.lesson_number}".strip()
        ok = True
        bound = [] if item.classification == Classification.DUPLICATE else entry.bound()
        for binding in bound:
            if (binding.calendar_id, binding.event_id) in item.retained:
                logging.info("[%s] %s event %s is still used by a live row, keeping it", self.config.name, binding.role, binding.event_id)
                continue
            event = self._read_event(binding) if notify and binding.calendar_id else None
            if event:
                title = event.get("summary") or title
                for attendee in event.get("attendees", []):
                    email = attendee.get("email")
                    if email and email not in recipients:
                        recipients.append(email)
            if not binding.calendar_id:
                logging.warning("[%s] %s event %s has no calendar id, cannot delete it", self.config.name, binding.role, binding.event_id)
                ok = False
                continue
            ok = self._delete(binding, notify=notify) and ok

        if recipients:
            subject, html_body = cancellation_notice(title, entry.date)
            for email in recipients:
                try:
                    self.notifier.send_email(email, subject, html_body)
                except Exception as exc:
                    logging.warning("[%s] Cancellation to %s failed: %s", self.config.name, email, exc)

        if entry.row_index is not None:
            self.ledger.clear(entry.row_index)
        logging.info("[%s] %s: %s", self.config.name, item.label, item.classification.value)
        return ok
