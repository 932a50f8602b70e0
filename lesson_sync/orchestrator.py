from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

from .config import Settings, TableConfig
from .errors import ConfigurationError, ProviderError
from .executor import SyncExecutor
from .gcal import CalendarProvider
from .identity import IdentityRegistry, generate_record_id
from .ledger import LedgerSnapshot, StatusLedger
from .mail import Notifier
from .models import Binding, RowStatus, RunSummary, TableResult
from .reconciler import Reconciler
from .schedule import ensure_identity_column, read_schedule
from .store import TabularStore
from .throttle import Throttle, call_with_retry


class Orchestrator:
    """Runs the sync for each configured table, isolating table failures."""

    def __init__(
        self,
        store: TabularStore,
        calendar: CalendarProvider,
        notifier: Notifier,
        settings: Settings,
        dry_run: bool = False,
        id_factory: Callable[[], str] = generate_record_id,
        now: Optional[Callable[[], str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.calendar = calendar
        self.notifier = notifier
        self.settings = settings
        self.dry_run = dry_run
        self.id_factory = id_factory
        self.now = now
        self.sleep = sleep
        self.throttle = Throttle(settings.rate_limit.operation_delay, sleep=sleep)

    def _exists(self, binding: Binding) -> bool:
        event = call_with_retry(
            lambda: self.calendar.get_event(binding.calendar_id, binding.event_id),
            self.settings.rate_limit,
            action=f"verify {binding.role} event",
            sleep=self.sleep,
        )
        return event is not None

    def run(self, tables: Iterable[TableConfig]) -> RunSummary:
        summary = RunSummary()
        for config in tables:
            logging.info("=== %s ===", config.name)
            try:
                result = self.run_table(config)
            except ConfigurationError as exc:
                logging.error("[%s] Configuration error: %s", config.name, exc)
                result = TableResult(table=config.name, success=False, error=str(exc))
            except Exception as exc:
                logging.exception("[%s] Sync failed", config.name)
                result = TableResult(table=config.name, success=False, error=f"{type(exc).__name__}: {exc}")
            summary.tables.append(result)
        self.log_summary(summary)
        return summary

    def run_table(self, config: TableConfig) -> TableResult:
        ledger = StatusLedger(self.store, self.settings.ledger_table(config.name))
        if not self.dry_run:
            ledger.ensure()
            ensure_identity_column(self.store, config.name)

        schedule = read_schedule(self.store, config)
        snapshot = ledger.read() if self.store.has_table(ledger.table) else LedgerSnapshot()

        registry = IdentityRegistry(self.store, schedule, snapshot, self.id_factory, persist=not self.dry_run)
        registry.ensure_all()

        reconciler = Reconciler(config, self._exists)
        plan = reconciler.reconcile(schedule.lessons, snapshot, schedule.held)
        result = TableResult(table=config.name, total=len(schedule.lessons), invalid=schedule.invalid)
        result.skipped = sum(1 for item in plan.rows if item.classification.is_skip)

        if self.dry_run:
            for item in plan.actionable() + plan.teardowns:
                logging.info("[%s] dry run: would apply %s to %s", config.name, item.classification.value, item.label)
            return result

        executor = SyncExecutor(
            ledger,
            self.calendar,
            self.notifier,
            config,
            self.settings.rate_limit,
            throttle=self.throttle,
            now=self.now,
            send_notifications=self.settings.send_notifications,
            sleep=self.sleep,
        )

        for item in plan.teardowns:
            executor.teardown(item)
            if item.classification.is_teardown:
                result.deleted += 1

        # shrink only after realign has moved entries out of trailing rows
        positions = max(schedule.row_count, ledger.row_count())
        ledger.sync(positions)
        ledger.realign(ledger.read(), reconciler.assignments(plan, schedule.held, snapshot), positions)
        ledger.sync(schedule.row_count)

        for item in plan.actionable():
            try:
                outcome = executor.apply(item)
            except ProviderError as exc:
                logging.error("[%s] %s: %s", config.name, item.label, exc)
                result.failed += 1
                continue
            result.processed += 1
            if outcome.status == RowStatus.COMPLETED:
                result.succeeded += 1
            elif outcome.status == RowStatus.PARTIAL_FAILURE:
                result.partially_failed += 1
            else:
                result.failed += 1

        logging.info(
            "[%s] %d processed, %d succeeded, %d partial, %d failed, %d skipped, %d deleted",
            config.name,
            result.processed,
            result.succeeded,
            result.partially_failed,
            result.failed,
            result.skipped,
            result.deleted,
        )
        return result

    @staticmethod
    def log_summary(summary: RunSummary) -> None:
        logging.info(
            "Tables: %d total, %d succeeded, %d failed",
            len(summary.tables),
            summary.tables_succeeded,
            summary.tables_failed,
        )
        logging.info(
            "Rows: %d total, %d succeeded, %d partially failed, %d failed, %d skipped, %d deleted, %d invalid",
            summary.total("total"),
            summary.total("succeeded"),
            summary.total("partially_failed"),
            summary.total("failed"),
            summary.total("skipped"),
            summary.total("deleted"),
            summary.total("invalid"),
        )
        for table in summary.tables:
            if not table.success:
                logging.error("Table %s failed: %s", table.table, table.error)
