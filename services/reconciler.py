"""Reconciliation passes that fill in derived fields on telemetry records."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache, partial
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from app.schemas import DeviceReading, PassReport, PassStatus
from datastore.device_settings import build_default_settings_store
from datastore.readings import ReadingStore, build_default_readings_store
from models.records import ReadingUpdate, ScanStrategy
from services.config_resolver import DeviceConfigResolver
from services.enricher import ReadingEnricher
from services.errors import ConfigNotFound, ReconciliationError, StoreUnavailable
from settings import get_settings

logger = logging.getLogger(__name__)


class _Outcome(str, Enum):
    staged = "staged"
    unchanged = "unchanged"
    skipped = "skipped"
    failed = "failed"


@dataclass
class _PreparedRecord:
    reading: DeviceReading
    outcome: _Outcome
    update: Optional[ReadingUpdate] = None
    issue_count: int = 0


@dataclass
class _PassCounters:
    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped_no_config: int = 0
    failed_records: int = 0
    channel_issues: int = 0


class ReconciliationRunner:
    """Scans unenriched records, derives their fields and writes them back.

    At most one pass runs at a time. A pass requested while another is in
    flight is dropped, not queued, and counted as skipped.
    """

    def __init__(
        self,
        readings: ReadingStore,
        resolver: DeviceConfigResolver,
        enricher: ReadingEnricher,
        batch_size: int = 100,
        strategy: ScanStrategy = ScanStrategy.paged,
        workers: int = 1,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive.")
        self.readings = readings
        self.resolver = resolver
        self.enricher = enricher
        self.batch_size = batch_size
        self.strategy = ScanStrategy(strategy)
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile-record")
        self._pass_lock = Lock()
        self._stats_lock = Lock()
        self._last_report: Optional[PassReport] = None
        self.passes_completed = 0
        self.passes_failed = 0
        self.passes_skipped = 0

    @property
    def is_running(self) -> bool:
        return self._pass_lock.locked()

    @property
    def last_report(self) -> Optional[PassReport]:
        with self._stats_lock:
            if self._last_report is None:
                return None
            return self._last_report.model_copy(deep=True)

    def run_pass(self) -> PassReport:
        """Run one pass, or report ``skipped`` if a pass is already running."""
        pass_id = str(uuid4())
        started_at = datetime.now(timezone.utc)
        if not self._pass_lock.acquire(blocking=False):
            logger.info(
                "Skipping reconciliation pass; previous pass still running.",
                extra={"pass_id": pass_id, "status": PassStatus.skipped.value},
            )
            report = PassReport(
                pass_id=pass_id,
                status=PassStatus.skipped,
                strategy=self.strategy,
                started_at=started_at,
                finished_at=started_at,
                duration_ms=0,
            )
            self._record(report)
            return report

        try:
            report = self._execute_pass(pass_id, started_at)
        finally:
            self._pass_lock.release()
        self._record(report)
        return report

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _record(self, report: PassReport) -> None:
        with self._stats_lock:
            if report.status is PassStatus.skipped:
                self.passes_skipped += 1
                return
            if report.status is PassStatus.completed:
                self.passes_completed += 1
            else:
                self.passes_failed += 1
            self._last_report = report

    def _execute_pass(self, pass_id: str, started_at: datetime) -> PassReport:
        start_time = time.perf_counter()
        counters = _PassCounters()
        status = PassStatus.completed
        error: Optional[str] = None
        logger.info(
            "Starting reconciliation pass.",
            extra={"pass_id": pass_id, "strategy": self.strategy.value},
        )

        try:
            if self.strategy is ScanStrategy.exhaustive:
                self._process_page(pass_id, self.readings.find_unenriched(), counters)
            else:
                self._process_paged(pass_id, counters)
        except StoreUnavailable as exc:
            status = PassStatus.failed
            error = str(exc)
            logger.error(
                "Reconciliation pass aborted: %s",
                exc,
                extra={"pass_id": pass_id, "status": status.value},
            )

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        report = PassReport(
            pass_id=pass_id,
            status=status,
            strategy=self.strategy,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            duration_ms=duration_ms,
            scanned=counters.scanned,
            updated=counters.updated,
            unchanged=counters.unchanged,
            skipped_no_config=counters.skipped_no_config,
            failed_records=counters.failed_records,
            channel_issues=counters.channel_issues,
            error=error,
        )
        logger.info(
            "Reconciliation pass finished. Total updated: %d",
            counters.updated,
            extra={
                "pass_id": pass_id,
                "status": status.value,
                "scanned": counters.scanned,
                "updated": counters.updated,
                "unchanged": counters.unchanged,
                "skipped": counters.skipped_no_config,
                "failed": counters.failed_records,
                "duration_ms": duration_ms,
            },
        )
        return report

    def _process_paged(self, pass_id: str, counters: _PassCounters) -> None:
        # Records updated by this pass leave the eligible set, so the offset
        # only moves past the ones that are still eligible.
        offset = 0
        while True:
            page = self.readings.find_unenriched(skip=offset, limit=self.batch_size)
            if not page:
                break
            logger.debug(
                "Processing %d records (batch).",
                len(page),
                extra={"pass_id": pass_id, "offset": offset},
            )
            offset += self._process_page(pass_id, page, counters)

    def _process_page(
        self, pass_id: str, page: List[DeviceReading], counters: _PassCounters
    ) -> int:
        """Derive and write one page; returns how many of its records remain eligible."""
        counters.scanned += len(page)
        prepared = list(self.executor.map(partial(self._prepare, pass_id), page))

        updates: List[ReadingUpdate] = []
        for item in prepared:
            counters.channel_issues += item.issue_count
            if item.outcome is _Outcome.staged and item.update is not None:
                updates.append(item.update)
            elif item.outcome is _Outcome.unchanged:
                counters.unchanged += 1
            elif item.outcome is _Outcome.skipped:
                counters.skipped_no_config += 1
            else:
                counters.failed_records += 1

        if updates:
            applied = self.readings.bulk_update(updates)
            counters.updated += applied
            logger.info(
                "Batch updated %d records.",
                applied,
                extra={"pass_id": pass_id, "row_count": applied},
            )

        return sum(1 for item in prepared if item.reading.is_unenriched)

    def _prepare(self, pass_id: str, reading: DeviceReading) -> _PreparedRecord:
        context = {
            "pass_id": pass_id,
            "record_id": reading.record_id,
            "device_id": reading.device_id,
        }
        try:
            config = self.resolver.resolve(reading.device_id)
            enrichment = self.enricher.enrich(reading, config)
        except ConfigNotFound:
            logger.warning("No device settings found; skipping record.", extra=context)
            return _PreparedRecord(reading=reading, outcome=_Outcome.skipped)
        except StoreUnavailable:
            raise
        except Exception as exc:  # per-record failures never abort the pass
            logger.warning(
                "Skipping record: %s",
                exc,
                extra={**context, "reason": type(exc).__name__},
                exc_info=not isinstance(exc, ReconciliationError),
            )
            return _PreparedRecord(reading=reading, outcome=_Outcome.failed)

        for issue in enrichment.issues:
            logger.warning(
                "Could not derive field: %s",
                issue.reason,
                extra={**context, "channel": issue.channel, "reason": issue.reason},
            )

        update = reading.pending_changes(enrichment.update)
        if update.is_empty:
            return _PreparedRecord(
                reading=reading,
                outcome=_Outcome.unchanged,
                issue_count=len(enrichment.issues),
            )

        reading.apply(update)
        return _PreparedRecord(
            reading=reading,
            outcome=_Outcome.staged,
            update=update,
            issue_count=len(enrichment.issues),
        )


@lru_cache
def build_default_runner(
    workers: Optional[int] = None,
    strategy: Optional[str] = None,
) -> ReconciliationRunner:
    """Factory that wires the runner with the configured stores."""
    settings = get_settings()
    resolver = DeviceConfigResolver(build_default_settings_store())
    return ReconciliationRunner(
        readings=build_default_readings_store(),
        resolver=resolver,
        enricher=ReadingEnricher(),
        batch_size=settings.reconcile_batch_size,
        strategy=ScanStrategy(strategy or settings.scan_strategy),
        workers=workers or settings.reconciler_workers,
    )
