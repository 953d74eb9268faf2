"""Fixed-interval trigger for reconciliation passes."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from functools import lru_cache
from threading import Event, Thread
from typing import Optional

from app.schemas import PassReport, RunnerStatus
from services.reconciler import ReconciliationRunner, build_default_runner
from settings import get_settings

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Fires a pass attempt every ``interval_seconds`` from a daemon thread.

    Attempts are dispatched to a two-worker pool so a tick that lands during
    a long pass still reaches the runner, which drops it as skipped.
    """

    def __init__(
        self,
        runner: ReconciliationRunner,
        interval_seconds: float,
        enabled: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        self.runner = runner
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.dispatcher = ThreadPoolExecutor(max_workers=2, thread_name_prefix="reconcile-tick")
        self._stop = Event()
        self._thread: Optional[Thread] = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if not self.enabled or self.is_alive:
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name="reconcile-scheduler", daemon=True)
        self._thread.start()
        logger.info("Reconciliation scheduler started (interval=%.1fs).", self.interval_seconds)

    def tick(self) -> Future[Optional[PassReport]]:
        """Dispatch one pass attempt without waiting for it."""
        return self.dispatcher.submit(self._run_guarded)

    def status(self) -> RunnerStatus:
        runner = self.runner
        return RunnerStatus(
            running=runner.is_running,
            scheduler_enabled=self.enabled,
            interval_seconds=self.interval_seconds,
            strategy=runner.strategy,
            batch_size=runner.batch_size,
            passes_completed=runner.passes_completed,
            passes_failed=runner.passes_failed,
            passes_skipped=runner.passes_skipped,
            last_report=runner.last_report,
        )

    def shutdown(self, wait: bool = True) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval_seconds if wait else 0)
            self._thread = None
        self.dispatcher.shutdown(wait=wait, cancel_futures=True)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.tick()

    def _run_guarded(self) -> Optional[PassReport]:
        try:
            return self.runner.run_pass()
        except Exception:
            logger.exception("Reconciliation pass crashed; next tick will retry.")
            return None


@lru_cache
def build_default_scheduler() -> ReconciliationScheduler:
    settings = get_settings()
    return ReconciliationScheduler(
        runner=build_default_runner(),
        interval_seconds=settings.reconcile_interval_seconds,
        enabled=settings.scheduler_enabled,
    )
