"""
GivingWorker -- in-process polling loop for the periodic giving jobs.

Contract:
    Every tick runs, in order and each in its own session and database
    transaction:
        1. the gateway session expiry sweep,
        2. due transaction retries,
        3. the recurring plan tick.
    A failing job is rolled back and logged; the remaining jobs still run.

Architecture: giving_batch/services.  Builds a fresh GivingOrchestrator per
    job through the injected factory.

Invariants enforced:
    - All timestamps from the injected Clock.
    - A missed tick only delays work: every job recomputes what is due
      from ``now`` on each run.
    - Graceful shutdown: ``stop()`` lets the current tick finish.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy.orm import Session

from giving_kernel.domain.clock import Clock, SystemClock
from giving_kernel.logging_config import LogContext, get_logger
from giving_kernel.services.gateway_session_manager import SweepResult
from giving_kernel.services.retry_coordinator import RetryRunResult

from giving_batch.domain.types import TickResult

if TYPE_CHECKING:
    from giving_batch.orchestrator import GivingOrchestrator

logger = get_logger("batch.worker")


@dataclass(frozen=True)
class WorkerTickResult:
    as_of: datetime
    sweep: SweepResult | None = None
    retries: RetryRunResult | None = None
    plans: TickResult | None = None
    failed_jobs: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failed_jobs


class GivingWorker:
    """Background driver for the expiry sweep, retries and recurring plans.

    Contract:
        - ``tick()`` runs every job once and returns what happened.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election); run one worker
          per database, or rely on row locks to keep concurrent ticks safe.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        orchestrator_factory: Callable[[Session], GivingOrchestrator],
        clock: Clock | None = None,
        tick_interval_seconds: int = 60,
    ):
        self._session_factory = session_factory
        self._orchestrator_factory = orchestrator_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> WorkerTickResult:
        """Run all periodic jobs once (public for testing)."""
        now = self._clock.now()
        failed: list[str] = []

        with LogContext.bind(correlation_id=f"tick-{now:%Y%m%dT%H%M%S}"):
            sweep = self._run_job(
                "expiry_sweep", lambda o: o.sessions.sweep_expired(now), failed
            )
            retries = self._run_job(
                "retry_run", lambda o: o.retries.run_due(now), failed
            )
            plans = self._run_job(
                "recurring_tick", lambda o: o.scheduler.run_due(now), failed
            )

        result = WorkerTickResult(
            as_of=now,
            sweep=sweep,
            retries=retries,
            plans=plans,
            failed_jobs=tuple(failed),
        )
        logger.info(
            "worker_tick_completed",
            extra={
                "expired_sessions": sweep.expired_count if sweep else None,
                "expiry_errors": len(sweep.errors) if sweep else None,
                "retried_transactions": retries.retried_count if retries else None,
                "charged_plans": plans.charged_count if plans else None,
                "failed_jobs": list(failed),
            },
        )
        return result

    def start(self) -> None:
        """Start the worker in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="giving-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info("worker_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_job(
        self,
        job_name: str,
        job: Callable[[GivingOrchestrator], Any],
        failed: list[str],
    ) -> Any:
        session = self._session_factory()
        try:
            result = job(self._orchestrator_factory(session))
            session.commit()
            return result
        except Exception:
            session.rollback()
            logger.exception("worker_job_failed", extra={"job_name": job_name})
            failed.append(job_name)
            return None
        finally:
            session.close()

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("worker_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)
