"""
Tests for GivingWorker.

Every job runs in its own session, so these tests seed data in a committed
session, close it, and read results back through a new one.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from giving_kernel.domain.dtos import SessionStatus, TransactionStatus
from giving_kernel.selectors.session_selector import SessionSelector
from giving_kernel.selectors.transaction_selector import TransactionSelector

from giving_batch.domain.types import PlanStatus
from giving_batch.orchestrator import GivingOrchestrator
from giving_batch.selectors.plan_selector import PlanSelector
from giving_batch.services.worker import GivingWorker

PHONE = "0241234567"


@pytest.fixture
def seed(session_factory, gateway, clock, config):
    """Run ``fn(orchestrator)`` in a committed unit of work and return its result."""

    def _seed(fn):
        sess = session_factory()
        try:
            orch = GivingOrchestrator.from_session(sess, gateway, clock=clock, config=config)
            orch.seed_payment_methods()
            result = fn(orch)
            sess.commit()
            return result
        finally:
            sess.close()

    return _seed


@pytest.fixture
def read(session_factory):
    def _read(fn):
        sess = session_factory()
        try:
            return fn(sess)
        finally:
            sess.close()

    return _read


@pytest.fixture
def worker(seed, session_factory, sink):
    return seed(lambda orch: orch.create_worker(session_factory, subscribers=[sink]))


def _open_momo_gift(orch):
    momo = orch.registry.get_by_code("momo")
    tx = orch.ledger.create(
        uuid4(), momo.id, uuid4(), 10000, phone_number=PHONE, network="MTN"
    )
    orch.sessions.open_session(tx.id)
    return tx.id


def _create_monthly_plan(orch):
    momo = orch.registry.get_by_code("momo")
    plan = orch.scheduler.create_plan(
        uuid4(),
        momo.id,
        uuid4(),
        5000,
        "monthly",
        datetime(2024, 1, 1, tzinfo=timezone.utc),
        phone_number=PHONE,
        network="MTN",
    )
    return plan.id


class TestTick:
    def test_idle_tick(self, worker):
        result = worker.tick()

        assert result.ok
        assert result.sweep.expired_count == 0
        assert result.retries.retried_count == 0
        assert result.plans.charged_count == 0

    def test_expiry_then_retry(self, worker, seed, read, clock, gateway):
        tx_id = seed(_open_momo_gift)

        clock.advance(minutes=16)
        first = worker.tick()
        assert first.sweep.expired_count == 1
        assert first.retries.retried_count == 0

        clock.advance(minutes=1)
        second = worker.tick()
        assert second.retries.retried == (tx_id,)

        tx = read(lambda s: TransactionSelector(s).get(tx_id))
        assert tx.status == TransactionStatus.PROCESSING
        assert tx.retry_count == 1
        attempts = read(lambda s: SessionSelector(s).list_for_transaction(tx_id))
        assert [a.status for a in attempts] == [SessionStatus.EXPIRED, SessionStatus.PENDING]
        assert gateway.call_count == 2

    def test_due_plan_is_charged_and_committed(self, worker, seed, read):
        plan_id = seed(_create_monthly_plan)

        result = worker.tick()

        assert result.plans.charged_count == 1
        _, tx_id = result.plans.charged[0]
        plan = read(lambda s: PlanSelector(s).get(plan_id))
        assert plan.status == PlanStatus.ACTIVE
        assert plan.in_flight_transaction_id == tx_id

        # A second tick in the same cycle only waits
        assert worker.tick().plans.waiting_plans == (plan_id,)

    def test_failed_job_does_not_stop_the_others(
        self, seed, session_factory, gateway, clock, config
    ):
        seed(_create_monthly_plan)
        built = []

        def factory(sess):
            built.append(sess)
            if len(built) == 1:
                raise RuntimeError("sweep wiring broken")
            return GivingOrchestrator.from_session(sess, gateway, clock=clock, config=config)

        worker = GivingWorker(session_factory, factory, clock=clock)

        result = worker.tick()

        assert not result.ok
        assert result.failed_jobs == ("expiry_sweep",)
        assert result.sweep is None
        assert result.plans.charged_count == 1

    def test_tick_is_logged(self, worker, captured_logs):
        worker.tick()

        logs = captured_logs()
        summary = [r for r in logs if r["message"] == "worker_tick_completed"]
        assert summary[0]["failed_jobs"] == []
        plan_tick = [r for r in logs if r["message"] == "recurring_tick_completed"]
        assert plan_tick[0]["correlation_id"] == "tick-20240101T090000"


class TestLifecycle:
    @pytest.mark.slow
    def test_start_and_stop(self, worker):
        worker.start()
        assert worker.is_running

        worker.stop(timeout=5)

        assert not worker.is_running

    def test_interval_comes_from_config(self, seed, session_factory, config):
        worker = seed(lambda orch: orch.create_worker(session_factory))

        assert worker._tick_interval == config.worker.tick_interval_seconds
