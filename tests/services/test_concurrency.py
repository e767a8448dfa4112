"""
Two units of work racing on the same transaction.

Each side gets its own session on the shared in-memory engine.  The
in-memory database has a single connection, so one side always commits
before the other begins; that is the ordering the row lock enforces on
PostgreSQL.
"""

from uuid import uuid4

import pytest

from giving_kernel.domain.dtos import GatewayCallback, TransactionStatus
from giving_kernel.exceptions import (
    DuplicateSettlementError,
    OptimisticLockError,
    RefundExceedsOriginalError,
)

from giving_batch.orchestrator import GivingOrchestrator

PHONE = "0241234567"


@pytest.fixture
def unit_of_work(session_factory, gateway, clock, config):
    """Open an orchestrator on a fresh session; returns (orchestrator, session)."""
    opened = []

    def _open():
        sess = session_factory()
        opened.append(sess)
        return GivingOrchestrator.from_session(sess, gateway, clock=clock, config=config), sess

    yield _open
    for sess in opened:
        sess.rollback()
        sess.close()


@pytest.fixture
def processing_gift(unit_of_work):
    orch, sess = unit_of_work()
    orch.seed_payment_methods()
    momo = orch.registry.get_by_code("momo")
    tx = orch.ledger.create(
        uuid4(), momo.id, uuid4(), 10000, phone_number=PHONE, network="MTN"
    )
    row = orch.sessions.open_session(tx.id)
    sess.commit()
    return tx.id, row.id


@pytest.fixture
def completed_gift(unit_of_work, processing_gift):
    tx_id, session_id = processing_gift
    orch, sess = unit_of_work()
    orch.sessions.on_gateway_callback(GatewayCallback.success(session_id, "G1"))
    net = orch.ledger.get(tx_id).net_amount
    sess.commit()
    return tx_id, net


class TestConcurrentRefunds:
    def test_second_refund_sees_first_marker(self, unit_of_work, completed_gift):
        tx_id, net = completed_gift
        treasurer, treasurer_sess = unit_of_work()
        pastor, pastor_sess = unit_of_work()

        # The pastor's desk loaded the original before the treasurer refunded
        assert pastor.ledger.get(tx_id).net_amount == net
        assert pastor.ledger.refunded_total(tx_id) == 0
        pastor_sess.commit()

        treasurer.ledger.refund(tx_id, net - 1000, reason="duplicate gift")
        treasurer_sess.commit()

        with pytest.raises(RefundExceedsOriginalError):
            pastor.ledger.refund(tx_id, 2000, reason="wrong category")

        marker = pastor.ledger.refund(tx_id, 1000, reason="wrong category")
        pastor_sess.commit()

        assert marker.reference.endswith("-R2")
        assert pastor.ledger.refunded_total(tx_id) == net


class TestVersionConflicts:
    def test_settlement_racing_a_settlement(self, unit_of_work, processing_gift):
        tx_id, _ = processing_gift
        webhook, webhook_sess = unit_of_work()
        reconciler, reconciler_sess = unit_of_work()
        assert reconciler.ledger.get(tx_id).status == TransactionStatus.PROCESSING.value
        reconciler_sess.commit()

        webhook.ledger.mark_completed(tx_id, "G1")
        webhook_sess.commit()

        with pytest.raises(DuplicateSettlementError):
            reconciler.ledger.mark_completed(tx_id, "G2")
        assert reconciler.ledger.get(tx_id).gateway_tx_id == "G1"

    def test_stale_write_is_rejected(self, unit_of_work, processing_gift):
        tx_id, _ = processing_gift
        webhook, webhook_sess = unit_of_work()
        reconciler, reconciler_sess = unit_of_work()
        stale = reconciler.ledger.get(tx_id)
        reconciler_sess.commit()

        webhook.ledger.mark_completed(tx_id, "G1")
        webhook_sess.commit()

        stale.failure_reason = "statement_mismatch"
        with pytest.raises(OptimisticLockError):
            reconciler.ledger._flush("GivingTransaction", tx_id)
