"""
Tests for GatewaySessionManager -- the handshake with the mobile-money rail.

Covers session opening against the scripted gateway, exactly-once callback
handling, late and conflicting settlements, and the expiry sweep.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from giving_kernel.domain.dtos import (
    CallbackOutcome,
    GatewayCallback,
    PaymentStatus,
    SessionStatus,
    TransactionStatus,
)
from giving_kernel.domain.notifications import EventKind
from giving_kernel.exceptions import (
    DuplicateSettlementError,
    OptimisticLockError,
    SessionAlreadyActiveError,
    SessionExpiredError,
    SessionNotApplicableError,
    SessionNotFoundError,
)


class TestOpenSession:
    def test_acknowledged_charge(self, open_momo_session, gateway, clock):
        tx, row = open_momo_session(10000)

        assert row.status == SessionStatus.PENDING.value
        assert row.amount == tx.gross_amount == 10000
        assert row.expires_at == clock.now() + timedelta(minutes=15)
        assert row.gateway_reference.startswith("GW-")
        assert tx.status == TransactionStatus.PROCESSING.value
        assert tx.payment_status == PaymentStatus.AUTHORIZED.value

        request = gateway.requests[0]
        assert request.session_id == row.id
        assert request.reference == tx.reference
        assert request.amount == 10000
        assert request.currency == "GHS"
        assert request.phone_number == "0241234567"

    def test_gateway_reference_recorded(self, open_momo_session, gateway):
        gateway.script_ack("MP-55")

        _, row = open_momo_session()

        assert row.gateway_reference == "MP-55"

    def test_transient_error_leaves_session_initiated(
        self, open_momo_session, gateway
    ):
        gateway.script_transient("timeout")

        tx, row = open_momo_session()

        assert row.status == SessionStatus.INITIATED.value
        assert tx.status == TransactionStatus.PENDING.value

    def test_permanent_error_fails_both(self, open_momo_session, gateway, sink):
        gateway.script_permanent("invalid_phone_number")

        tx, row = open_momo_session()

        assert row.status == SessionStatus.FAILED.value
        assert row.failure_reason == "invalid_phone_number"
        assert tx.status == TransactionStatus.FAILED.value
        assert tx.next_retry_at is None
        assert sink.of_kind(EventKind.TRANSACTION_FAILED)[0].final

    def test_one_live_session_per_transaction(self, open_momo_session, sessions, gateway):
        gateway.script_transient("timeout")
        tx, row = open_momo_session()

        with pytest.raises(SessionAlreadyActiveError):
            sessions.open_session(tx.id)

    def test_processing_transaction_gets_no_second_session(
        self, open_momo_session, sessions
    ):
        tx, _ = open_momo_session()

        with pytest.raises(SessionNotApplicableError):
            sessions.open_session(tx.id)

    def test_non_gateway_method_rejected(
        self, ledger, sessions, cash, payer_id, category_id
    ):
        tx = ledger.create(payer_id, cash.id, category_id, 1000)

        with pytest.raises(SessionNotApplicableError):
            sessions.open_session(tx.id)


class TestCallbacks:
    def test_duplicate_and_conflicting_settlement(self, open_momo_session, sessions, ledger, sink):
        tx, row = open_momo_session()

        assert sessions.on_gateway_callback(
            GatewayCallback.success(row.id, "G1")
        ) == CallbackOutcome.APPLIED
        assert tx.status == TransactionStatus.COMPLETED.value
        assert tx.payment_status == PaymentStatus.CAPTURED.value
        assert row.status == SessionStatus.COMPLETED.value
        assert row.gateway_tx_id == "G1"
        version = tx.version

        assert sessions.on_gateway_callback(
            GatewayCallback.success(row.id, "G1")
        ) == CallbackOutcome.DUPLICATE_IGNORED
        assert ledger.get(tx.id).version == version

        assert sessions.on_gateway_callback(
            GatewayCallback.success(row.id, "G2")
        ) == CallbackOutcome.CONFLICT_IGNORED
        alerts = sink.of_kind(EventKind.DUPLICATE_CHARGE_ALERT)
        assert alerts[0].details["received_gateway_tx_id"] == "G2"
        assert ledger.get(tx.id).gateway_tx_id == "G1"

        with pytest.raises(DuplicateSettlementError):
            ledger.mark_completed(tx.id, "G2")

    def test_conflict_is_logged_as_error(self, open_momo_session, sessions, captured_logs):
        _, row = open_momo_session()
        sessions.on_gateway_callback(GatewayCallback.success(row.id, "G1"))
        sessions.on_gateway_callback(GatewayCallback.success(row.id, "G2"))

        alerts = [r for r in captured_logs() if r["message"] == "duplicate_settlement_alert"]
        assert alerts[0]["level"] == "ERROR"
        assert alerts[0]["session_id"] == str(row.id)

    def test_failure_callback(self, open_momo_session, sessions, clock):
        tx, row = open_momo_session()

        outcome = sessions.on_gateway_callback(
            GatewayCallback.failure(row.id, "insufficient_funds")
        )

        assert outcome == CallbackOutcome.APPLIED
        assert row.status == SessionStatus.FAILED.value
        assert row.failure_reason == "insufficient_funds"
        assert row.completed_at == clock.now()
        assert tx.status == TransactionStatus.FAILED.value
        assert tx.next_retry_at is None

        assert sessions.on_gateway_callback(
            GatewayCallback.failure(row.id, "insufficient_funds")
        ) == CallbackOutcome.DUPLICATE_IGNORED

    def test_success_on_initiated_session(self, open_momo_session, sessions, gateway):
        # The prompt reached the payer even though the acknowledgement was lost
        gateway.script_transient("timeout")
        tx, row = open_momo_session()

        outcome = sessions.on_gateway_callback(GatewayCallback.success(row.id, "G7"))

        assert outcome == CallbackOutcome.APPLIED
        assert tx.status == TransactionStatus.COMPLETED.value

    def test_success_after_cancellation_needs_review(
        self, open_momo_session, sessions, ledger, sink
    ):
        tx, row = open_momo_session()
        ledger.cancel(tx.id, reason="payer walked away")

        outcome = sessions.on_gateway_callback(GatewayCallback.success(row.id, "G1"))

        assert outcome == CallbackOutcome.LATE_IGNORED
        assert tx.status == TransactionStatus.CANCELLED.value
        assert sink.of_kind(EventKind.LATE_SETTLEMENT_REVIEW)[0].transaction_id == tx.id

    def test_unknown_session(self, sessions):
        with pytest.raises(SessionNotFoundError):
            sessions.on_gateway_callback(GatewayCallback.success(uuid4(), "G1"))

    def test_success_callback_requires_gateway_id(self):
        with pytest.raises(ValueError):
            GatewayCallback(session_id=uuid4(), result="success")


class TestExpiry:
    def test_sweep_expires_exactly_once(self, open_momo_session, sessions, clock):
        tx, row = open_momo_session()
        clock.advance(minutes=16)

        first = sessions.sweep_expired()
        second = sessions.sweep_expired()

        assert first.expired_session_ids == (row.id,)
        assert first.failed_transaction_ids == (tx.id,)
        assert second.expired_count == 0
        assert row.status == SessionStatus.EXPIRED.value
        assert row.failure_reason == "session_expired"
        assert tx.status == TransactionStatus.FAILED.value
        assert tx.failure_reason == "session_expired"
        assert tx.next_retry_at == clock.now() + timedelta(minutes=1)

    def test_session_at_exact_expiry_is_still_live(self, open_momo_session, sessions, clock):
        _, row = open_momo_session()
        clock.advance(minutes=15)

        assert sessions.sweep_expired().expired_count == 0
        assert row.status == SessionStatus.PENDING.value

    def test_late_success_after_sweep(self, open_momo_session, sessions, clock, sink):
        tx, row = open_momo_session()
        clock.advance(minutes=16)
        sessions.sweep_expired()

        outcome = sessions.on_gateway_callback(GatewayCallback.success(row.id, "G9"))

        assert outcome == CallbackOutcome.LATE_IGNORED
        assert row.status == SessionStatus.EXPIRED.value
        assert tx.status == TransactionStatus.FAILED.value
        review = sink.of_kind(EventKind.LATE_SETTLEMENT_REVIEW)[0]
        assert review.details["gateway_tx_id"] == "G9"

    def test_callback_past_expiry_expires_first(self, open_momo_session, sessions, clock):
        tx, row = open_momo_session()
        clock.advance(minutes=16)

        outcome = sessions.on_gateway_callback(GatewayCallback.success(row.id, "G1"))

        assert outcome == CallbackOutcome.LATE_IGNORED
        assert row.status == SessionStatus.EXPIRED.value
        assert tx.status == TransactionStatus.FAILED.value
        assert tx.gateway_tx_id is None

    def test_completed_sessions_are_never_swept(self, open_momo_session, sessions, clock):
        tx, row = open_momo_session()
        sessions.on_gateway_callback(GatewayCallback.success(row.id, "G1"))
        clock.advance(hours=1)

        assert sessions.sweep_expired().expired_count == 0
        assert tx.status == TransactionStatus.COMPLETED.value

    def test_failing_row_does_not_undo_other_expiries(
        self, open_momo_session, sessions, ledger, clock, monkeypatch
    ):
        stuck_tx, stuck = open_momo_session()
        other_tx, other = open_momo_session()
        clock.advance(minutes=16)

        mark_failed = ledger.mark_failed

        def conflicting_mark_failed(transaction_id, reason):
            if transaction_id == stuck_tx.id:
                raise OptimisticLockError("GivingTransaction", str(transaction_id))
            return mark_failed(transaction_id, reason)

        monkeypatch.setattr(ledger, "mark_failed", conflicting_mark_failed)

        result = sessions.sweep_expired()

        assert result.errors == ((stuck.id, "OPTIMISTIC_LOCK_CONFLICT"),)
        assert result.expired_session_ids == (other.id,)
        assert result.failed_transaction_ids == (other_tx.id,)
        assert other.status == SessionStatus.EXPIRED.value
        assert other_tx.status == TransactionStatus.FAILED.value
        assert sessions.get(stuck.id).status == SessionStatus.PENDING.value
        assert ledger.get(stuck_tx.id).status == TransactionStatus.PROCESSING.value

        monkeypatch.undo()
        retry = sessions.sweep_expired()

        assert retry.expired_session_ids == (stuck.id,)
        assert retry.errors == ()


class TestResendPrompt:
    def test_resend_on_live_session(self, open_momo_session, sessions, gateway):
        _, row = open_momo_session()

        sessions.resend_prompt(row.id)

        assert gateway.call_count == 2
        assert row.status == SessionStatus.PENDING.value

    def test_resend_on_expired_session(self, open_momo_session, sessions, clock):
        _, row = open_momo_session()
        clock.advance(minutes=20)

        with pytest.raises(SessionExpiredError):
            sessions.resend_prompt(row.id)

    def test_resend_on_finished_session(self, open_momo_session, sessions):
        _, row = open_momo_session()
        sessions.on_gateway_callback(GatewayCallback.failure(row.id, "user_declined"))

        with pytest.raises(SessionNotApplicableError):
            sessions.resend_prompt(row.id)
