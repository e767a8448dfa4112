"""
Tests for EventPublisher delivery.

Kernel subscribers (the recurring scheduler) share the caller's unit of
work and propagate errors; notification sinks are isolated.
"""

from datetime import datetime, timezone

import pytest

from giving_kernel.domain.dtos import GatewayCallback, TransactionStatus
from giving_kernel.domain.notifications import (
    EventKind,
    EventPublisher,
    GivingEvent,
    RecordingSink,
)

from giving_batch.orchestrator import GivingOrchestrator

EVENT = GivingEvent(
    kind=EventKind.TRANSACTION_COMPLETED,
    occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
)


class SmsOutage(Exception):
    pass


def broken_sms_sink(event):
    raise SmsOutage("sms provider unreachable")


class TestEventPublisher:
    def test_isolated_sink_failure_is_logged(self, captured_logs):
        publisher = EventPublisher()
        later = RecordingSink()
        publisher.subscribe(broken_sms_sink, isolated=True)
        publisher.subscribe(later)

        publisher.publish(EVENT)

        assert later.events == [EVENT]
        failures = [
            r for r in captured_logs() if r["message"] == "giving_event_subscriber_failed"
        ]
        assert failures[0]["level"] == "ERROR"
        assert failures[0]["exc_type"] == "SmsOutage"
        assert failures[0]["subscriber"] == "broken_sms_sink"

    def test_kernel_subscriber_failure_propagates(self):
        publisher = EventPublisher()
        publisher.subscribe(broken_sms_sink)

        with pytest.raises(SmsOutage):
            publisher.publish(EVENT)

    def test_unsubscribe_drops_isolation(self):
        publisher = EventPublisher()
        publisher.subscribe(broken_sms_sink, isolated=True)
        publisher.unsubscribe(broken_sms_sink)
        publisher.subscribe(broken_sms_sink)

        with pytest.raises(SmsOutage):
            publisher.publish(EVENT)


def test_settlement_survives_broken_sink(session, gateway, clock, config, payer_id, category_id):
    sink = RecordingSink()
    orch = GivingOrchestrator.from_session(
        session, gateway, clock=clock, config=config,
        subscribers=[broken_sms_sink, sink],
    )
    orch.seed_payment_methods()
    momo = orch.registry.get_by_code("momo")
    tx = orch.ledger.create(
        payer_id, momo.id, category_id, 10000, phone_number="0241234567", network="MTN"
    )
    row = orch.sessions.open_session(tx.id)

    orch.sessions.on_gateway_callback(GatewayCallback.success(row.id, "G1"))

    assert orch.ledger.get(tx.id).status == TransactionStatus.COMPLETED.value
    assert len(sink.of_kind(EventKind.TRANSACTION_COMPLETED)) == 1
