"""
Giving notifications -- events emitted to collaborators.

The ledger, session manager and scheduler publish ``GivingEvent`` values;
subscribers (the recurring scheduler, a notification sink that messages
the payer) receive them synchronously, inside the caller's database
transaction.  Kernel subscribers propagate their errors; sinks subscribed
as isolated only log them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from giving_kernel.logging_config import get_logger

logger = get_logger("domain.notifications")


class EventKind(str, Enum):
    TRANSACTION_COMPLETED = "transaction_completed"
    TRANSACTION_FAILED = "transaction_failed"
    TRANSACTION_CANCELLED = "transaction_cancelled"
    TRANSACTION_REFUNDED = "transaction_refunded"
    PLAN_PAUSED = "plan_paused"  # Counts cycles whose retries were exhausted
    PLAN_COMPLETED = "plan_completed"
    PLAN_CYCLE_SKIPPED = "plan_cycle_skipped"
    LATE_SETTLEMENT_REVIEW = "late_settlement_review"
    DUPLICATE_CHARGE_ALERT = "duplicate_charge_alert"


@dataclass(frozen=True)
class GivingEvent:
    kind: EventKind
    occurred_at: datetime
    transaction_id: UUID | None = None
    plan_id: UUID | None = None
    session_id: UUID | None = None
    payer_id: UUID | None = None
    amount: int | None = None
    reason: str | None = None
    final: bool = False
    details: dict[str, Any] = field(default_factory=dict)


GivingEventHandler = Callable[[GivingEvent], None]


class EventPublisher:
    """
    In-process, synchronous fan-out of giving events.

    Handlers run in subscription order inside the publisher's database
    transaction.  A handler subscribed with ``isolated=True`` (a payer
    notification sink, say) cannot abort that transaction: its exceptions
    are logged and delivery continues.  Exceptions from other handlers
    reach the publisher's caller.
    """

    def __init__(self) -> None:
        self._handlers: list[GivingEventHandler] = []
        self._isolated: list[GivingEventHandler] = []

    def subscribe(self, handler: GivingEventHandler, *, isolated: bool = False) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)
        if isolated and handler not in self._isolated:
            self._isolated.append(handler)

    def unsubscribe(self, handler: GivingEventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)
        if handler in self._isolated:
            self._isolated.remove(handler)

    def publish(self, event: GivingEvent) -> None:
        logger.info(
            "giving_event_published",
            extra={
                "event_kind": event.kind.value,
                "event_transaction_id": event.transaction_id,
                "event_plan_id": event.plan_id,
                "subscriber_count": len(self._handlers),
            },
        )
        for handler in list(self._handlers):
            if handler not in self._isolated:
                handler(event)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "giving_event_subscriber_failed",
                    extra={
                        "event_kind": event.kind.value,
                        "event_transaction_id": event.transaction_id,
                        "subscriber": getattr(handler, "__qualname__", type(handler).__name__),
                    },
                )


class RecordingSink:
    """Subscriber that keeps every event it sees. Used by tests and tooling."""

    def __init__(self) -> None:
        self.events: list[GivingEvent] = []

    def __call__(self, event: GivingEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[GivingEvent]:
        return [e for e in self.events if e.kind == kind]


class LoggingNotificationSink:
    """
    Payer-facing notification stand-in: writes one structured log line per
    event.  A messaging collaborator would replace it in deployment.
    """

    _ALERT_KINDS = frozenset({
        EventKind.DUPLICATE_CHARGE_ALERT,
        EventKind.LATE_SETTLEMENT_REVIEW,
    })

    def __call__(self, event: GivingEvent) -> None:
        log = logger.warning if event.kind in self._ALERT_KINDS else logger.info
        log(
            "payer_notification",
            extra={
                "event_kind": event.kind.value,
                "event_transaction_id": event.transaction_id,
                "event_plan_id": event.plan_id,
                "event_payer_id": event.payer_id,
                "event_reason": event.reason,
                "event_amount": event.amount,
            },
        )
