"""
RecurringPlanScheduler -- materializes recurring gifts on their due dates.

Contract:
    ``run_due(now)`` charges every active plan whose ``next_due_date`` has
    arrived: it creates a transaction through the ledger and opens a
    gateway session for it.  The result arrives later through ledger
    events, which ``handle_event`` folds back into the plan.

Architecture: giving_batch/services.  Calls the kernel's TransactionLedger
    and GatewaySessionManager; the kernel never calls back into this module
    except through EventPublisher subscriptions.

Invariants enforced:
    - One charge per cycle: a plan with a transaction in flight is not
      charged again until that transaction settles or fails for good.
    - Cadence is anchored: ``next_due_date`` is recomputed from
      ``start_date`` and the cycle number, never from the time a tick or a
      callback happened to run.
    - Only final transaction failures count toward the pause threshold;
      retryable failures are left to the Retry Coordinator.
    - Each plan is processed inside its own SAVEPOINT.
    - All timestamps come from the injected Clock.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from giving_kernel.domain.clock import Clock
from giving_kernel.domain.dtos import GivingRequest, TransactionStatus
from giving_kernel.domain.fee_policy import apply_fee_policy
from giving_kernel.domain.notifications import EventKind, EventPublisher, GivingEvent
from giving_kernel.domain.validation import DEFAULT_NETWORKS, validate_giving_request
from giving_kernel.exceptions import (
    GivingKernelError,
    InvalidPlanError,
    InvalidPlanTransitionError,
    PlanNotFoundError,
)
from giving_kernel.logging_config import LogContext, get_logger
from giving_kernel.models.transaction import GivingTransaction
from giving_kernel.services.base import BaseService
from giving_kernel.services.gateway_session_manager import GatewaySessionManager
from giving_kernel.services.ledger_service import TransactionLedger
from giving_kernel.services.payment_method_registry import (
    SYSTEM_ACTOR_ID,
    PaymentMethodRegistry,
)

from giving_batch.domain.recurrence import due_date_for_cycle, first_cycle_after
from giving_batch.domain.types import Frequency, PlanStatus, TickResult
from giving_batch.models.plan import RecurringPlan

logger = get_logger("batch.recurring_scheduler")

DEFAULT_MAX_CONSECUTIVE_FAILURES = 3


class RecurringPlanScheduler(BaseService[RecurringPlan]):
    """
    Creates and drives recurring giving plans.

    Subscribes ``handle_event`` to the publisher it is given, which must be
    the same publisher the ledger reports to.

    Non-goals:
        - NOT a timer: something else (GivingWorker) calls ``run_due``.
        - Does NOT retry failed transactions itself.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        ledger: TransactionLedger,
        session_manager: GatewaySessionManager,
        *,
        registry: PaymentMethodRegistry | None = None,
        publisher: EventPublisher | None = None,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        supported_networks: frozenset[str] = DEFAULT_NETWORKS,
    ):
        super().__init__(session)
        if max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1")
        self._clock = clock
        self._ledger = ledger
        self._sessions = session_manager
        self._registry = registry or PaymentMethodRegistry(session, clock)
        self._publisher = publisher or EventPublisher()
        self._max_failures = max_consecutive_failures
        self._networks = supported_networks
        self._publisher.subscribe(self.handle_event)

    @property
    def pause_reason(self) -> str:
        # A failed attempt is a whole cycle whose retries ran out, not a
        # single failure callback
        return f"{self._max_failures} consecutive failed attempts"

    # -------------------------------------------------------------------------
    # Plan management
    # -------------------------------------------------------------------------

    def create_plan(
        self,
        payer_id: UUID,
        payment_method_id: UUID,
        category_id: UUID,
        amount: int,
        frequency: Frequency | str,
        start_date: datetime,
        *,
        end_date: datetime | None = None,
        max_payments: int | None = None,
        phone_number: str | None = None,
        network: str | None = None,
        description: str | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> RecurringPlan:
        """
        Register a standing donation.  The first charge is due on
        ``start_date``.

        Raises:
            InvalidPlanError: unknown frequency, end before start,
                max_payments < 1, or a method without gateway capability.
            InvalidAmountError: amount outside the method's limits.
            InvalidGivingRequestError: missing or malformed phone/network.
        """
        try:
            frequency = Frequency(frequency)
        except ValueError as exc:
            raise InvalidPlanError("frequency", f"unknown frequency '{frequency}'") from exc
        if end_date is not None and end_date < start_date:
            raise InvalidPlanError("end_date", "must not be before start_date")
        if max_payments is not None and max_payments < 1:
            raise InvalidPlanError("max_payments", "must be at least 1")

        method = self._registry.get_active(payment_method_id)
        if not method.requires_gateway_session:
            raise InvalidPlanError(
                "payment_method",
                f"{method.name} cannot be charged automatically",
            )
        apply_fee_policy(method, amount)
        request = validate_giving_request(
            GivingRequest(
                amount=amount,
                category_id=category_id,
                payment_method_id=payment_method_id,
                phone_number=phone_number,
                network=network,
                description=description,
            ),
            method,
            self._networks,
        )

        now = self._clock.now()
        plan = RecurringPlan(
            payer_id=payer_id,
            category_id=category_id,
            payment_method_id=payment_method_id,
            amount=amount,
            frequency=frequency.value,
            phone_number=request.phone_number,
            network=request.network,
            description=description,
            notes=notes,
            start_date=start_date,
            end_date=end_date,
            next_due_date=start_date,
            cycle_number=0,
            status=PlanStatus.ACTIVE.value,
            is_active=True,
            max_payments=max_payments,
            occurrences=0,
            failure_count=0,
            attempt_count=0,
            created_by_id=actor_id or payer_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(plan)
        self.session.flush()
        logger.info(
            "recurring_plan_created",
            extra={
                "plan_id": str(plan.id),
                "payer_id": str(payer_id),
                "amount": amount,
                "frequency": frequency.value,
                "start_date": start_date,
                "max_payments": max_payments,
            },
        )
        return plan

    def get(self, plan_id: UUID) -> RecurringPlan:
        plan = self.session.get(RecurringPlan, plan_id)
        if plan is None:
            raise PlanNotFoundError(str(plan_id))
        return plan

    def pause_plan(
        self,
        plan_id: UUID,
        reason: str | None = None,
        actor_id: UUID | None = None,
    ) -> RecurringPlan:
        plan = self._lock(plan_id)
        self._transition(plan, PlanStatus.PAUSED, actor_id, pause_reason=reason or "paused by payer")
        return plan

    def resume_plan(self, plan_id: UUID, actor_id: UUID | None = None) -> RecurringPlan:
        """Reactivate a paused plan; the consecutive-failure count starts over."""
        plan = self._lock(plan_id)
        self._transition(
            plan, PlanStatus.ACTIVE, actor_id, pause_reason=None, failure_count=0
        )
        return plan

    def cancel_plan(self, plan_id: UUID, actor_id: UUID | None = None) -> RecurringPlan:
        plan = self._lock(plan_id)
        self._transition(plan, PlanStatus.CANCELLED, actor_id)
        return plan

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def run_due(self, now: datetime | None = None) -> TickResult:
        """Charge every active plan that is due at ``now``."""
        now = now or self._clock.now()
        completed = self._complete_ended_plans(now)

        due = self.session.execute(
            select(RecurringPlan)
            .where(
                RecurringPlan.status == PlanStatus.ACTIVE.value,
                RecurringPlan.next_due_date <= now,
            )
            .order_by(RecurringPlan.next_due_date)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        charged: list[tuple[UUID, UUID]] = []
        waiting: list[UUID] = []
        errors: list[tuple[UUID, str]] = []

        for plan in due:
            plan_id = plan.id
            savepoint = self.session.begin_nested()
            try:
                with LogContext.bind(plan_id=plan_id, payer_id=plan.payer_id):
                    outcome = self._process_due_plan(plan, now)
            except GivingKernelError as exc:
                savepoint.rollback()
                logger.warning(
                    "recurring_plan_charge_error",
                    extra={"plan_id": str(plan_id), "error_code": exc.code, "error": str(exc)},
                )
                errors.append((plan_id, exc.code))
                continue
            savepoint.commit()

            if isinstance(outcome, UUID):
                charged.append((plan_id, outcome))
            elif outcome == "completed":
                completed.append(plan_id)
            else:
                waiting.append(plan_id)

        result = TickResult(
            as_of=now,
            charged=tuple(charged),
            completed_plans=tuple(completed),
            waiting_plans=tuple(waiting),
            errors=tuple(errors),
        )
        logger.info(
            "recurring_tick_completed",
            extra={
                "due_count": len(due),
                "charged_count": result.charged_count,
                "completed_count": len(result.completed_plans),
                "waiting_count": len(result.waiting_plans),
                "error_count": len(result.errors),
            },
        )
        return result

    def _complete_ended_plans(self, now: datetime) -> list[UUID]:
        ended = self.session.execute(
            select(RecurringPlan)
            .where(
                RecurringPlan.status.in_([PlanStatus.ACTIVE.value, PlanStatus.PAUSED.value]),
                RecurringPlan.end_date.is_not(None),
                RecurringPlan.end_date < now,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        for plan in ended:
            with LogContext.bind(plan_id=plan.id):
                self._complete(plan, "end date passed")
        return [plan.id for plan in ended]

    def _process_due_plan(self, plan: RecurringPlan, now: datetime) -> UUID | str:
        if plan.in_flight_transaction_id is not None:
            tx = self._ledger.get(plan.in_flight_transaction_id)
            if not self._settle_from_ledger(plan, tx):
                logger.info(
                    "recurring_plan_waiting",
                    extra={"transaction_id": str(tx.id), "transaction_status": tx.status},
                )
                return "waiting"
            if plan.status_enum != PlanStatus.ACTIVE or plan.next_due_date > now:
                return "completed" if plan.status_enum == PlanStatus.COMPLETED else "waiting"

        if plan.max_payments is not None and plan.occurrences >= plan.max_payments:
            self._complete(plan, "max payments reached")
            return "completed"

        plan.attempt_count += 1
        tx = self._ledger.create(
            plan.payer_id,
            plan.payment_method_id,
            plan.category_id,
            plan.amount,
            plan.description,
            reference=self._cycle_reference(plan),
            phone_number=plan.phone_number,
            network=plan.network,
            plan_id=plan.id,
            actor_id=SYSTEM_ACTOR_ID,
        )
        plan.in_flight_transaction_id = tx.id
        plan.updated_at = now
        self._flush("RecurringPlan", plan.id)
        logger.info(
            "recurring_plan_charged",
            extra={
                "transaction_id": str(tx.id),
                "cycle_number": plan.cycle_number,
                "attempt": plan.attempt_count,
                "due_date": plan.next_due_date,
                "amount": plan.amount,
            },
        )
        self._sessions.open_session(tx.id, actor_id=SYSTEM_ACTOR_ID)
        return tx.id

    @staticmethod
    def _cycle_reference(plan: RecurringPlan) -> str:
        # attempt_count survives pause/resume, so a new attempt never reuses
        # the reference of an earlier failed one
        return f"RGP-{plan.id.hex[:16].upper()}-{plan.cycle_number}-{plan.attempt_count}"

    def _settle_from_ledger(self, plan: RecurringPlan, tx: GivingTransaction) -> bool:
        """
        Fold an in-flight transaction's final outcome into the plan when its
        event was never applied.  Returns False while it is still unresolved.
        """
        status = tx.status_enum
        if status == TransactionStatus.COMPLETED:
            self._record_success(plan, tx.processed_at or self._clock.now())
            return True
        if status == TransactionStatus.CANCELLED or (
            status == TransactionStatus.FAILED and tx.next_retry_at is None
        ):
            self._record_failure(plan, tx.failure_reason)
            return True
        return False

    # -------------------------------------------------------------------------
    # Ledger events
    # -------------------------------------------------------------------------

    def handle_event(self, event: GivingEvent) -> None:
        """Apply a ledger outcome to the plan whose cycle it settles."""
        if event.plan_id is None or event.transaction_id is None:
            return
        if event.kind == EventKind.TRANSACTION_COMPLETED:
            is_success = True
        elif event.kind == EventKind.TRANSACTION_CANCELLED or (
            event.kind == EventKind.TRANSACTION_FAILED and event.final
        ):
            is_success = False
        else:
            return

        plan = self._get_for_update(RecurringPlan, event.plan_id)
        if plan is None:
            logger.warning("plan_event_unknown_plan", extra={"plan_id": str(event.plan_id)})
            return
        with LogContext.bind(plan_id=plan.id, transaction_id=event.transaction_id):
            if plan.in_flight_transaction_id != event.transaction_id:
                logger.warning(
                    "plan_event_ignored",
                    extra={
                        "event_kind": event.kind.value,
                        "in_flight_transaction_id": (
                            str(plan.in_flight_transaction_id)
                            if plan.in_flight_transaction_id else None
                        ),
                    },
                )
                return
            if is_success:
                self._record_success(plan, event.occurred_at)
            else:
                self._record_failure(plan, event.reason)

    def _record_success(self, plan: RecurringPlan, paid_at: datetime) -> None:
        plan.occurrences += 1
        plan.last_payment_date = paid_at
        plan.failure_count = 0
        plan.in_flight_transaction_id = None
        plan.updated_at = self._clock.now()

        if plan.status_enum in (PlanStatus.CANCELLED, PlanStatus.COMPLETED):
            self._flush("RecurringPlan", plan.id)
            logger.info("recurring_payment_recorded_after_close", extra={"status": plan.status})
            return

        frequency = Frequency(plan.frequency)
        previous_due = plan.next_due_date
        next_cycle = plan.cycle_number + 1
        catch_up = first_cycle_after(plan.start_date, frequency, paid_at, next_cycle)
        if catch_up > next_cycle:
            skipped = catch_up - next_cycle
            logger.warning(
                "recurring_cycles_skipped",
                extra={"skipped_cycles": skipped, "previous_due_date": previous_due},
            )
            self._publish(
                plan,
                EventKind.PLAN_CYCLE_SKIPPED,
                details={"skipped_cycles": skipped},
            )
        plan.cycle_number = catch_up
        plan.next_due_date = due_date_for_cycle(plan.start_date, frequency, catch_up)
        self._flush("RecurringPlan", plan.id)

        logger.info(
            "recurring_payment_succeeded",
            extra={
                "occurrences": plan.occurrences,
                "previous_due_date": previous_due,
                "next_due_date": plan.next_due_date,
            },
        )

        if plan.max_payments is not None and plan.occurrences >= plan.max_payments:
            self._complete(plan, "max payments reached")
        elif plan.end_date is not None and plan.next_due_date > plan.end_date:
            self._complete(plan, "end date passed")

    def _record_failure(self, plan: RecurringPlan, reason: str | None) -> None:
        plan.failure_count += 1
        plan.in_flight_transaction_id = None
        plan.updated_at = self._clock.now()
        self._flush("RecurringPlan", plan.id)
        logger.warning(
            "recurring_payment_failed",
            extra={
                "failure_count": plan.failure_count,
                "reason": reason,
                "due_date": plan.next_due_date,
            },
        )
        if (
            plan.failure_count >= self._max_failures
            and plan.status_enum == PlanStatus.ACTIVE
        ):
            self._transition(plan, PlanStatus.PAUSED, None, pause_reason=self.pause_reason)
            self._publish(plan, EventKind.PLAN_PAUSED, reason=self.pause_reason)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _lock(self, plan_id: UUID) -> RecurringPlan:
        plan = self._get_for_update(RecurringPlan, plan_id)
        if plan is None:
            raise PlanNotFoundError(str(plan_id))
        return plan

    def _complete(self, plan: RecurringPlan, reason: str) -> None:
        self._transition(plan, PlanStatus.COMPLETED, None)
        self._publish(plan, EventKind.PLAN_COMPLETED, reason=reason)

    def _transition(
        self,
        plan: RecurringPlan,
        target: PlanStatus,
        actor_id: UUID | None,
        **fields,
    ) -> None:
        previous = plan.status
        if not plan.can_transition_to(target.value):
            raise InvalidPlanTransitionError(str(plan.id), previous, target.value)
        plan.status = target.value
        plan.is_active = target == PlanStatus.ACTIVE
        for key, value in fields.items():
            setattr(plan, key, value)
        plan.updated_by_id = actor_id
        plan.updated_at = self._clock.now()
        self._flush("RecurringPlan", plan.id)
        logger.info(
            "recurring_plan_status_changed",
            extra={
                "plan_id": str(plan.id),
                "from_status": previous,
                "to_status": plan.status,
                "failure_count": plan.failure_count,
            },
        )

    def _publish(
        self,
        plan: RecurringPlan,
        kind: EventKind,
        reason: str | None = None,
        details: dict | None = None,
    ) -> None:
        self._publisher.publish(
            GivingEvent(
                kind=kind,
                occurred_at=self._clock.now(),
                plan_id=plan.id,
                payer_id=plan.payer_id,
                amount=plan.amount,
                reason=reason,
                final=True,
                details=details or {},
            )
        )
