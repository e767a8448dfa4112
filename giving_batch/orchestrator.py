"""
GivingOrchestrator -- DI container for the giving engine.

Contract:
    Wires the payment-method registry, TransactionLedger,
    GatewaySessionManager, RetryCoordinator, RecurringPlanScheduler and
    GivingService onto ONE session, ONE clock and ONE EventPublisher.
    Single place where all giving dependencies are composed.

Architecture: giving_batch (top-level).  The kernel never imports this
    module; callers (API handlers, the worker, tests) build one
    orchestrator per unit of work.

Invariants enforced:
    - Every service receives the same Clock.
    - The ledger, session manager and scheduler share a publisher, so
      ledger outcomes reach the plans they belong to within the same
      database transaction.
    - Policy values come from a GivingConfiguration when one is given.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from giving_kernel.domain.clock import Clock, SystemClock
from giving_kernel.domain.notifications import EventPublisher, GivingEventHandler
from giving_kernel.domain.retry_policy import RetryPolicy
from giving_kernel.domain.validation import DEFAULT_NETWORKS
from giving_kernel.gateway.base import PaymentGateway
from giving_kernel.logging_config import get_logger
from giving_kernel.selectors.session_selector import SessionSelector
from giving_kernel.selectors.transaction_selector import TransactionSelector
from giving_kernel.services.gateway_session_manager import (
    DEFAULT_SESSION_WINDOW,
    GatewaySessionManager,
)
from giving_kernel.services.giving_service import GivingService
from giving_kernel.services.ledger_service import TransactionLedger
from giving_kernel.services.payment_method_registry import (
    SYSTEM_ACTOR_ID,
    PaymentMethodRegistry,
)
from giving_kernel.services.retry_coordinator import RetryCoordinator

from giving_batch.selectors.plan_selector import PlanSelector
from giving_batch.services.recurring_scheduler import (
    DEFAULT_MAX_CONSECUTIVE_FAILURES,
    RecurringPlanScheduler,
)

if TYPE_CHECKING:
    from giving_config.schema import GivingConfiguration

    from giving_batch.services.worker import GivingWorker

logger = get_logger("batch.orchestrator")


class GivingOrchestrator:
    """DI container for the giving engine.

    Contract:
        - ``from_session()`` creates a fully wired orchestrator.
        - ``create_worker()`` returns a GivingWorker that builds a fresh
          orchestrator for every job it runs.

    Non-goals:
        - Does NOT commit or roll back -- the caller owns the session.
        - Does NOT start the worker automatically.
    """

    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway,
        clock: Clock | None = None,
        config: GivingConfiguration | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._config = config
        self._publisher = publisher or EventPublisher()

        if config is not None:
            retry_policy = config.retry_policy()
            session_window = config.gateway.session_window
            max_failures = config.recurring.max_consecutive_failures
            networks = config.network_set
        else:
            retry_policy = RetryPolicy()
            session_window = DEFAULT_SESSION_WINDOW
            max_failures = DEFAULT_MAX_CONSECUTIVE_FAILURES
            networks = DEFAULT_NETWORKS

        self.registry = PaymentMethodRegistry(session, self._clock)
        self.ledger = TransactionLedger(
            session,
            self._clock,
            registry=self.registry,
            retry_policy=retry_policy,
            publisher=self._publisher,
        )
        self.sessions = GatewaySessionManager(
            session,
            self._clock,
            self.ledger,
            gateway,
            registry=self.registry,
            publisher=self._publisher,
            session_window=session_window,
        )
        self.retries = RetryCoordinator(session, self._clock, self.ledger, self.sessions)
        self.scheduler = RecurringPlanScheduler(
            session,
            self._clock,
            self.ledger,
            self.sessions,
            registry=self.registry,
            publisher=self._publisher,
            max_consecutive_failures=max_failures,
            supported_networks=networks,
        )
        self.giving = GivingService(
            session,
            self.ledger,
            self.sessions,
            self.registry,
            supported_networks=networks,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        gateway: PaymentGateway,
        clock: Clock | None = None,
        config: GivingConfiguration | None = None,
        subscribers: Iterable[GivingEventHandler] = (),
    ) -> GivingOrchestrator:
        """Create a fully wired orchestrator.

        Args:
            session: SQLAlchemy session shared by every service.
            gateway: Outbound payment gateway adapter.
            clock: Optional clock for deterministic testing.
            config: Optional configuration; built-in defaults otherwise.
            subscribers: Notification sinks; their failures are logged and
                never abort the unit of work.
        """
        publisher = EventPublisher()
        for handler in subscribers:
            publisher.subscribe(handler, isolated=True)
        return cls(session, gateway, clock=clock, config=config, publisher=publisher)

    def seed_payment_methods(self, actor_id: UUID = SYSTEM_ACTOR_ID) -> None:
        """Upsert the configured payment methods (no-op without a configuration)."""
        if self._config is None:
            return
        self.registry.sync_from_config(self._config, actor_id=actor_id)

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def create_worker(
        self,
        session_factory: Callable[[], Session],
        tick_interval_seconds: int | None = None,
        subscribers: Iterable[GivingEventHandler] = (),
    ) -> GivingWorker:
        """Create a GivingWorker wired with this orchestrator's dependencies."""
        from giving_batch.services.worker import GivingWorker

        gateway = self._gateway
        clock = self._clock
        config = self._config
        handlers = tuple(subscribers)

        def orchestrator_factory(session: Session) -> GivingOrchestrator:
            return GivingOrchestrator.from_session(
                session, gateway, clock=clock, config=config, subscribers=handlers
            )

        if tick_interval_seconds is None:
            tick_interval_seconds = (
                config.worker.tick_interval_seconds if config is not None else 60
            )
        return GivingWorker(
            session_factory=session_factory,
            orchestrator_factory=orchestrator_factory,
            clock=clock,
            tick_interval_seconds=tick_interval_seconds,
        )

    # -------------------------------------------------------------------------
    # Selectors
    # -------------------------------------------------------------------------

    def transactions(self) -> TransactionSelector:
        return TransactionSelector(self._session)

    def gateway_sessions(self) -> SessionSelector:
        return SessionSelector(self._session)

    def plans(self) -> PlanSelector:
        return PlanSelector(self._session)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def publisher(self) -> EventPublisher:
        return self._publisher

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway
