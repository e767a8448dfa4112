"""
Pytest fixtures for the giving engine test suite.

Provides:
- An in-memory SQLite database per test (tables created from the ORM
  models, immutability listeners registered, SAVEPOINT support enabled)
- A deterministic clock, a scripted gateway and an event-recording sink
- A fully wired GivingOrchestrator seeded from the packaged configuration
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from giving_kernel.db.base import Base
from giving_kernel.db.engine import enable_sqlite_savepoints, import_all_models
from giving_kernel.db.immutability import register_immutability_listeners
from giving_kernel.domain.clock import DeterministicClock
from giving_kernel.domain.dtos import GivingRequest
from giving_kernel.domain.notifications import RecordingSink
from giving_kernel.gateway.scripted import ScriptedGateway
from giving_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

from giving_batch.orchestrator import GivingOrchestrator
from giving_config import get_active_config

START_TIME = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)

TEST_ACTOR_ID = uuid4()

PHONE_NUMBER = "0241234567"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture giving_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            ...
            logs = captured_logs()
            assert any(r["message"] == "transaction_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("giving_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database; one shared connection for every session."""
    eng = create_engine(
        "sqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    import_all_models()
    Base.metadata.create_all(eng)
    register_immutability_listeners()
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(START_TIME)


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture(scope="session")
def config():
    return get_active_config()


@pytest.fixture
def orchestrator(session, gateway, clock, config, sink):
    orch = GivingOrchestrator.from_session(
        session, gateway, clock=clock, config=config, subscribers=[sink]
    )
    orch.seed_payment_methods(actor_id=TEST_ACTOR_ID)
    return orch


@pytest.fixture
def ledger(orchestrator):
    return orchestrator.ledger


@pytest.fixture
def sessions(orchestrator):
    return orchestrator.sessions


@pytest.fixture
def momo(orchestrator):
    return orchestrator.registry.get_by_code("momo")


@pytest.fixture
def bank(orchestrator):
    return orchestrator.registry.get_by_code("bank")


@pytest.fixture
def cash(orchestrator):
    return orchestrator.registry.get_by_code("cash")


@pytest.fixture
def payer_id():
    return uuid4()


@pytest.fixture
def category_id():
    return uuid4()


# =============================================================================
# Helpers
# =============================================================================


@pytest.fixture
def create_momo_tx(ledger, momo, payer_id, category_id):
    """Record a pending mobile-money gift through the ledger."""

    def _create(amount: int = 10000, **kwargs):
        return ledger.create(
            payer_id,
            momo.id,
            category_id,
            amount,
            phone_number=PHONE_NUMBER,
            network="MTN",
            **kwargs,
        )

    return _create


@pytest.fixture
def open_momo_session(create_momo_tx, sessions):
    """Pending transaction plus an open gateway session for it."""

    def _open(amount: int = 10000):
        tx = create_momo_tx(amount)
        row = sessions.open_session(tx.id)
        return tx, row

    return _open


@pytest.fixture
def momo_request(momo, category_id):
    def _request(amount: int = 10000, **overrides):
        fields = {
            "amount": amount,
            "category_id": category_id,
            "payment_method_id": momo.id,
            "phone_number": PHONE_NUMBER,
            "network": "MTN",
        }
        fields.update(overrides)
        return GivingRequest(**fields)

    return _request

