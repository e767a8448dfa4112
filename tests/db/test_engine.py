"""Engine lifecycle and the session_scope unit of work."""

import pytest

from giving_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from giving_kernel.domain.payment_methods import PaymentMethod
from giving_kernel.exceptions import PaymentMethodNotFoundError
from giving_kernel.services.payment_method_registry import PaymentMethodRegistry

CHEQUE = PaymentMethod(code="cheque", name="Cheque", requires_gateway_session=False)


@pytest.fixture
def memory_engine():
    reset_engine()
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


def test_uninitialized_engine_raises():
    reset_engine()

    with pytest.raises(RuntimeError):
        get_engine()
    with pytest.raises(RuntimeError):
        get_session()


def test_session_scope_commits(memory_engine, clock):
    with session_scope() as session:
        PaymentMethodRegistry(session, clock).sync([CHEQUE])

    with session_scope() as session:
        registry = PaymentMethodRegistry(session, clock)
        assert registry.get_by_code("cheque").name == "Cheque"
        assert [m.code for m in registry.list_active()] == ["cheque"]


def test_session_scope_rolls_back_on_error(memory_engine, clock):
    with pytest.raises(RuntimeError):
        with session_scope() as session:
            PaymentMethodRegistry(session, clock).sync([CHEQUE])
            raise RuntimeError("usher closed the drawer")

    with session_scope() as session:
        with pytest.raises(PaymentMethodNotFoundError):
            PaymentMethodRegistry(session, clock).get_by_code("cheque")


def test_deactivated_methods_leave_active_list(memory_engine, clock):
    with session_scope() as session:
        registry = PaymentMethodRegistry(session, clock)
        registry.sync([CHEQUE])
        registry.deactivate("cheque")

        assert registry.list_active() == []
        assert not registry.get_by_code("cheque").is_active
