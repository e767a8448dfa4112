"""
ORM-Level Immutability Enforcement for giving records.

===============================================================================
WHY THIS EXISTS
===============================================================================

A gift, once recorded, is a financial record.  Its amounts and identity
never change after insert, a settled (terminal) transaction is frozen, and
nothing is ever deleted.  Corrections are new refund/adjustment rows that
reference the original.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
These listeners inspect attribute history and raise
ImmutabilityViolationError before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() ---------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Frozen fields                          | Delete
--------------------|----------------------------------------|--------
GivingTransaction   | amounts, currency, payer, method,      | never
                    | category, reference, type, original;   |
                    | EVERYTHING once status is terminal     |
GatewaySession      | transaction_id, amount, currency;      | never
                    | EVERYTHING once status is terminal     |

updated_at, updated_by_id and version are audit metadata and may always
change.

===============================================================================
USAGE
===============================================================================

    from giving_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from giving_kernel.exceptions import ImmutabilityViolationError
from giving_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id", "version"})

TRANSACTION_FROZEN_FIELDS = frozenset({
    "gross_amount",
    "fee_amount",
    "net_amount",
    "currency",
    "payer_id",
    "payment_method_id",
    "category_id",
    "reference",
    "transaction_type",
    "original_transaction_id",
})

SESSION_FROZEN_FIELDS = frozenset({
    "transaction_id",
    "amount",
    "currency",
})


def _block(entity_type: str, entity_id, operation: str, reason: str, field=None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _previous_status(target) -> str | None:
    """Status as it was in the database before this flush."""
    hist = get_history(target, "status")
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return None


def _check_frozen_fields(target, entity_type: str, frozen: frozenset[str]):
    for key in frozen:
        if get_history(target, key).has_changes():
            _block(
                entity_type,
                target.id,
                "UPDATE",
                f"Cannot modify field '{key}' after creation",
                field=key,
            )


def _check_terminal_frozen(target, entity_type: str, terminal_values: frozenset[str]):
    previous = _previous_status(target)
    if previous is None:
        return
    previous = getattr(previous, "value", previous)
    if previous not in terminal_values:
        return
    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                entity_type,
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on {previous} {entity_type}",
                field=attr.key,
            )


def _check_transaction_immutability(mapper, connection, target):
    from giving_kernel.models.transaction import TERMINAL_STATUSES

    _check_frozen_fields(target, "GivingTransaction", TRANSACTION_FROZEN_FIELDS)
    _check_terminal_frozen(
        target,
        "GivingTransaction",
        frozenset(s.value for s in TERMINAL_STATUSES),
    )


def _check_transaction_delete(mapper, connection, target):
    _block(
        "GivingTransaction",
        target.id,
        "DELETE",
        "Giving transactions are financial records and cannot be deleted",
    )


def _check_session_immutability(mapper, connection, target):
    from giving_kernel.domain.dtos import TERMINAL_SESSION_STATUSES

    _check_frozen_fields(target, "GatewaySession", SESSION_FROZEN_FIELDS)
    _check_terminal_frozen(
        target,
        "GatewaySession",
        frozenset(s.value for s in TERMINAL_SESSION_STATUSES),
    )


def _check_session_delete(mapper, connection, target):
    _block(
        "GatewaySession",
        target.id,
        "DELETE",
        "Gateway sessions cannot be deleted",
    )


def register_immutability_listeners():
    """Register all immutability enforcement event listeners (idempotent)."""
    from giving_kernel.models.gateway_session import GatewaySession
    from giving_kernel.models.transaction import GivingTransaction

    for target, event_name, fn in _listener_table(GivingTransaction, GatewaySession):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _listener_table(transaction_cls, session_cls):
    return (
        (transaction_cls, "before_update", _check_transaction_immutability),
        (transaction_cls, "before_delete", _check_transaction_delete),
        (session_cls, "before_update", _check_session_immutability),
        (session_cls, "before_delete", _check_session_delete),
    )
