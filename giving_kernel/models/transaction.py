"""
Module: giving_kernel.models.transaction
Responsibility: ORM persistence for a single monetary movement: a gift
    (payment), a refund marker or an adjustment marker.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - gross_amount == fee_amount + net_amount (CHECK constraint, and the
      amounts are immutable after insert -- see db/immutability.py).
    - Status transitions follow VALID_TRANSITIONS; nothing ever returns to
      PENDING.  A refund or adjustment is a NEW row referencing the original.
    - Concurrent writers are detected through the ``version`` column
      (SQLAlchemy version_id_col) in addition to SELECT ... FOR UPDATE.

State machine (status):
    PENDING    -> PROCESSING | FAILED | CANCELLED
    RETRYING   -> PROCESSING | FAILED | CANCELLED
    PROCESSING -> COMPLETED  | FAILED | CANCELLED
    FAILED     -> RETRYING   (Retry Coordinator, when a retry is due)
    COMPLETED, CANCELLED, REFUNDED: terminal
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from giving_kernel.db.base import TrackedBase, UUIDString
from giving_kernel.db.types import MinorUnits
from giving_kernel.domain.dtos import PaymentStatus, TransactionStatus, TransactionType
from giving_kernel.exceptions import InvalidTransitionError

VALID_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.PROCESSING,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    }),
    TransactionStatus.RETRYING: frozenset({
        TransactionStatus.PROCESSING,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    }),
    TransactionStatus.PROCESSING: frozenset({
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    }),
    TransactionStatus.FAILED: frozenset({
        TransactionStatus.RETRYING,
    }),
    # Terminal states
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES: frozenset[TransactionStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

# Statuses in which a gateway charge may still settle the transaction
OPEN_STATUSES: frozenset[TransactionStatus] = frozenset({
    TransactionStatus.PENDING,
    TransactionStatus.RETRYING,
    TransactionStatus.PROCESSING,
})


class GivingTransaction(TrackedBase):
    """
    One monetary movement with an immutable audit trail.

    ``reference`` is the external idempotency key shown to the gateway and
    the payer.  ``plan_id`` is an opaque link to the recurring plan that
    materialized the transaction (no foreign key: plans live in the batch
    layer).
    """

    __tablename__ = "giving_transactions"

    __table_args__ = (
        CheckConstraint(
            "gross_amount = fee_amount + net_amount",
            name="ck_giving_tx_amounts_balance",
        ),
        CheckConstraint("fee_amount >= 0", name="ck_giving_tx_fee_nonneg"),
        CheckConstraint("retry_count >= 0", name="ck_giving_tx_retry_nonneg"),
        Index("idx_giving_tx_payer", "payer_id", "created_at"),
        Index("idx_giving_tx_status", "status"),
        Index("idx_giving_tx_retry_due", "status", "next_retry_at"),
        Index("idx_giving_tx_original", "original_transaction_id"),
        Index("idx_giving_tx_plan", "plan_id"),
    )

    reference: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    payer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    payment_method_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payment_methods.id"), nullable=False
    )
    category_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    gross_amount: Mapped[MinorUnits] = mapped_column(nullable=False)
    fee_amount: Mapped[MinorUnits] = mapped_column(nullable=False, default=0)
    net_amount: Mapped[MinorUnits] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    transaction_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionType.PAYMENT.value
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Gateway-specific fields
    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    network: Mapped[str | None] = mapped_column(String(30), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    gateway_tx_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Failure and retry bookkeeping
    failure_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    failure_class: Mapped[str | None] = mapped_column(String(20), nullable=True)
    retry_count: Mapped[int] = mapped_column(nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Refund / adjustment link
    original_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("giving_transactions.id"), nullable=True
    )
    plan_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    processed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    @property
    def type_enum(self) -> TransactionType:
        return TransactionType(self.transaction_type)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        """Still able to settle through a gateway charge."""
        return self.status_enum in OPEN_STATUSES

    def validate_transition(self, target: TransactionStatus) -> None:
        """Raise InvalidTransitionError unless ``target`` is a legal next status."""
        allowed = VALID_TRANSITIONS.get(self.status_enum, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(
                str(self.id), self.status_enum.value, target.value
            )

    def __repr__(self) -> str:
        return (
            f"<GivingTransaction {self.reference} {self.status} "
            f"gross={self.gross_amount}>"
        )
