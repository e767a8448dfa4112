"""
Module: giving_kernel.models.gateway_session
Responsibility: ORM persistence for the live handshake with the external
    mobile-money rail for exactly one transaction attempt.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - amount and transaction_id are fixed at creation (db/immutability.py).
    - A retry is a brand-new session row; terminal sessions never reopen.
    - Sessions are never deleted.

State machine:
    INITIATED -> PENDING | COMPLETED | FAILED | EXPIRED
    PENDING   -> COMPLETED | FAILED | EXPIRED
    COMPLETED, FAILED, EXPIRED: terminal
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from giving_kernel.db.base import TrackedBase, UUIDString
from giving_kernel.db.types import MinorUnits
from giving_kernel.domain.dtos import TERMINAL_SESSION_STATUSES, SessionStatus

SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.INITIATED: frozenset({
        SessionStatus.PENDING,
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.EXPIRED,
    }),
    SessionStatus.PENDING: frozenset({
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.EXPIRED,
    }),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}


class GatewaySession(TrackedBase):
    __tablename__ = "gateway_sessions"

    __table_args__ = (
        Index("idx_gateway_session_tx", "transaction_id"),
        Index("idx_gateway_session_expiry", "status", "expires_at"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("giving_transactions.id"), nullable=False
    )

    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    network: Mapped[str | None] = mapped_column(String(30), nullable=True)
    amount: Mapped[MinorUnits] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.INITIATED.value
    )
    # Transaction retry_count at the time this session was opened
    retry_count: Mapped[int] = mapped_column(nullable=False, default=0)

    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    gateway_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gateway_tx_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Raw payloads kept for reconciliation
    raw_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    raw_callback: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> SessionStatus:
        return SessionStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_SESSION_STATUSES

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at < now

    def can_transition_to(self, target: SessionStatus) -> bool:
        return target in SESSION_TRANSITIONS.get(self.status_enum, frozenset())

    def __repr__(self) -> str:
        return f"<GatewaySession {self.id} {self.status} tx={self.transaction_id}>"
