"""
Module: giving_kernel.selectors.session_selector
Responsibility: Read-only queries over gateway sessions.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from giving_kernel.domain.dtos import ACTIVE_SESSION_STATUSES, GatewaySessionView
from giving_kernel.models.gateway_session import GatewaySession
from giving_kernel.selectors.base import BaseSelector

_ACTIVE_VALUES = [s.value for s in ACTIVE_SESSION_STATUSES]


class SessionSelector(BaseSelector[GatewaySession]):
    def get(self, session_id: UUID) -> GatewaySessionView | None:
        row = self.session.get(GatewaySession, session_id)
        return GatewaySessionView.from_model(row) if row is not None else None

    def list_for_transaction(self, transaction_id: UUID) -> list[GatewaySessionView]:
        """Every attempt for one transaction, oldest first."""
        rows = self.session.execute(
            select(GatewaySession)
            .where(GatewaySession.transaction_id == transaction_id)
            .order_by(GatewaySession.retry_count, GatewaySession.created_at)
        ).scalars()
        return [GatewaySessionView.from_model(row) for row in rows]

    def active_for_transaction(self, transaction_id: UUID) -> GatewaySessionView | None:
        row = self.session.execute(
            select(GatewaySession)
            .where(
                GatewaySession.transaction_id == transaction_id,
                GatewaySession.status.in_(_ACTIVE_VALUES),
            )
            .order_by(GatewaySession.created_at.desc())
        ).scalars().first()
        return GatewaySessionView.from_model(row) if row is not None else None

    def list_expired(self, now: datetime) -> list[GatewaySessionView]:
        """Live sessions whose window has closed; the next sweep expires them."""
        rows = self.session.execute(
            select(GatewaySession)
            .where(
                GatewaySession.status.in_(_ACTIVE_VALUES),
                GatewaySession.expires_at < now,
            )
            .order_by(GatewaySession.expires_at)
        ).scalars()
        return [GatewaySessionView.from_model(row) for row in rows]
