"""
PaymentMethodRegistry -- persisted payment rails.

Responsibility:
    Upserts payment methods from configuration and hands out frozen
    ``PaymentMethod`` values to the ledger and the giving facade.

Architecture position:
    Kernel > Services.  The only writer of the ``payment_methods`` table.
"""

from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from giving_kernel.domain.clock import Clock, SystemClock
from giving_kernel.domain.payment_methods import PaymentMethod
from giving_kernel.exceptions import PaymentMethodInactiveError, PaymentMethodNotFoundError
from giving_kernel.logging_config import get_logger
from giving_kernel.models.payment_method import PaymentMethodModel
from giving_kernel.services.base import BaseService

logger = get_logger("services.payment_method_registry")

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


class PaymentMethodRegistry(BaseService[PaymentMethodModel]):
    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def sync(
        self,
        methods: Iterable[PaymentMethod],
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[PaymentMethod]:
        """Insert or update methods by code. Methods not listed are left alone."""
        synced: list[PaymentMethod] = []
        now = self._clock.now()
        for method in methods:
            row = self.session.execute(
                select(PaymentMethodModel).where(PaymentMethodModel.code == method.code)
            ).scalar_one_or_none()
            created = row is None
            if row is None:
                row = PaymentMethodModel(
                    code=method.code,
                    created_by_id=actor_id,
                    created_at=now,
                )
                self.session.add(row)
            else:
                row.updated_by_id = actor_id
            row.name = method.name
            row.description = method.description
            row.requires_gateway_session = method.requires_gateway_session
            row.requires_account_number = method.requires_account_number
            row.fee_type = method.fee_schedule.fee_type.value
            row.fee_value = method.fee_schedule.value
            row.min_amount = method.min_amount
            row.max_amount = method.max_amount
            row.currency = method.currency
            row.is_active = method.is_active
            row.updated_at = now
            self.session.flush()
            logger.info(
                "payment_method_synced",
                extra={
                    "method_code": method.code,
                    "inserted": created,
                    "requires_gateway_session": method.requires_gateway_session,
                },
            )
            synced.append(row.to_domain())
        return synced

    def sync_from_config(self, config, actor_id: UUID = SYSTEM_ACTOR_ID) -> list[PaymentMethod]:
        """Upsert every method of a ``GivingConfiguration``."""
        return self.sync(config.domain_payment_methods(), actor_id=actor_id)

    def get(self, method_id: UUID) -> PaymentMethod:
        row = self.session.get(PaymentMethodModel, method_id)
        if row is None:
            raise PaymentMethodNotFoundError(str(method_id))
        return row.to_domain()

    def get_active(self, method_id: UUID) -> PaymentMethod:
        method = self.get(method_id)
        if not method.is_active:
            raise PaymentMethodInactiveError(method.code)
        return method

    def get_by_code(self, code: str) -> PaymentMethod:
        row = self.session.execute(
            select(PaymentMethodModel).where(PaymentMethodModel.code == code)
        ).scalar_one_or_none()
        if row is None:
            raise PaymentMethodNotFoundError(code)
        return row.to_domain()

    def list_active(self) -> list[PaymentMethod]:
        rows = self.session.execute(
            select(PaymentMethodModel)
            .where(PaymentMethodModel.is_active.is_(True))
            .order_by(PaymentMethodModel.code)
        ).scalars()
        return [row.to_domain() for row in rows]

    def deactivate(self, code: str, actor_id: UUID = SYSTEM_ACTOR_ID) -> PaymentMethod:
        row = self.session.execute(
            select(PaymentMethodModel).where(PaymentMethodModel.code == code)
        ).scalar_one_or_none()
        if row is None:
            raise PaymentMethodNotFoundError(code)
        row.is_active = False
        row.updated_by_id = actor_id
        row.updated_at = self._clock.now()
        self.session.flush()
        logger.info("payment_method_deactivated", extra={"method_code": code})
        return row.to_domain()
