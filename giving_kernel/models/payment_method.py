"""
Module: giving_kernel.models.payment_method
Responsibility: ORM persistence for configured payment rails (mobile money,
    bank transfer, cash) with their capability flags, fee schedule and gross
    limits.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Rows are upserted from configuration by PaymentMethodRegistry and read as
frozen ``PaymentMethod`` values through ``to_domain()``.
"""

from sqlalchemy import Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from giving_kernel.db.base import TrackedBase
from giving_kernel.domain.payment_methods import FeeSchedule, FeeType, PaymentMethod


class PaymentMethodModel(TrackedBase):
    __tablename__ = "payment_methods"

    __table_args__ = (
        CheckConstraint("fee_value >= 0", name="ck_payment_method_fee_nonneg"),
        CheckConstraint("min_amount >= 0", name="ck_payment_method_min_nonneg"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Capability flags -- business logic branches on these, never on code
    requires_gateway_session: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    requires_account_number: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    fee_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FeeType.FIXED.value
    )
    # Minor units for fixed fees, basis points for percentage fees
    fee_value: Mapped[int] = mapped_column(nullable=False, default=0)

    min_amount: Mapped[int] = mapped_column(nullable=False, default=1)
    max_amount: Mapped[int | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_domain(self) -> PaymentMethod:
        return PaymentMethod(
            id=self.id,
            code=self.code,
            name=self.name,
            description=self.description,
            requires_gateway_session=self.requires_gateway_session,
            requires_account_number=self.requires_account_number,
            fee_schedule=FeeSchedule(FeeType(self.fee_type), self.fee_value),
            min_amount=self.min_amount,
            max_amount=self.max_amount,
            currency=self.currency,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<PaymentMethod {self.code} active={self.is_active}>"
