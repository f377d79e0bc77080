"""
Promo codes with a capped usage counter.

current_uses is only ever moved by a conditional UPDATE; the CHECK constraint
keeps it within max_uses even if some other writer tried.
"""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, UniqueConstraint,
)

from boxoffice.db.base import Base, TimestampMixin

PROMO_DISCOUNT_TYPES = ("percentage", "fixed", "free_ticket")


class PromoCode(Base, TimestampMixin):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    code = Column(String(40), nullable=False)
    discount_type = Column(String(20), nullable=False, default="percentage")
    discount_value = Column(Numeric(10, 2), nullable=False, default=0)
    max_uses = Column(Integer, nullable=True)  # NULL means unlimited
    current_uses = Column(Integer, nullable=False, default=0)
    min_order_value = Column(Numeric(10, 2), nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_promo_codes_org_code"),
        CheckConstraint("current_uses >= 0", name="check_promo_uses_non_negative"),
        CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses",
            name="check_promo_uses_within_cap",
        ),
        CheckConstraint(
            "discount_type IN ('percentage', 'fixed', 'free_ticket')",
            name="check_promo_discount_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<PromoCode(id={self.id}, code={self.code}, uses={self.current_uses}/{self.max_uses})>"
