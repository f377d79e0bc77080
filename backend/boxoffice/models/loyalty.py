"""
Loyalty program: per-organization earn rules, redeemable rewards, customer
accounts and the append-only points ledger.

LoyaltyAccount.loyalty_points is a projection of the ledger. Only the loyalty
service writes it, always in the same transaction as the ledger row that
explains the change, so it equals SUM(loyalty_transactions.points) at every
commit. The CHECK constraint keeps it non-negative.
"""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String,
    UniqueConstraint, func,
)

from boxoffice.db.base import Base, TimestampMixin

REWARD_TYPES = ("discount_percentage", "discount_fixed", "free_ticket", "free_concession")
TRANSACTION_TYPES = ("earned", "redeemed", "welcome_bonus", "adjustment", "expired")


class LoyaltySettings(Base, TimestampMixin):
    __tablename__ = "loyalty_settings"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, unique=True)
    is_enabled = Column(Boolean, nullable=False, default=True)
    points_per_currency_unit = Column(Numeric(6, 2), nullable=False, default=1)
    points_per_booking = Column(Integer, nullable=False, default=0)
    welcome_bonus_points = Column(Integer, nullable=False, default=0)


class LoyaltyReward(Base, TimestampMixin):
    __tablename__ = "loyalty_rewards"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    points_required = Column(Integer, nullable=False)
    reward_type = Column(String(30), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=True)
    concession_item_id = Column(Integer, ForeignKey("concession_items.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("points_required > 0", name="check_reward_points_positive"),
        CheckConstraint(
            "reward_type IN ('discount_percentage', 'discount_fixed', 'free_ticket', 'free_concession')",
            name="check_reward_type",
        ),
    )


class LoyaltyAccount(Base, TimestampMixin):
    __tablename__ = "loyalty_accounts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False)
    customer_id = Column(Integer, nullable=False)
    loyalty_points = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("organization_id", "customer_id", name="uq_loyalty_account_customer"),
        CheckConstraint("loyalty_points >= 0", name="check_loyalty_points_non_negative"),
    )


class LoyaltyTransaction(Base):
    __tablename__ = "loyalty_transactions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False)
    customer_id = Column(Integer, nullable=False)
    points = Column(Integer, nullable=False)
    transaction_type = Column(String(20), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    reward_id = Column(Integer, ForeignKey("loyalty_rewards.id"), nullable=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("points <> 0", name="check_loyalty_transaction_points_non_zero"),
        CheckConstraint(
            "transaction_type IN ('earned', 'redeemed', 'welcome_bonus', 'adjustment', 'expired')",
            name="check_loyalty_transaction_type",
        ),
        Index("ix_loyalty_transactions_customer", "organization_id", "customer_id"),
    )
    # created_at is rendered straight from the flushed row
    __mapper_args__ = {"eager_defaults": True}
