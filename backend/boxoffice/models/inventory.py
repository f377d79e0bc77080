"""
Concession items and their append-only stock history.

stock_quantity is NULL for items that are not tracked. The CHECK constraints
make the arithmetic of every history row and the non-negative stock level
database invariants rather than application conventions.
"""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, func,
)

from boxoffice.db.base import Base, TimestampMixin

CHANGE_TYPES = ("initial", "sale", "restock", "adjustment")


class ConcessionItem(Base, TimestampMixin):
    __tablename__ = "concession_items"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(50), nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    track_inventory = Column(Boolean, nullable=False, default=False)
    stock_quantity = Column(Integer, nullable=True)
    low_stock_threshold = Column(Integer, nullable=False, default=10)

    __table_args__ = (
        CheckConstraint("stock_quantity IS NULL OR stock_quantity >= 0", name="check_stock_non_negative"),
        CheckConstraint("price >= 0", name="check_concession_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<ConcessionItem(id={self.id}, name={self.name}, stock={self.stock_quantity})>"


class InventoryHistory(Base):
    __tablename__ = "inventory_history"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False)
    item_id = Column(Integer, ForeignKey("concession_items.id"), nullable=False)
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    change_amount = Column(Integer, nullable=False)
    change_type = Column(String(20), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    created_by = Column(Integer, nullable=True)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "previous_quantity + change_amount = new_quantity",
            name="check_inventory_history_arithmetic",
        ),
        CheckConstraint(
            "change_type IN ('initial', 'sale', 'restock', 'adjustment')",
            name="check_inventory_history_change_type",
        ),
        Index("ix_inventory_history_item_created", "item_id", "created_at"),
    )
