"""
Read-only catalog consumed by the booking engine: screens, their seat maps,
and the showtimes scheduled on them.

The engine never writes these tables; it validates requested seats and
prices against them.
"""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String,
    UniqueConstraint,
)

from boxoffice.db.base import Base, TimestampMixin

SEAT_TYPES = ("standard", "vip", "couple", "wheelchair", "blocked")
PREMIUM_SEAT_TYPES = ("vip", "couple")


class Screen(Base, TimestampMixin):
    __tablename__ = "screens"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    rows = Column(Integer, nullable=False)
    seats_per_row = Column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<Screen(id={self.id}, name={self.name})>"


class SeatLayout(Base):
    __tablename__ = "seat_layouts"

    id = Column(Integer, primary_key=True, index=True)
    screen_id = Column(Integer, ForeignKey("screens.id"), nullable=False, index=True)
    row_label = Column(String(5), nullable=False)
    seat_number = Column(Integer, nullable=False)
    seat_type = Column(String(20), nullable=False, default="standard")
    is_available = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("screen_id", "row_label", "seat_number", name="uq_seat_layout_position"),
        CheckConstraint(
            "seat_type IN ('standard', 'vip', 'couple', 'wheelchair', 'blocked')",
            name="check_seat_layout_type",
        ),
    )


class Showtime(Base, TimestampMixin):
    __tablename__ = "showtimes"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    screen_id = Column(Integer, ForeignKey("screens.id"), nullable=False)
    movie_title = Column(String(255), nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    vip_price = Column(Numeric(10, 2), nullable=True)
    status = Column(String(20), nullable=False, default="scheduled")  # scheduled, cancelled

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_showtime_price_non_negative"),
        CheckConstraint("status IN ('scheduled', 'cancelled')", name="check_showtime_status"),
        Index("ix_showtimes_org_starts_at", "organization_id", "starts_at"),
    )

    def price_for(self, seat_type: str):
        if seat_type in PREMIUM_SEAT_TYPES and self.vip_price is not None:
            return self.vip_price
        return self.price

    def __repr__(self) -> str:
        return f"<Showtime(id={self.id}, movie={self.movie_title}, starts_at={self.starts_at})>"
