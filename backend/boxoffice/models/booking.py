"""
Booking aggregate: the booking row, its seats, its concession lines, and the
references it has given up.

Key design decisions:
- A partial unique index over (showtime_id, row_label, seat_number) restricted
  to active seats is the final guarantee against double-booking. Cancelling a
  booking flips is_active so the seat can be sold again.
- booking_reference is unique platform-wide; retired references live in their
  own table with their own unique constraint and are never reissued.
- (organization_id, idempotency_key) is unique so a replayed request can only
  ever commit one booking.
"""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String,
    UniqueConstraint, func, text,
)

from boxoffice.db.base import Base, TimestampMixin

BOOKING_STATUSES = ("pending", "paid", "confirmed", "activated", "cancelled", "used", "expired")


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    customer_id = Column(Integer, nullable=True, index=True)  # null for walk-in sales
    showtime_id = Column(Integer, ForeignKey("showtimes.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")
    channel = Column(String(20), nullable=False, default="online")  # online, box_office
    booking_reference = Column(String(16), nullable=False, unique=True)
    customer_email = Column(String(255), nullable=True)

    subtotal = Column(Numeric(10, 2), nullable=False)
    promo_discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    loyalty_discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id"), nullable=True)
    loyalty_reward_id = Column(Integer, ForeignKey("loyalty_rewards.id"), nullable=True)
    points_earned = Column(Integer, nullable=False, default=0)
    points_redeemed = Column(Integer, nullable=False, default=0)

    shift_id = Column(Integer, nullable=True)
    idempotency_key = Column(String(255), nullable=True)
    request_fingerprint = Column(String(64), nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    activated_by = Column(Integer, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "idempotency_key", name="uq_booking_idempotency_key"),
        CheckConstraint(
            "status IN ('pending', 'paid', 'confirmed', 'activated', 'cancelled', 'used', 'expired')",
            name="check_booking_status",
        ),
        CheckConstraint("channel IN ('online', 'box_office')", name="check_booking_channel"),
        CheckConstraint("subtotal >= 0", name="check_booking_subtotal_non_negative"),
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        CheckConstraint("discount_amount <= subtotal", name="check_booking_discount_lte_subtotal"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, ref={self.booking_reference}, status={self.status})>"


class BookedSeat(Base):
    __tablename__ = "booked_seats"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    showtime_id = Column(Integer, ForeignKey("showtimes.id"), nullable=False)
    row_label = Column(String(5), nullable=False)
    seat_number = Column(Integer, nullable=False)
    seat_type = Column(String(20), nullable=False, default="standard")
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        # At most one active claim per seat per showtime
        Index(
            "uq_booked_seats_active_seat",
            "showtime_id", "row_label", "seat_number",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    @property
    def label(self) -> str:
        return f"{self.row_label}{self.seat_number}"


class BookingConcession(Base):
    __tablename__ = "booking_concessions"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    concession_item_id = Column(Integer, ForeignKey("concession_items.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_booking_concession_quantity_positive"),
    )


class RetiredReference(Base):
    __tablename__ = "retired_references"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(16), nullable=False, unique=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    retired_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
