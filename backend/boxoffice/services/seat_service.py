"""
Seat reservation for a showtime.

CONCURRENCY STRATEGY: Constraint-backed insert
==============================================

Problem:
  Two customers pick seat C7 for the same showtime at the same moment.
  Both check "is C7 free?", both see yes, both insert. Result: double-booking.

Solution:
  The partial unique index uq_booked_seats_active_seat allows only one
  active row per (showtime_id, row_label, seat_number). We still look for
  held seats first so the common case fails fast and names every contested
  seat, but correctness comes from the index: whichever transaction inserts
  second gets an IntegrityError, which becomes SeatUnavailable and aborts
  the caller's whole transaction. No partial seat list is ever returned.

  Releasing a seat (cancellation, expiry) flips is_active to false, which
  takes the row out of the index and makes the seat sellable again.
"""

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.exceptions import SeatUnavailable, ValidationError
from boxoffice.core.logging import get_logger
from boxoffice.db.errors import violates
from boxoffice.models.booking import BookedSeat

logger = get_logger(__name__)

SEAT_INDEX = "uq_booked_seats_active_seat"
SEAT_INDEX_COLUMNS = "booked_seats.showtime_id, booked_seats.row_label, booked_seats.seat_number"


@dataclass(frozen=True)
class PricedSeat:
    row_label: str
    seat_number: int
    seat_type: str
    price: Decimal

    @property
    def label(self) -> str:
        return f"{self.row_label}{self.seat_number}"


async def find_held_seats(
    db: AsyncSession,
    showtime_id: int,
    positions: list[tuple[str, int]],
) -> list[str]:
    result = await db.execute(
        select(BookedSeat.row_label, BookedSeat.seat_number).where(
            BookedSeat.showtime_id == showtime_id,
            BookedSeat.is_active.is_(True),
            or_(*[and_(BookedSeat.row_label == row, BookedSeat.seat_number == number) for row, number in positions]),
        )
    )
    return sorted(f"{row}{number}" for row, number in result.all())


async def reserve_seats(
    db: AsyncSession,
    booking_id: int,
    showtime_id: int,
    seats: list[PricedSeat],
) -> list[BookedSeat]:
    """
    Insert one active BookedSeat per requested seat inside the caller's
    transaction. Raises SeatUnavailable naming the contested seats.
    """
    positions = [(seat.row_label, seat.seat_number) for seat in seats]
    if len(set(positions)) != len(positions):
        raise ValidationError("The same seat was requested more than once", showtime_id=showtime_id)

    held = await find_held_seats(db, showtime_id, positions)
    if held:
        logger.info("seat_conflict", showtime_id=showtime_id, seats=held, stage="precheck")
        raise SeatUnavailable(showtime_id, held)

    booked = []
    for seat in seats:
        row = BookedSeat(
            booking_id=booking_id,
            showtime_id=showtime_id,
            row_label=seat.row_label,
            seat_number=seat.seat_number,
            seat_type=seat.seat_type,
            price=seat.price,
            is_active=True,
        )
        db.add(row)
        try:
            await db.flush()
        except IntegrityError as exc:
            if not violates(exc, SEAT_INDEX, SEAT_INDEX_COLUMNS):
                raise
            # Lost the race to a transaction that committed after our check
            logger.info("seat_conflict", showtime_id=showtime_id, seats=[seat.label], stage="insert")
            raise SeatUnavailable(showtime_id, [seat.label]) from exc
        booked.append(row)

    logger.info("seats_reserved", booking_id=booking_id, showtime_id=showtime_id, count=len(booked))
    return booked


async def release_seats(db: AsyncSession, booking_id: int) -> int:
    result = await db.execute(
        update(BookedSeat)
        .where(BookedSeat.booking_id == booking_id, BookedSeat.is_active.is_(True))
        .values(is_active=False)
    )
    logger.info("seats_released", booking_id=booking_id, count=result.rowcount)
    return result.rowcount


async def get_booking_seats(db: AsyncSession, booking_id: int) -> list[BookedSeat]:
    result = await db.execute(
        select(BookedSeat)
        .where(BookedSeat.booking_id == booking_id)
        .order_by(BookedSeat.row_label, BookedSeat.seat_number)
    )
    return list(result.scalars().all())
