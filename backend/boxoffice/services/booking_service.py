"""
Booking orchestrator.

CONCURRENCY STRATEGY: One transaction, conditional writes, bounded retry
========================================================================

Problem:
  A booking touches five shared resources: seats, concession stock, a promo
  counter, a loyalty balance and the reference space. Checking each one in
  application code and writing later loses updates under load, and a failure
  halfway through (last hot dog sold, promo just exhausted) must not leave
  seats held or points spent.

Solution:
  Every step runs inside the caller's single transaction and each one
  enforces its own invariant at the database:

  1. Seats      INSERT booked_seats, backed by a partial unique index
  2. Stock      UPDATE ... WHERE stock_quantity >= :qty
  3. Promo      UPDATE ... WHERE current_uses < max_uses
  4. Loyalty    UPDATE ... WHERE loyalty_points >= :cost, plus a ledger row
  5. Reference  random draw checked against live and retired codes, backed
                by unique constraints

  Any typed failure (SeatUnavailable, InsufficientStock, PromoExhausted, ...)
  rolls the whole transaction back and is returned to the caller as is; it is
  never retried, because trying again cannot make a sold seat free.

  Serialization failures, deadlocks and lock timeouts (and unique-key races
  on the reference or idempotency key) say nothing about the cart, only
  about timing. Those roll back and retry with exponential backoff up to
  BOOKING_MAX_RETRIES, then surface as ConcurrencyConflict.

Discount stacking:
  Promo first, applied to the subtotal. The loyalty reward second, applied to
  what is left. The total never goes below zero.

Idempotency:
  A request carrying an Idempotency-Key stores the key and a fingerprint of
  its payload on the booking. A repeat with the same key and payload returns
  the committed booking without running anything; the same key with a
  different payload is rejected. Two racing first attempts collide on
  uq_booking_idempotency_key and the loser's retry finds the winner.

Status changes:
  pending -> paid -> confirmed/activated -> used, with cancelled reachable
  from any state before used and expired from pending. Each transition is an
  UPDATE ... WHERE status = :current, its own transaction.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.exceptions import (
    ConcurrencyConflict, DomainError, InvalidTransition, NotFoundError, ValidationError,
)
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import booking_latency, record_booking_attempt, record_transition
from boxoffice.db.unit_of_work import run_in_transaction
from boxoffice.models.booking import Booking, BookingConcession, RetiredReference
from boxoffice.models.catalog import SeatLayout, Showtime
from boxoffice.models.inventory import ConcessionItem
from boxoffice.models.loyalty import LoyaltyReward
from boxoffice.schemas.booking import BookingCreate
from boxoffice.services.inventory_service import decrement_stock
from boxoffice.services.loyalty_service import earn, get_reward, redeem, reverse_booking_points
from boxoffice.services.notification_service import enqueue_event
from boxoffice.services.pricing import ZERO, to_money
from boxoffice.services.promo_service import apply_promo, as_utc, resolve_promo_code
from boxoffice.services.reference_service import generate_reference, normalize_reference, random_reference
from boxoffice.services.seat_service import PricedSeat, get_booking_seats, release_seats, reserve_seats

logger = get_logger(__name__)
settings = get_settings()

TRANSITIONS = {
    "pending": {"paid", "cancelled", "expired"},
    "paid": {"confirmed", "activated", "cancelled"},
    "confirmed": {"activated", "used", "cancelled"},
    "activated": {"used", "cancelled"},
}
TERMINAL_STATUSES = ("cancelled", "used", "expired")

bookings = Booking.__table__


@dataclass(frozen=True)
class BookingOutcome:
    booking: Booking
    replayed: bool = False


@dataclass(frozen=True)
class PricedConcession:
    item: ConcessionItem
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return to_money(Decimal(str(self.item.price)) * self.quantity)


def request_fingerprint(request: BookingCreate, customer_id: Optional[int]) -> str:
    payload = request.model_dump(mode="json")
    payload["customer_id"] = customer_id
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Catalog validation
# ---------------------------------------------------------------------------

async def _load_showtime(db: AsyncSession, organization_id: int, showtime_id: int, now: datetime) -> Showtime:
    showtime = await db.get(Showtime, showtime_id)
    if not showtime or showtime.organization_id != organization_id:
        raise ValidationError(f"Showtime {showtime_id} not found", showtime_id=showtime_id)
    if showtime.status != "scheduled":
        raise ValidationError(f"Showtime {showtime_id} is {showtime.status}", showtime_id=showtime_id)
    if as_utc(showtime.starts_at) <= now:
        raise ValidationError(f"Showtime {showtime_id} has already started", showtime_id=showtime_id)
    return showtime


async def _price_seats(db: AsyncSession, showtime: Showtime, request: BookingCreate) -> list[PricedSeat]:
    wanted = [(seat.row_label.strip().upper(), seat.seat_number) for seat in request.seats]
    if len(set(wanted)) != len(wanted):
        raise ValidationError("The same seat was requested more than once", showtime_id=showtime.id)

    result = await db.execute(select(SeatLayout).where(SeatLayout.screen_id == showtime.screen_id))
    layout = {(seat.row_label, seat.seat_number): seat for seat in result.scalars().all()}

    unknown = [f"{row}{number}" for row, number in wanted if (row, number) not in layout]
    if unknown:
        raise ValidationError(f"Unknown seats: {', '.join(unknown)}", seats=unknown)

    blocked = [
        f"{row}{number}"
        for row, number in wanted
        if layout[(row, number)].seat_type == "blocked" or not layout[(row, number)].is_available
    ]
    if blocked:
        raise ValidationError(f"Seats cannot be sold: {', '.join(blocked)}", seats=blocked)

    priced = []
    for row, number in wanted:
        seat_type = layout[(row, number)].seat_type
        priced.append(
            PricedSeat(
                row_label=row,
                seat_number=number,
                seat_type=seat_type,
                price=to_money(showtime.price_for(seat_type)),
            )
        )
    return priced


async def _price_concessions(
    db: AsyncSession,
    organization_id: int,
    request: BookingCreate,
) -> list[PricedConcession]:
    item_ids = [line.item_id for line in request.concessions]
    if len(set(item_ids)) != len(item_ids):
        raise ValidationError("Each concession item may appear only once", item_ids=item_ids)

    lines = []
    for line in request.concessions:
        item = await db.get(ConcessionItem, line.item_id)
        if not item or item.organization_id != organization_id:
            raise ValidationError(f"Concession item {line.item_id} not found", item_id=line.item_id)
        if not item.is_available:
            raise ValidationError(f"{item.name} is not available", item_id=line.item_id)
        lines.append(PricedConcession(item=item, quantity=line.quantity))
    return lines


async def _reward_free_item_value(db: AsyncSession, reward: LoyaltyReward, cheapest_seat: Decimal) -> Optional[Decimal]:
    if reward.reward_type == "free_ticket":
        return cheapest_seat
    if reward.reward_type == "free_concession" and reward.concession_item_id is not None:
        item = await db.get(ConcessionItem, reward.concession_item_id)
        return to_money(item.price) if item else None
    return None


async def _confirmation_payload(db: AsyncSession, booking: Booking) -> dict:
    seats = await get_booking_seats(db, booking.id)
    return {
        "booking_id": booking.id,
        "booking_reference": booking.booking_reference,
        "customer_id": booking.customer_id,
        "customer_email": booking.customer_email,
        "showtime_id": booking.showtime_id,
        "seats": [seat.label for seat in seats if seat.is_active],
        "subtotal": str(booking.subtotal),
        "discount_amount": str(booking.discount_amount),
        "total_amount": str(booking.total_amount),
    }


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

async def _find_by_idempotency_key(db: AsyncSession, organization_id: int, key: str) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).where(
            Booking.organization_id == organization_id,
            Booking.idempotency_key == key,
        )
    )
    return result.scalar_one_or_none()


async def _execute_booking(
    db: AsyncSession,
    request: BookingCreate,
    organization_id: int,
    customer_id: Optional[int],
    shift_id: Optional[int],
    idempotency_key: Optional[str],
    fingerprint: str,
    reference_draw: Callable[[], str],
) -> Booking:
    now = datetime.now(timezone.utc)

    showtime = await _load_showtime(db, organization_id, request.showtime_id, now)
    seats = await _price_seats(db, showtime, request)
    concessions = await _price_concessions(db, organization_id, request)

    reward = None
    if request.loyalty_reward_id is not None:
        if customer_id is None:
            raise ValidationError("A loyalty reward requires a customer", reward_id=request.loyalty_reward_id)
        reward = await get_reward(db, organization_id, request.loyalty_reward_id)

    promo = None
    if request.promo_code:
        promo = await resolve_promo_code(db, organization_id, request.promo_code)

    subtotal = to_money(sum((seat.price for seat in seats), ZERO) + sum((line.line_total for line in concessions), ZERO))
    cheapest_seat = min(seat.price for seat in seats)

    reference = await generate_reference(db, draw=reference_draw)
    status = "paid" if request.channel == "box_office" else "pending"

    booking = Booking(
        organization_id=organization_id,
        customer_id=customer_id,
        showtime_id=showtime.id,
        status=status,
        channel=request.channel,
        booking_reference=reference,
        customer_email=request.customer_email,
        subtotal=subtotal,
        promo_discount_amount=ZERO,
        loyalty_discount_amount=ZERO,
        discount_amount=ZERO,
        total_amount=subtotal,
        promo_code_id=promo.id if promo else None,
        loyalty_reward_id=reward.id if reward else None,
        shift_id=shift_id,
        idempotency_key=idempotency_key,
        request_fingerprint=fingerprint,
        paid_at=now if status == "paid" else None,
    )
    db.add(booking)
    await db.flush()

    await reserve_seats(db, booking.id, showtime.id, seats)

    for line in concessions:
        await decrement_stock(db, line.item.id, line.quantity, booking_id=booking.id)
        db.add(
            BookingConcession(
                booking_id=booking.id,
                concession_item_id=line.item.id,
                quantity=line.quantity,
                unit_price=to_money(line.item.price),
                line_total=line.line_total,
            )
        )

    promo_discount = ZERO
    if promo:
        application = await apply_promo(db, promo.id, subtotal, free_item_value=cheapest_seat, now=now)
        promo_discount = application.discount_amount

    loyalty_discount = ZERO
    if reward:
        free_item_value = await _reward_free_item_value(db, reward, cheapest_seat)
        loyalty_discount = await redeem(
            db, organization_id, customer_id, reward, booking.id, subtotal - promo_discount, free_item_value,
        )

    discount = promo_discount + loyalty_discount
    booking.promo_discount_amount = promo_discount
    booking.loyalty_discount_amount = loyalty_discount
    booking.discount_amount = discount
    booking.total_amount = max(subtotal - discount, ZERO)
    booking.points_redeemed = reward.points_required if reward else 0

    if customer_id is not None:
        booking.points_earned = await earn(db, organization_id, customer_id, booking.id, booking.total_amount)

    await db.flush()
    if status == "paid":
        enqueue_event(db, organization_id, "booking_confirmed", await _confirmation_payload(db, booking))

    await db.flush()
    await db.refresh(booking)
    return booking


async def create_booking(
    db: AsyncSession,
    request: BookingCreate,
    *,
    organization_id: int,
    customer_id: Optional[int] = None,
    shift_id: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    reference_draw: Callable[[], str] = random_reference,
) -> BookingOutcome:
    """
    Create a booking as one atomic unit of work: seats, concessions, promo,
    loyalty redeem and earn, reference. Either all of it commits or none of it.
    """
    fingerprint = request_fingerprint(request, customer_id)

    async def work() -> BookingOutcome:
        if idempotency_key:
            existing = await _find_by_idempotency_key(db, organization_id, idempotency_key)
            if existing:
                if existing.request_fingerprint != fingerprint:
                    raise ValidationError(
                        "Idempotency key was already used with a different request",
                        idempotency_key=idempotency_key,
                    )
                logger.info("booking_replayed", booking_id=existing.id, idempotency_key=idempotency_key)
                return BookingOutcome(booking=existing, replayed=True)

        booking = await _execute_booking(
            db, request, organization_id, customer_id, shift_id, idempotency_key, fingerprint, reference_draw,
        )
        return BookingOutcome(booking=booking)

    with booking_latency.time():
        try:
            outcome = await run_in_transaction(db, "booking", work)
        except DomainError as e:
            record_booking_attempt(e.code)
            logger.info("booking_rejected", showtime_id=request.showtime_id, error=e.code, details=e.details)
            raise

    if outcome.replayed:
        record_booking_attempt("replayed")
        return outcome

    booking = outcome.booking
    record_booking_attempt("success")
    logger.info(
        "booking_created",
        booking_id=booking.id,
        reference=booking.booking_reference,
        organization_id=organization_id,
        customer_id=customer_id,
        showtime_id=booking.showtime_id,
        seats=len(request.seats),
        status=booking.status,
        total=str(booking.total_amount),
    )
    return outcome


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

async def _transition(
    db: AsyncSession,
    booking_id: int,
    organization_id: int,
    target: str,
    customer_id: Optional[int] = None,
    **values,
) -> Booking:
    booking = await get_booking(db, booking_id, organization_id, customer_id=customer_id)
    current = booking.status
    if target not in TRANSITIONS.get(current, set()):
        raise InvalidTransition(booking_id, current, target)

    result = await db.execute(
        update(bookings)
        .where(bookings.c.id == booking_id, bookings.c.status == current)
        .values(status=target, **values)
    )
    if result.rowcount == 0:
        # Another transaction moved the booking after we read it
        fresh = await get_booking(db, booking_id, organization_id)
        raise InvalidTransition(booking_id, fresh.status, target)

    record_transition(target)
    logger.info("booking_transitioned", booking_id=booking_id, previous=current, status=target)
    return await get_booking(db, booking_id, organization_id)


async def _reverse_loyalty(db: AsyncSession, booking: Booking) -> None:
    if settings.CANCELLATION_REVERSES_LOYALTY and booking.customer_id is not None:
        await reverse_booking_points(db, booking.organization_id, booking.customer_id, booking.id)


async def confirm_payment(db: AsyncSession, booking_id: int, organization_id: int) -> Booking:
    """Payment authorized for an online booking: pending -> paid."""
    async def work() -> Booking:
        booking = await _transition(db, booking_id, organization_id, "paid", paid_at=datetime.now(timezone.utc))
        enqueue_event(db, organization_id, "booking_confirmed", await _confirmation_payload(db, booking))
        return booking

    return await run_in_transaction(db, "confirm_payment", work)


async def confirm_booking(db: AsyncSession, booking_id: int, organization_id: int) -> Booking:
    async def work() -> Booking:
        return await _transition(db, booking_id, organization_id, "confirmed")

    return await run_in_transaction(db, "confirm_booking", work)


async def activate_booking(
    db: AsyncSession,
    booking_id: int,
    organization_id: int,
    staff_id: int,
    shift_id: Optional[int] = None,
) -> Booking:
    """Box office hands over tickets for an online booking."""
    values = {"activated_at": datetime.now(timezone.utc), "activated_by": staff_id}
    if shift_id is not None:
        values["shift_id"] = shift_id

    async def work() -> Booking:
        return await _transition(db, booking_id, organization_id, "activated", **values)

    return await run_in_transaction(db, "activate_booking", work)


async def mark_used(db: AsyncSession, booking_id: int, organization_id: int) -> Booking:
    async def work() -> Booking:
        return await _transition(db, booking_id, organization_id, "used")

    return await run_in_transaction(db, "mark_used", work)


async def expire_booking(db: AsyncSession, booking_id: int, organization_id: int) -> Booking:
    """Unpaid booking timed out: pending -> expired, seats go back on sale."""
    async def work() -> Booking:
        booking = await _transition(db, booking_id, organization_id, "expired")
        await release_seats(db, booking.id)
        await _reverse_loyalty(db, booking)
        return booking

    return await run_in_transaction(db, "expire_booking", work)


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    organization_id: int,
    reason: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> Booking:
    """
    Cancel from any state before `used`. Seats are released; concession
    stock and promo usage stay as they are; loyalty is reversed when
    CANCELLATION_REVERSES_LOYALTY is set. Pass customer_id to restrict the
    cancellation to that customer's own booking.
    """
    async def work() -> Booking:
        booking = await _transition(
            db, booking_id, organization_id, "cancelled",
            customer_id=customer_id,
            cancelled_at=datetime.now(timezone.utc),
            cancellation_reason=reason,
        )
        released = [seat.label for seat in await get_booking_seats(db, booking.id) if seat.is_active]
        await release_seats(db, booking.id)
        await _reverse_loyalty(db, booking)
        enqueue_event(
            db,
            organization_id,
            "booking_cancelled",
            {
                "booking_id": booking.id,
                "booking_reference": booking.booking_reference,
                "customer_email": booking.customer_email,
                "showtime_id": booking.showtime_id,
                "seats": released,
                "reason": reason,
            },
        )
        return booking

    return await run_in_transaction(db, "cancel_booking", work)


async def regenerate_reference(
    db: AsyncSession,
    booking_id: int,
    organization_id: int,
    draw: Callable[[], str] = random_reference,
) -> tuple[Booking, str]:
    """
    Issue a fresh reference for a booking and retire the current one for good.
    Returns (booking, retired_reference).
    """
    async def work() -> tuple[Booking, str]:
        booking = await get_booking(db, booking_id, organization_id)
        if booking.status in TERMINAL_STATUSES:
            raise ValidationError(
                f"Cannot regenerate the reference of a {booking.status} booking",
                booking_id=booking_id,
                status=booking.status,
            )

        old_reference = booking.booking_reference
        new_reference = await generate_reference(db, draw=draw)

        db.add(RetiredReference(reference=old_reference, booking_id=booking.id))
        result = await db.execute(
            update(bookings)
            .where(bookings.c.id == booking_id, bookings.c.booking_reference == old_reference)
            .values(booking_reference=new_reference)
        )
        if result.rowcount == 0:
            raise ConcurrencyConflict("Booking reference changed concurrently", booking_id=booking_id)
        await db.flush()
        return await get_booking(db, booking_id, organization_id), old_reference

    booking, old_reference = await run_in_transaction(db, "regenerate_reference", work)
    logger.info(
        "reference_regenerated",
        booking_id=booking_id,
        retired=old_reference,
        reference=booking.booking_reference,
    )
    return booking, old_reference


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_booking(
    db: AsyncSession,
    booking_id: int,
    organization_id: int,
    customer_id: Optional[int] = None,
) -> Booking:
    booking = await db.get(Booking, booking_id, populate_existing=True)
    if (
        not booking
        or booking.organization_id != organization_id
        or (customer_id is not None and booking.customer_id != customer_id)
    ):
        raise NotFoundError(f"Booking {booking_id} not found", booking_id=booking_id)
    return booking


async def get_booking_by_reference(db: AsyncSession, organization_id: int, reference: str) -> Booking:
    code = normalize_reference(reference)
    result = await db.execute(
        select(Booking).where(
            Booking.organization_id == organization_id,
            Booking.booking_reference == code,
        )
    )
    booking = result.scalar_one_or_none()
    if booking:
        return booking

    retired = await db.execute(select(RetiredReference.id).where(RetiredReference.reference == code))
    if retired.scalar_one_or_none() is not None:
        raise NotFoundError(f"Reference {code} has been replaced", reference=code, retired=True)
    raise NotFoundError(f"Reference {code} not found", reference=code)


async def get_booking_concessions(db: AsyncSession, booking_id: int) -> list[BookingConcession]:
    result = await db.execute(
        select(BookingConcession)
        .where(BookingConcession.booking_id == booking_id)
        .order_by(BookingConcession.id)
    )
    return list(result.scalars().all())


async def list_customer_bookings(db: AsyncSession, organization_id: int, customer_id: int) -> list[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.organization_id == organization_id, Booking.customer_id == customer_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())
