"""
Booking endpoints: atomic creation, status transitions, reference lookup.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.core.exceptions import ValidationError
from boxoffice.core.logging import get_logger
from boxoffice.core.security import Identity, get_current_identity, require_staff
from boxoffice.db.session import get_db, get_session_factory
from boxoffice.models.booking import Booking
from boxoffice.schemas.booking import (
    BookedSeatResponse, BookingActivate, BookingCancel, BookingConcessionResponse, BookingCreate,
    BookingResponse, ReferenceRegenerateResponse,
)
from boxoffice.services import booking_service
from boxoffice.services.notification_service import EventPublisher, dispatch_pending_events, get_event_publisher
from boxoffice.services.seat_service import get_booking_seats

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


async def render_booking(db: AsyncSession, booking: Booking) -> BookingResponse:
    seats = await get_booking_seats(db, booking.id)
    concessions = await booking_service.get_booking_concessions(db, booking.id)
    rendered = BookingResponse.model_validate(booking).model_copy(
        update={
            "seats": [BookedSeatResponse.model_validate(seat) for seat in seats],
            "concessions": [BookingConcessionResponse.model_validate(line) for line in concessions],
        }
    )
    # Release the read transaction before the response goes out
    await db.commit()
    return rendered


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    response: Response,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=255),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """
    Book seats (and optionally concessions, a promo code and a loyalty
    reward) for a showtime in one atomic transaction.

    Send an Idempotency-Key header to make retries safe: a repeat with the
    same key and body returns the original booking with 200 instead of 201.
    """
    if booking_data.channel == "box_office" and not identity.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Box office sales require staff access",
        )

    if identity.is_staff:
        customer_id = booking_data.customer_id
        shift_id = booking_data.shift_id
    else:
        customer_id = identity.user_id
        shift_id = None

    outcome = await booking_service.create_booking(
        db,
        booking_data,
        organization_id=identity.organization_id,
        customer_id=customer_id,
        shift_id=shift_id,
        idempotency_key=idempotency_key,
    )
    if outcome.replayed:
        response.status_code = status.HTTP_200_OK
    else:
        background_tasks.add_task(dispatch_pending_events, session_factory, publisher)
    return await render_booking(db, outcome.booking)


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    customer_id: Optional[int] = Query(None, description="Staff only: whose bookings to list"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's bookings. Staff must say whose bookings to list."""
    if not identity.is_staff:
        target = identity.user_id
    elif customer_id is None:
        raise ValidationError("customer_id is required when staff list bookings")
    else:
        target = customer_id
    bookings = await booking_service.list_customer_bookings(db, identity.organization_id, target)
    return [await render_booking(db, booking) for booking in bookings]


@router.get("/reference/{reference}", response_model=BookingResponse)
async def get_booking_by_reference(
    reference: str,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Box office lookup by the code on the customer's ticket."""
    booking = await booking_service.get_booking_by_reference(db, identity.organization_id, reference)
    return await render_booking(db, booking)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.get_booking(
        db,
        booking_id,
        identity.organization_id,
        customer_id=None if identity.is_staff else identity.user_id,
    )
    return await render_booking(db, booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    body: Optional[BookingCancel] = None,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Cancel a booking and release its seats. Customers may cancel their own."""
    booking = await booking_service.cancel_booking(
        db,
        booking_id,
        identity.organization_id,
        reason=body.reason if body else None,
        customer_id=None if identity.is_staff else identity.user_id,
    )
    background_tasks.add_task(dispatch_pending_events, session_factory, publisher)
    return await render_booking(db, booking)


@router.post("/{booking_id}/payment", response_model=BookingResponse)
async def confirm_payment(
    booking_id: int,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Payment authorized (pending -> paid); queues the confirmation notice."""
    booking = await booking_service.confirm_payment(db, booking_id, identity.organization_id)
    background_tasks.add_task(dispatch_pending_events, session_factory, publisher)
    return await render_booking(db, booking)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.confirm_booking(db, booking_id, identity.organization_id)
    return await render_booking(db, booking)


@router.post("/{booking_id}/activate", response_model=BookingResponse)
async def activate_booking(
    booking_id: int,
    body: Optional[BookingActivate] = None,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Hand over tickets at the box office, tagged with the staff member and shift."""
    booking = await booking_service.activate_booking(
        db,
        booking_id,
        identity.organization_id,
        staff_id=identity.user_id,
        shift_id=body.shift_id if body else None,
    )
    return await render_booking(db, booking)


@router.post("/{booking_id}/use", response_model=BookingResponse)
async def mark_used(
    booking_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.mark_used(db, booking_id, identity.organization_id)
    return await render_booking(db, booking)


@router.post("/{booking_id}/expire", response_model=BookingResponse)
async def expire_booking(
    booking_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.expire_booking(db, booking_id, identity.organization_id)
    return await render_booking(db, booking)


@router.post("/{booking_id}/regenerate-reference", response_model=ReferenceRegenerateResponse)
async def regenerate_reference(
    booking_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Issue a new reference; the old one stops working and is never reissued."""
    booking, retired = await booking_service.regenerate_reference(db, booking_id, identity.organization_id)
    return ReferenceRegenerateResponse(
        booking_id=booking.id,
        booking_reference=booking.booking_reference,
        retired_reference=retired,
    )
