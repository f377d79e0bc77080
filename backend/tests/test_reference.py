"""
Tests for booking reference generation, collision handling and retirement.
"""

import pytest

from boxoffice.core.exceptions import NotFoundError, ReferenceExhausted, ValidationError
from boxoffice.models import RetiredReference
from boxoffice.services import booking_service
from boxoffice.services.reference_service import (
    REFERENCE_ALPHABET, generate_reference, random_reference, reference_in_use,
)

from tests.conftest import ORG_ID
from tests.test_bookings import book, booking_request


def scripted(*codes):
    """A draw function that hands out `codes` in order."""
    it = iter(codes)
    return lambda: next(it)


def test_random_reference_uses_unambiguous_alphabet():
    for _ in range(200):
        code = random_reference()
        assert len(code) == 8
        assert set(code) <= set(REFERENCE_ALPHABET)

    for confusable in "0O1IL":
        assert confusable not in REFERENCE_ALPHABET


@pytest.mark.asyncio
async def test_collision_draws_again(session_factory, catalog):
    existing = await book(session_factory, booking_request(catalog), reference_draw=scripted("TAKEN234"))

    async with session_factory() as db:
        assert existing.booking_reference == "TAKEN234"
        code = await generate_reference(db, draw=scripted("TAKEN234", "TAKEN234", "FRESH567"))
        assert code == "FRESH567"


@pytest.mark.asyncio
async def test_gives_up_after_bounded_attempts(session_factory, catalog):
    await book(session_factory, booking_request(catalog), reference_draw=scripted("TAKEN234"))

    async with session_factory() as db:
        with pytest.raises(ReferenceExhausted) as exc_info:
            await generate_reference(db, draw=lambda: "TAKEN234", max_attempts=3)
        assert exc_info.value.details == {"attempts": 3}


@pytest.mark.asyncio
async def test_exhaustion_fails_the_booking_cleanly(session_factory, catalog):
    await book(session_factory, booking_request(catalog), reference_draw=scripted("TAKEN234"))

    with pytest.raises(ReferenceExhausted):
        await book(session_factory, booking_request(catalog, seats=("A2",)), reference_draw=lambda: "TAKEN234")

    # A2 is still free
    booking = await book(session_factory, booking_request(catalog, seats=("A2",)))
    assert booking.status == "pending"


@pytest.mark.asyncio
async def test_retired_codes_are_never_reissued(session_factory, catalog):
    booking = await book(session_factory, booking_request(catalog))

    async with session_factory() as db:
        db.add(RetiredReference(reference="OLDCODE2", booking_id=booking.id))
        await db.commit()

        assert await reference_in_use(db, "OLDCODE2")
        code = await generate_reference(db, draw=scripted("OLDCODE2", "NEWCODE3"))
        assert code == "NEWCODE3"


@pytest.mark.asyncio
async def test_lowercase_draws_are_normalized(db_session, catalog):
    code = await generate_reference(db_session, draw=lambda: " abcd2345 ")
    assert code == "ABCD2345"


@pytest.mark.asyncio
async def test_regenerate_retires_each_previous_reference(session_factory, catalog):
    booking = await book(session_factory, booking_request(catalog), reference_draw=scripted("FIRST234"))

    async with session_factory() as db:
        updated, retired = await booking_service.regenerate_reference(
            db, booking.id, ORG_ID, draw=scripted("SECOND23"),
        )
        assert (retired, updated.booking_reference) == ("FIRST234", "SECOND23")

        updated, retired = await booking_service.regenerate_reference(
            db, booking.id, ORG_ID, draw=scripted("FIRST234", "SECOND23", "THIRD234"),
        )
        assert (retired, updated.booking_reference) == ("SECOND23", "THIRD234")

        found = await booking_service.get_booking_by_reference(db, ORG_ID, "third234")
        assert found.id == booking.id

        for old in ("FIRST234", "SECOND23"):
            with pytest.raises(NotFoundError) as exc_info:
                await booking_service.get_booking_by_reference(db, ORG_ID, old)
            assert exc_info.value.details["retired"] is True


@pytest.mark.asyncio
async def test_unknown_reference_is_not_found(db_session, catalog):
    with pytest.raises(NotFoundError) as exc_info:
        await booking_service.get_booking_by_reference(db_session, ORG_ID, "NOPE2345")
    assert "retired" not in exc_info.value.details


@pytest.mark.asyncio
async def test_cannot_regenerate_reference_of_cancelled_booking(session_factory, catalog):
    booking = await book(session_factory, booking_request(catalog))

    async with session_factory() as db:
        await booking_service.cancel_booking(db, booking.id, ORG_ID)
        with pytest.raises(ValidationError):
            await booking_service.regenerate_reference(db, booking.id, ORG_ID)
