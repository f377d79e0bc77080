"""
Booking reference generation.

References are short codes people read aloud at the box office, so the
alphabet drops characters that are easy to confuse (0/O, 1/I/L). With 31
symbols and 8 positions the space holds ~8.5e11 codes; a collision is
expected to be vanishingly rare, but it is still handled: each draw is checked
against every live reference and every retired one, and we give up with
ReferenceExhausted after a bounded number of draws.

The existence check only narrows the window. The unique constraints on
bookings.booking_reference and retired_references.reference are what make
two concurrent transactions unable to commit the same code.
"""

import secrets
from typing import Callable

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.exceptions import ReferenceExhausted
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import reference_collisions
from boxoffice.models.booking import Booking, RetiredReference

logger = get_logger(__name__)
settings = get_settings()

REFERENCE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def random_reference(length: int = settings.REFERENCE_LENGTH) -> str:
    return "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))


def normalize_reference(reference: str) -> str:
    return reference.strip().upper()


async def reference_in_use(db: AsyncSession, reference: str) -> bool:
    """True if the code belongs to a booking or was ever retired."""
    query = select(
        or_(
            exists().where(Booking.booking_reference == reference),
            exists().where(RetiredReference.reference == reference),
        )
    )
    return bool((await db.execute(query)).scalar())


async def generate_reference(
    db: AsyncSession,
    draw: Callable[[], str] = random_reference,
    max_attempts: int = settings.REFERENCE_MAX_ATTEMPTS,
) -> str:
    for attempt in range(1, max_attempts + 1):
        candidate = normalize_reference(draw())
        if not await reference_in_use(db, candidate):
            return candidate
        reference_collisions.inc()
        logger.warning("reference_collision", attempt=attempt)

    logger.error("reference_exhausted", attempts=max_attempts)
    raise ReferenceExhausted(max_attempts)
