"""
Commit-or-retry wrapper for every write that touches contended rows.

Bookings, status changes, stock movements and loyalty adjustments all go
through run_in_transaction, so a serialization failure or lock timeout on a
hot seat, stock or account row always reaches the caller as the retryable
ConcurrencyConflict rather than a bare driver error.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.exceptions import ConcurrencyConflict, DomainError, InternalError
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import db_retries
from boxoffice.db.errors import is_integrity_error, is_retryable, sqlstate_of

logger = get_logger(__name__)
settings = get_settings()

MAX_RETRY_ATTEMPTS = settings.BOOKING_MAX_RETRIES

T = TypeVar("T")


async def run_in_transaction(db: AsyncSession, action: str, work: Callable[[], Awaitable[T]]) -> T:
    """
    Run `work` and commit. Typed domain errors roll back and propagate;
    transient database conflicts roll back and run `work` again.
    """
    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        try:
            result = await work()
            await db.commit()
            return result
        except DomainError:
            await db.rollback()
            raise
        except DBAPIError as e:
            await db.rollback()
            if not (is_retryable(e) or is_integrity_error(e)):
                logger.error(f"{action}_failed", error=str(e), sqlstate=sqlstate_of(e))
                raise InternalError(f"{action} failed unexpectedly") from e

            db_retries.inc()
            logger.info(
                "booking_retry",
                action=action,
                attempt=attempt,
                sqlstate=sqlstate_of(e),
                reason=type(e).__name__,
            )
            if attempt < MAX_RETRY_ATTEMPTS:
                await asyncio.sleep(settings.BOOKING_RETRY_BACKOFF_SECONDS * 2 ** (attempt - 1))
        except Exception as e:
            await db.rollback()
            logger.exception(f"{action}_failed", error=str(e))
            raise InternalError(f"{action} failed unexpectedly") from e

    logger.warning("booking_retries_exhausted", action=action, attempts=MAX_RETRY_ATTEMPTS)
    raise ConcurrencyConflict(
        "Request failed due to high demand. Please try again.",
        attempts=MAX_RETRY_ATTEMPTS,
    )
