"""
Notification events: transactional outbox + Redis pub/sub fan-out.

DELIVERY STRATEGY
=================

What we emit:
  - booking_confirmed: reference, seats, totals (drives the ticket email/PDF)
  - booking_cancelled: reference and released seats
  - low_stock: item and remaining quantity after a sale

How:
  Services call enqueue_event() inside their own transaction, so an event
  exists if and only if the change that caused it committed. After the
  response is sent, dispatch_pending_events() runs as a background task with
  its own session, publishes each pending row to a Redis channel
  ("{prefix}:{event_type}") and marks it dispatched.

Failure:
  A slow or unavailable channel never touches the booking. Failed publishes
  bump `attempts` and keep the row pending until OUTBOX_MAX_ATTEMPTS, after
  which it is parked as `failed` for an operator to look at.
"""

import json
from datetime import datetime, timezone
from typing import Optional, Protocol

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_outbox_dispatch
from boxoffice.models.outbox import OutboxEvent

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None


class NotificationChannelUnavailable(Exception):
    pass


class EventPublisher(Protocol):
    async def publish(self, event_type: str, payload: dict) -> None: ...


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


class RedisEventPublisher:
    def __init__(self, prefix: str = settings.NOTIFICATION_CHANNEL_PREFIX):
        self.prefix = prefix

    async def publish(self, event_type: str, payload: dict) -> None:
        client = await get_redis()
        if client is None:
            raise NotificationChannelUnavailable("Redis is disabled or unreachable")
        await client.publish(f"{self.prefix}:{event_type}", json.dumps(payload, default=str))


def get_event_publisher() -> EventPublisher:
    return RedisEventPublisher()


def enqueue_event(db: AsyncSession, organization_id: int, event_type: str, payload: dict) -> OutboxEvent:
    event = OutboxEvent(
        organization_id=organization_id,
        event_type=event_type,
        payload=payload,
        status="pending",
        attempts=0,
    )
    db.add(event)
    logger.debug("outbox_event_enqueued", event_type=event_type, organization_id=organization_id)
    return event


async def dispatch_pending_events(
    session_factory: async_sessionmaker[AsyncSession],
    publisher: EventPublisher,
    batch_size: int = settings.OUTBOX_BATCH_SIZE,
    max_attempts: int = settings.OUTBOX_MAX_ATTEMPTS,
) -> int:
    """
    Publish pending outbox rows. Returns how many were dispatched.
    Never raises: this runs after commit and must not affect the caller.
    """
    dispatched = 0
    try:
        async with session_factory() as db:
            result = await db.execute(
                select(OutboxEvent)
                .where(OutboxEvent.status == "pending")
                .order_by(OutboxEvent.id)
                .limit(batch_size)
                .with_for_update(skip_locked=True)
            )
            for event in result.scalars().all():
                try:
                    await publisher.publish(event.event_type, event.payload)
                except Exception as e:
                    event.attempts += 1
                    event.last_error = str(e)[:1000]
                    if event.attempts >= max_attempts:
                        event.status = "failed"
                    record_outbox_dispatch(False)
                    logger.warning(
                        "outbox_dispatch_failed",
                        event_id=event.id,
                        event_type=event.event_type,
                        attempts=event.attempts,
                        error=str(e),
                    )
                    continue

                event.status = "dispatched"
                event.attempts += 1
                event.dispatched_at = datetime.now(timezone.utc)
                dispatched += 1
                record_outbox_dispatch(True)
            await db.commit()
    except Exception as e:
        logger.error("outbox_dispatch_error", error=str(e))

    if dispatched:
        logger.info("outbox_dispatched", count=dispatched)
    return dispatched
