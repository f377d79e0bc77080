"""
Box Office Booking Engine - Main Application Entry Point

Creates bookings for cinema showtimes as one atomic unit of work across
seats, concession stock, promo codes and loyalty points:
- Constraint-backed seat reservation (no double-booking)
- Conditional updates for stock, promo usage and loyalty balance
- Bounded retry on serialization failures and lock timeouts
- Transactional outbox for notifications, dispatched after commit to Redis
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.api.exception_handlers import register_exception_handlers
from boxoffice.api.middleware import RequestLoggingMiddleware
from boxoffice.api.router import api_router
from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger, setup_logging
from boxoffice.core.metrics import metrics_endpoint
from boxoffice.db.session import get_session_factory
from boxoffice.services.notification_service import (
    RedisEventPublisher, close_redis, dispatch_pending_events, get_redis,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
        # Flush anything a previous process committed but never published
        await dispatch_pending_events(get_session_factory(), RedisEventPublisher())
    else:
        logger.warning("redis_unavailable", message="Notifications stay queued in the outbox")

    yield

    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Atomic cinema booking engine: seats, concessions, promo codes and loyalty points",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/health", tags=["Health"])
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Health check endpoint for Docker and load balancers. The database is
    required; the notification channel is not, bookings keep committing
    and events wait in the outbox.
    """
    try:
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        database = "connected"
    except (OSError, SQLAlchemyError) as e:
        get_logger(__name__).error("health_database_unreachable", error=str(e))
        database = "unavailable"

    redis_client = await get_redis()
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "notifications": "connected" if redis_client else "unavailable",
    }
