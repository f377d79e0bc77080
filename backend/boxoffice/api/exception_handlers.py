"""
Map domain errors to structured JSON responses.

Every failure body has the same shape so clients can re-render the cart
from `details` (which seat, which item, how many points):

    {"error": "seat_unavailable", "message": "...", "details": {"seats": ["C7"]}}
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from boxoffice.core.exceptions import DomainError
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("domain_error", error=exc.code, message=exc.message, details=exc.details)
    else:
        logger.info("domain_error", error=exc.code, message=exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal", "message": "Internal server error", "details": {}},
    )


EXCEPTION_HANDLERS = {
    DomainError: domain_error_handler,
    Exception: unhandled_error_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
