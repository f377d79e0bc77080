"""
Domain error taxonomy for the booking engine.

Every failure a caller can act on is a DomainError subclass carrying a stable
`code`, the HTTP status it maps to, and structured `details` naming exactly
which constraint was violated (which seat, which item, how many points).

Semantic conflicts are never retried automatically; only ConcurrencyConflict
is marked retryable.
"""

from typing import Any


class DomainError(Exception):
    code = "domain_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(DomainError):
    code = "validation_error"
    status_code = 422


class NotFoundError(DomainError):
    code = "not_found"
    status_code = 404


class InvalidTransition(DomainError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, booking_id: int, current: str, target: str):
        super().__init__(
            f"Booking {booking_id} cannot move from '{current}' to '{target}'",
            booking_id=booking_id,
            current_status=current,
            target_status=target,
        )


class SeatUnavailable(DomainError):
    code = "seat_unavailable"
    status_code = 409

    def __init__(self, showtime_id: int, seats: list[str]):
        self.seats = seats
        super().__init__(
            f"Seats already taken: {', '.join(seats)}",
            showtime_id=showtime_id,
            seats=seats,
        )


class InsufficientStock(DomainError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, item_id: int, requested: int, available: int | None):
        super().__init__(
            f"Not enough stock for item {item_id}. Requested: {requested}, Available: {available}",
            item_id=item_id,
            requested=requested,
            available=available,
        )


class PromoExpired(DomainError):
    code = "promo_expired"
    status_code = 422


class PromoExhausted(DomainError):
    code = "promo_exhausted"
    status_code = 409


class PromoMinimumNotMet(DomainError):
    code = "promo_minimum_not_met"
    status_code = 422


class InsufficientLoyaltyPoints(DomainError):
    code = "insufficient_loyalty_points"
    status_code = 409

    def __init__(self, customer_id: int, balance: int, required: int):
        super().__init__(
            f"Not enough loyalty points. Required: {required}, Balance: {balance}",
            customer_id=customer_id,
            balance=balance,
            required=required,
        )


class ReferenceExhausted(DomainError):
    code = "reference_exhausted"
    status_code = 503

    def __init__(self, attempts: int):
        super().__init__(
            f"Could not generate a unique booking reference after {attempts} attempts",
            attempts=attempts,
        )


class ConcurrencyConflict(DomainError):
    code = "concurrency_conflict"
    status_code = 409
    retryable = True


class InternalError(DomainError):
    code = "internal"
    status_code = 500
