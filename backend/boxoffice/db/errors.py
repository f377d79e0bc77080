"""
Classification of driver errors raised inside a booking transaction.
"""

from sqlalchemy.exc import DBAPIError, IntegrityError

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}
RETRYABLE_SQLITE_MESSAGES = ("database is locked", "database table is locked")


def sqlstate_of(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_retryable(exc: BaseException) -> bool:
    """True for serialization failures, deadlocks and lock timeouts."""
    if not isinstance(exc, DBAPIError):
        return False
    if sqlstate_of(exc) in RETRYABLE_SQLSTATES:
        return True
    message = str(exc.orig).lower()
    return any(fragment in message for fragment in RETRYABLE_SQLITE_MESSAGES)


def is_integrity_error(exc: BaseException) -> bool:
    return isinstance(exc, IntegrityError)


def constraint_name(exc: DBAPIError) -> str | None:
    """Name of the violated constraint as reported by psycopg2 or asyncpg."""
    orig = exc.orig
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None) or getattr(orig, "constraint_name", None)
    if name is None and orig is not None and orig.__cause__ is not None:
        name = getattr(orig.__cause__, "constraint_name", None)
    return name


def violates(exc: BaseException, constraint: str, sqlite_columns: str) -> bool:
    """
    True when `exc` is an integrity error on `constraint`. SQLite never names
    an index in its message, only the columns it covers, e.g.
    "UNIQUE constraint failed: booked_seats.showtime_id, booked_seats.row_label, ...".
    """
    if not is_integrity_error(exc):
        return False
    name = constraint_name(exc)
    if name is not None:
        return name == constraint
    message = str(exc.orig)
    return constraint in message or f"UNIQUE constraint failed: {sqlite_columns}" in message
