"""
Store error helpers.

Unique-key collisions on discrepancy and action creation are expected
under concurrent runs; callers need to tell them apart from every other
integrity failure.
"""

from sqlalchemy.exc import IntegrityError

# SQLSTATE for unique_violation (PostgreSQL)
UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when the integrity error was raised by a unique constraint or index."""
    orig = getattr(exc, "orig", None)
    for attr in ("sqlstate", "pgcode"):
        if getattr(orig, attr, None) == UNIQUE_VIOLATION:
            return True
    message = str(orig if orig is not None else exc).lower()
    return "unique constraint" in message or "duplicate key" in message
