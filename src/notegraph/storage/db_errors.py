"""Classification of SQLite integrity errors.

SQLite reports every constraint failure as an IntegrityError; the kind
of constraint is only visible in the driver message.
"""
from sqlalchemy.exc import IntegrityError


def _message(error: IntegrityError) -> str:
    return str(getattr(error, "orig", None) or error)


def is_unique_violation(error: IntegrityError) -> bool:
    """True if the error is a UNIQUE or PRIMARY KEY constraint failure."""
    message = _message(error)
    return "UNIQUE constraint failed" in message or "PRIMARY KEY" in message


def is_foreign_key_violation(error: IntegrityError) -> bool:
    """True if the error is a FOREIGN KEY constraint failure."""
    return "FOREIGN KEY constraint failed" in _message(error)
