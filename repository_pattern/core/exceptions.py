"""
Exception types raised by the repository layer.

Errors coming from the storage collaborator are not wrapped. The aliases
at the bottom of this module only give them stable names so callers can
catch them without importing SQLAlchemy internals.
"""

import asyncio

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError


class RepositoryError(RuntimeError):
    """Base class for errors raised by the repository layer itself."""

    pass


class InvalidArgument(RepositoryError, ValueError):
    """
    Raised when a caller passes an unusable filter, sort or page request.

    Always raised synchronously, before any statement reaches the database.
    """

    pass


class TransactionStateError(RepositoryError):
    """Raised when begin_transaction() is called while one is already active."""

    pass


# Surfaced verbatim from SQLAlchemy at save()/commit() time
ConstraintViolation = IntegrityError
ConcurrencyConflict = StaleDataError

# Cooperative cancellation of an awaited repository call
Cancelled = asyncio.CancelledError
