"""
Exception hierarchy for order modification operations.

Every error carries a structured ``context`` dict that is logged and returned
to API callers alongside the message.
"""

from typing import Any


class OrderModificationError(Exception):
    """Base exception for order modification errors."""

    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(OrderModificationError):
    """Raised when a referenced entity does not exist."""

    pass


class OrderNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass


class AmendmentNotFoundError(NotFoundError):
    pass


class VersionNotFoundError(NotFoundError):
    pass


class InvalidStateError(OrderModificationError):
    """
    Raised when an operation is not allowed in the entity's current status.

    ``status`` names the offending status, e.g. ``pending_approval`` when
    applying an amendment that has not been approved.
    """

    def __init__(self, message: str, status: str, **context: Any):
        super().__init__(message, status=status, **context)
        self.status = status


class ChangeValidationError(OrderModificationError):
    """Raised when a change set or fulfillment payload is malformed."""

    pass


class ConflictError(OrderModificationError):
    """
    Raised on concurrent modification.

    Lock contention, serialization failures, deadlocks and unique-key
    collisions all land here. The whole operation can be retried.
    """

    retryable = True


class PersistenceError(OrderModificationError):
    """Raised when an unexpected database error aborts an operation."""

    pass
