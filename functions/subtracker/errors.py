"""
Exception types raised by the subscription tracker.

Request-level errors (validation, not found, storage) are translated into
JSON responses by the handlers registered in ``subtracker.app``. Delivery
errors are raised by push senders and never leave the dispatcher.
"""

from __future__ import annotations


class SubtrackerError(Exception):
    """Base class for all subtracker errors."""


class ValidationError(SubtrackerError):
    """A request carried missing or malformed fields."""

    status_code = 400


class NotFoundError(SubtrackerError):
    """A referenced record does not exist."""

    status_code = 404


class StorageError(SubtrackerError):
    """The backing store failed to complete an operation."""

    status_code = 500


class DeliveryError(SubtrackerError):
    """A push message could not be delivered to one endpoint."""

    def __init__(self, endpoint: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class PermanentDeliveryError(DeliveryError):
    """The push service reports the endpoint as gone or expired."""


class TransientDeliveryError(DeliveryError):
    """Any other delivery failure; the endpoint stays registered."""
