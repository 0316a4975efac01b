"""Error kinds raised by the booking core.

Every error carries a human-readable ``message`` (surfaced verbatim to the
caller) and an optional ``details`` dict for structured context.
"""

from __future__ import annotations

from typing import Any


class CabCoreError(Exception):
    """Base exception for all booking-core errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CabCoreError):
    """Malformed or out-of-range input. Always recoverable by the caller."""


class InvalidStateTransition(ValidationError):
    """Raised when a booking status change is not in the transition table."""


class NotFoundError(CabCoreError):
    """Referenced entity does not exist."""


class ConflictError(CabCoreError):
    """Duplicate booking, already assigned / discounted / rated / cancelled."""


class PermissionDeniedError(CabCoreError):
    """The acting role may not perform an otherwise legal transition."""


class ServiceUnavailableError(CabCoreError):
    """External provider unreachable, timed out, or rejected our credentials."""


class LocationNotFoundError(ServiceUnavailableError):
    """An address could not be resolved to coordinates."""


class DistanceUnavailableError(ServiceUnavailableError):
    """No positive road distance could be determined."""


class PaymentGatewayError(ServiceUnavailableError):
    """Payment gateway returned a server error or could not be reached."""
