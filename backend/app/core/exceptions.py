"""
Reservation error taxonomy.

Every service-level failure derives from ``ReservationError`` and carries an
HTTP status for the API layer plus free-form ``details`` for diagnostics.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ReservationError(Exception):
    """Base class for all reservation, allocation and lock-key failures"""

    status_code: int = 400

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ReservationError):
    """Malformed or illogical input; never retried automatically"""

    status_code = 400


class NotFoundError(ReservationError):
    status_code = 404


class InvalidStateError(ReservationError):
    """Operation not valid for the booking's current lifecycle state"""

    status_code = 409


class ConflictError(ReservationError):
    """Uniqueness or one-shot operation violation"""

    status_code = 409


class NoAvailabilityError(ReservationError):
    status_code = 409


class PreconditionError(ReservationError):
    """A required prior step, such as check-in details, is missing"""

    status_code = 412


class ProviderError(ReservationError):
    """The smart-lock platform failed or returned an ambiguous result"""

    status_code = 502

    CONFIGURATION = "configuration"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    AMBIGUOUS = "ambiguous"

    def __init__(
        self,
        message: str,
        kind: str = "unavailable",
        provider_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if provider_message:
            details["provider_message"] = provider_message
        super().__init__(message, details=details)
        self.kind = kind
        self.provider_message = provider_message

    @property
    def is_configuration_issue(self) -> bool:
        return self.kind == self.CONFIGURATION


class GuestAccessDenied(ReservationError):
    status_code = 401
