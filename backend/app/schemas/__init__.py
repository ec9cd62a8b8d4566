from .booking import (
    AvailabilityRequest,
    AvailabilityResponse,
    AvailabilityResponseRoomType,
    BookingCreate,
    CheckInSubmission,
    GuestInfo,
)
from .guest_portal import GuestPortalAction, GuestTokenRequest
from .lock_key import LockKeyRequest

__all__ = [
    "GuestInfo",
    "BookingCreate",
    "CheckInSubmission",
    "AvailabilityRequest",
    "AvailabilityResponse",
    "AvailabilityResponseRoomType",
    "LockKeyRequest",
    "GuestTokenRequest",
    "GuestPortalAction",
]
