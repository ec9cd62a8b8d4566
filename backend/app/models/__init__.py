from .additional_service import AdditionalService
from .booking import Booking, BookingEvent, BookingStatus, CheckInInfo
from .lock_key import LockKey, LockKeyStatus
from .room import Room, RoomType

__all__ = [
    "RoomType",
    "Room",
    "AdditionalService",
    "Booking",
    "BookingStatus",
    "BookingEvent",
    "CheckInInfo",
    "LockKey",
    "LockKeyStatus",
]
