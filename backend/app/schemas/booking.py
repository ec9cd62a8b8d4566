from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class GuestInfo(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=32)


class BookingCreate(BaseModel):
    room_type_id: str
    check_in_date: date
    check_out_date: date
    guest: GuestInfo
    locale: Optional[str] = Field(None, max_length=8)


class CheckInSubmission(BaseModel):
    legal_name: str = Field(..., min_length=1, max_length=255)
    document_number: str = Field(..., min_length=1, max_length=64)
    document_country: str = Field(..., min_length=1, max_length=64)
    services: List[str] = Field(default_factory=list)
    estimated_arrival_time: Optional[str] = None
    special_requests: Optional[str] = None


class AvailabilityRequest(BaseModel):
    check_in_date: date
    check_out_date: date
    guests: int = Field(1, ge=1)


class AvailabilityResponseRoomType(BaseModel):
    room_type_id: str
    name: str
    description: Optional[str] = None
    base_price: str
    max_occupancy: int
    available_rooms: int
    nights: int
    total_price: str


class AvailabilityResponse(BaseModel):
    check_in_date: date
    check_out_date: date
    guests: int
    room_types: list[AvailabilityResponseRoomType]
