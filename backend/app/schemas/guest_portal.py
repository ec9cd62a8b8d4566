from __future__ import annotations

from pydantic import BaseModel, Field


class GuestTokenRequest(BaseModel):
    booking_id: int = Field(..., ge=1)


class GuestPortalAction(BaseModel):
    token: str = Field(..., min_length=1)
