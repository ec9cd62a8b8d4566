from __future__ import annotations

from pydantic import BaseModel, Field


class LockKeyRequest(BaseModel):
    booking_id: int = Field(..., ge=1)
