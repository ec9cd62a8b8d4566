from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_lock_key_service
from app.db.database import get_session
from app.schemas.lock_key import LockKeyRequest
from app.services.lock_key_service import LockKeyService

router = APIRouter(prefix="/lock-keys", tags=["lock-keys"])


@router.post("/issue")
async def issue_lock_key(
    payload: LockKeyRequest,
    db: AsyncSession = Depends(get_session),
    lock_keys: LockKeyService = Depends(get_lock_key_service),
) -> Dict[str, Any]:
    issued = await lock_keys.issue_lock_key(db, payload.booking_id)
    return {"lock_key": issued.to_dict()}


@router.post("/revoke")
async def revoke_lock_keys(
    payload: LockKeyRequest,
    db: AsyncSession = Depends(get_session),
    lock_keys: LockKeyService = Depends(get_lock_key_service),
) -> Dict[str, Any]:
    report = await lock_keys.revoke_lock_keys(db, payload.booking_id)
    return {
        "booking_id": report.booking_id,
        "revoked_lock_key_ids": report.revoked,
        "provider_in_sync": report.provider_in_sync,
        "failures": [{"lock_key_id": failure.lock_key_id, "error": failure.message} for failure in report.failures],
    }


@router.get("/status")
async def lock_key_status(
    booking_id: int = Query(..., ge=1),
    db: AsyncSession = Depends(get_session),
    lock_keys: LockKeyService = Depends(get_lock_key_service),
) -> Dict[str, Any]:
    lock_key = await lock_keys.get_active_lock_key(db, booking_id)
    return {"booking_id": booking_id, "lock_key": lock_key.to_dict() if lock_key else None}


@router.post("/expire")
async def expire_lock_keys(
    db: AsyncSession = Depends(get_session),
    lock_keys: LockKeyService = Depends(get_lock_key_service),
) -> Dict[str, int]:
    return {"expired": await lock_keys.expire_old_lock_keys(db)}
