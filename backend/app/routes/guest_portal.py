from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_guest_portal_service
from app.core.exceptions import ProviderError
from app.db.database import get_session
from app.schemas.guest_portal import GuestPortalAction, GuestTokenRequest
from app.services.guest_portal_service import GuestPortalService
from app.services.guest_token_service import GuestTokenService, get_guest_token_service

router = APIRouter(prefix="/guest-portal", tags=["guest-portal"])
logger = logging.getLogger(__name__)


def _provider_failure(error: ProviderError, message: str) -> JSONResponse:
    # Guests never see provider internals; configuration gaps get a hint for staff.
    body: Dict[str, Any] = {"detail": message, "code": error.error_code}
    if error.is_configuration_issue:
        body["hint"] = "Smart-lock integration is not configured. Please contact reception."
    return JSONResponse(status_code=error.status_code, content=body)


@router.post("/token")
async def issue_guest_token(
    payload: GuestTokenRequest,
    db: AsyncSession = Depends(get_session),
    guest_tokens: GuestTokenService = Depends(get_guest_token_service),
) -> Dict[str, Any]:
    token = await guest_tokens.issue_token(db, payload.booking_id)
    return {"token": token, "magic_link": guest_tokens.magic_link(token)}


@router.get("")
async def guest_portal(
    token: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_session),
    portal: GuestPortalService = Depends(get_guest_portal_service),
) -> Dict[str, Any]:
    return await portal.view(db, token)


@router.post("/unlock")
async def unlock(
    payload: GuestPortalAction,
    db: AsyncSession = Depends(get_session),
    portal: GuestPortalService = Depends(get_guest_portal_service),
):
    try:
        await portal.unlock(db, payload.token)
    except ProviderError as error:
        return _provider_failure(error, "Unable to unlock the door right now")
    return {"status": "unlocked"}


@router.post("/send-ekey")
async def send_ekey(
    payload: GuestPortalAction,
    db: AsyncSession = Depends(get_session),
    portal: GuestPortalService = Depends(get_guest_portal_service),
):
    try:
        remote_id = await portal.send_credential(db, payload.token)
    except ProviderError as error:
        return _provider_failure(error, "Unable to send the digital key right now")
    return {"status": "sent", "key_id": remote_id}
