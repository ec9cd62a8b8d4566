from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_lock_key_service
from app.core.exceptions import ProviderError, ReservationError
from app.db.database import get_session
from app.schemas.booking import BookingCreate, CheckInSubmission
from app.services.booking_service import (
    BookingRequest,
    BookingService,
    CheckInDetails,
    GuestContact,
    get_booking_service,
)
from app.services.guest_token_service import GuestTokenService, get_guest_token_service
from app.services.lock_key_service import LockKeyService, RevocationReport

router = APIRouter(prefix="/booking", tags=["booking"])
logger = logging.getLogger(__name__)


def _serialize_revocation(report: RevocationReport) -> Dict[str, Any]:
    return {
        "revoked_lock_key_ids": report.revoked,
        "provider_in_sync": report.provider_in_sync,
        "failures": [{"lock_key_id": failure.lock_key_id, "error": failure.message} for failure in report.failures],
    }


@router.post("", status_code=201)
async def create_booking(
    payload: BookingCreate,
    db: AsyncSession = Depends(get_session),
    booking_service: BookingService = Depends(get_booking_service),
) -> Dict[str, Any]:
    booking = await booking_service.create_booking(
        db,
        BookingRequest(
            room_type_id=payload.room_type_id,
            check_in_date=payload.check_in_date,
            check_out_date=payload.check_out_date,
            guest=GuestContact(name=payload.guest.name, email=payload.guest.email, phone=payload.guest.phone),
            locale=payload.locale,
        ),
    )
    return {"booking": booking.to_dict()}


@router.get("/{reference_code}")
async def lookup_booking(
    reference_code: str,
    db: AsyncSession = Depends(get_session),
    booking_service: BookingService = Depends(get_booking_service),
) -> Dict[str, Any]:
    booking = await booking_service.lookup_booking(db, reference_code)
    return {"booking": booking.to_dict()}


@router.post("/{reference_code}/check-in")
async def submit_check_in(
    reference_code: str,
    payload: CheckInSubmission,
    db: AsyncSession = Depends(get_session),
    booking_service: BookingService = Depends(get_booking_service),
    lock_keys: LockKeyService = Depends(get_lock_key_service),
    guest_tokens: GuestTokenService = Depends(get_guest_token_service),
) -> Dict[str, Any]:
    info = await booking_service.submit_check_in(
        db,
        reference_code,
        CheckInDetails(
            legal_name=payload.legal_name,
            document_number=payload.document_number,
            document_country=payload.document_country,
            services=payload.services,
            estimated_arrival_time=payload.estimated_arrival_time,
            special_requests=payload.special_requests,
        ),
    )

    # Key provisioning is decoupled from the guest-facing step: the check-in
    # stays recorded even when issuance fails.
    response: Dict[str, Any] = {"lock_key": None, "magic_link": None, "lock_key_error": None}
    try:
        issued = await lock_keys.issue_lock_key(db, info.booking_id)
        response["lock_key"] = issued.to_dict()
        response["magic_link"] = await guest_tokens.create_guest_link(db, info.booking_id)
    except ProviderError as error:
        response["lock_key_error"] = "We could not create your room key. Please contact reception."
        if error.is_configuration_issue:
            response["hint"] = "Smart-lock integration is not configured"
    except ReservationError as error:
        logger.info(
            "Lock key not issued at check-in",
            extra={"reference_code": reference_code, "error_code": error.error_code},
        )
        response["lock_key_error"] = error.message

    booking = await booking_service.lookup_booking(db, reference_code)
    return {"booking": booking.to_dict(), **response}


@router.post("/{reference_code}/cancel")
async def cancel_booking(
    reference_code: str,
    db: AsyncSession = Depends(get_session),
    booking_service: BookingService = Depends(get_booking_service),
    lock_keys: LockKeyService = Depends(get_lock_key_service),
) -> Dict[str, Any]:
    booking, report = await booking_service.cancel_booking(db, reference_code, lock_keys)
    return {"booking": booking.to_dict(), "revocation": _serialize_revocation(report)}


@router.post("/{reference_code}/check-out")
async def check_out(
    reference_code: str,
    db: AsyncSession = Depends(get_session),
    booking_service: BookingService = Depends(get_booking_service),
    lock_keys: LockKeyService = Depends(get_lock_key_service),
) -> Dict[str, Any]:
    booking, report = await booking_service.check_out(db, reference_code, lock_keys)
    return {"booking": booking.to_dict(), "revocation": _serialize_revocation(report)}
