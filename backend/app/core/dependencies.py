"""FastAPI dependencies for services that need the app-scoped smart-lock provider."""

from __future__ import annotations

from fastapi import Depends, Request

from app.services.guest_portal_service import GuestPortalService
from app.services.lock_key_service import LockKeyService
from app.services.smart_lock_service import SmartLockProvider


def get_smart_lock_provider(request: Request) -> SmartLockProvider:
    # Built once in the application lifespan.
    return request.app.state.smart_lock


def get_lock_key_service(provider: SmartLockProvider = Depends(get_smart_lock_provider)) -> LockKeyService:
    return LockKeyService(provider)


def get_guest_portal_service(
    provider: SmartLockProvider = Depends(get_smart_lock_provider),
    lock_keys: LockKeyService = Depends(get_lock_key_service),
) -> GuestPortalService:
    return GuestPortalService(provider, lock_keys=lock_keys)
