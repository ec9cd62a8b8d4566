from __future__ import annotations

import hashlib
import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx

from app.core.exceptions import ProviderError
from app.utils.config import Settings, get_settings
from app.utils.retry import retry_bounded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PasscodeGrant:
    passcode: str
    remote_id: str


class SmartLockProvider(Protocol):
    """Remote capability over physical locks. Every call may fail independently of local state."""

    async def create_passcode(self, lock_id: str, start_ms: int, end_ms: int, label: str) -> PasscodeGrant: ...

    async def delete_passcode(self, lock_id: str, remote_id: str) -> None: ...

    async def remote_unlock(self, lock_id: str) -> None: ...

    async def send_credential_to_guest_app(
        self,
        lock_id: str,
        guest_identity: str,
        start_ms: int,
        end_ms: int,
        remarks: str,
    ) -> str: ...

    async def find_passcode(self, lock_id: str, passcode: str) -> Optional[PasscodeGrant]: ...

    async def aclose(self) -> None: ...


class _TransportFailure(Exception):
    pass


class TTLockClient:
    """TTLock Open API client (https://euopen.ttlock.com/doc/api/)."""

    TOKEN_PATH = "/oauth2/token"
    # Refresh this long before the provider-reported expiry.
    TOKEN_EXPIRY_MARGIN_SECONDS = 300
    PASSCODE_PAGE_SIZE = 100

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.ttlock_base_url,
            timeout=self.settings.ttlock_timeout_seconds,
        )
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

    def is_configured(self) -> bool:
        return not self.settings.missing_ttlock_settings()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _hashed_password(self) -> str:
        password = self.settings.ttlock_password
        if re.fullmatch(r"[a-fA-F0-9]{32}", password):
            return password
        return hashlib.md5(password.encode("utf-8")).hexdigest()

    async def _access_token_value(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        missing = self.settings.missing_ttlock_settings()
        if missing:
            raise ProviderError(
                "Smart-lock integration is not configured",
                kind=ProviderError.CONFIGURATION,
                details={"missing": missing},
            )

        async def request_token(_: int) -> httpx.Response:
            try:
                return await self._client.post(
                    self.TOKEN_PATH,
                    data={
                        "client_id": self.settings.ttlock_client_id,
                        "client_secret": self.settings.ttlock_client_secret,
                        "username": self.settings.ttlock_username,
                        "password": self._hashed_password(),
                        "grant_type": "password",
                    },
                )
            except httpx.TransportError as error:
                raise _TransportFailure(str(error)) from error

        response = await retry_bounded(
            request_token,
            max_attempts=self.settings.ttlock_max_attempts,
            retry_on=_TransportFailure,
            exhausted=lambda error: ProviderError(
                "Smart-lock platform is unreachable",
                kind=ProviderError.UNAVAILABLE,
                provider_message=str(error),
            ),
            label="ttlock_token",
        )
        if response.status_code != 200:
            raise ProviderError(
                "Smart-lock authentication failed",
                kind=ProviderError.CONFIGURATION,
                provider_message=response.text,
            )
        data = self._decode(response, self.TOKEN_PATH)
        if "access_token" not in data:
            raise ProviderError(
                "Smart-lock authentication failed",
                kind=ProviderError.CONFIGURATION,
                provider_message=data.get("errmsg") or data.get("description") or str(data),
            )

        self._access_token = data["access_token"]
        expires_in = int(data.get("expires_in", 0))
        self._token_expires_at = time.monotonic() + expires_in - self.TOKEN_EXPIRY_MARGIN_SECONDS
        return self._access_token

    @staticmethod
    def _decode(response: httpx.Response, endpoint: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as error:
            raise ProviderError(
                "Smart-lock platform returned an unreadable response",
                kind=ProviderError.UNAVAILABLE,
                provider_message=response.text[:200],
                details={"endpoint": endpoint, "status": response.status_code},
            ) from error
        if not isinstance(data, dict):
            raise ProviderError(
                "Smart-lock platform returned an unreadable response",
                kind=ProviderError.UNAVAILABLE,
                provider_message=str(data)[:200],
                details={"endpoint": endpoint, "status": response.status_code},
            )
        return data

    @staticmethod
    def _field(data: Dict[str, Any], name: str, endpoint: str) -> str:
        value = data.get(name)
        if value in (None, ""):
            raise ProviderError(
                "Smart-lock platform response is missing a required field",
                kind=ProviderError.REJECTED,
                provider_message=str(data)[:200],
                details={"endpoint": endpoint, "field": name},
            )
        return str(value)

    async def _request(self, endpoint: str, params: Dict[str, Any], method: str = "POST") -> Dict[str, Any]:
        token = await self._access_token_value()
        payload = {
            "clientId": self.settings.ttlock_client_id,
            "accessToken": token,
            "date": str(int(time.time() * 1000)),
            **{key: str(value) for key, value in params.items()},
        }
        try:
            if method == "GET":
                response = await self._client.get(endpoint, params=payload)
            else:
                response = await self._client.post(endpoint, data=payload)
        except httpx.TimeoutException as error:
            raise ProviderError(
                "Smart-lock platform timed out",
                kind=ProviderError.AMBIGUOUS,
                provider_message=str(error),
                details={"endpoint": endpoint},
            ) from error
        except httpx.TransportError as error:
            raise ProviderError(
                "Smart-lock platform is unreachable",
                kind=ProviderError.UNAVAILABLE,
                provider_message=str(error),
                details={"endpoint": endpoint},
            ) from error

        if response.status_code >= 400:
            raise ProviderError(
                "Smart-lock platform request failed",
                kind=ProviderError.UNAVAILABLE if response.status_code >= 500 else ProviderError.REJECTED,
                provider_message=response.text,
                details={"endpoint": endpoint, "status": response.status_code},
            )

        data = self._decode(response, endpoint)
        errcode = data.get("errcode")
        if errcode not in (None, 0):
            raise ProviderError(
                "Smart-lock platform rejected the request",
                kind=ProviderError.REJECTED,
                provider_message=f"{data.get('errmsg') or 'Unknown error'} (code: {errcode})",
                details={"endpoint": endpoint, "errcode": errcode},
            )
        return data

    @staticmethod
    def _generate_pin() -> str:
        return str(100000 + secrets.randbelow(900000))

    async def create_passcode(self, lock_id: str, start_ms: int, end_ms: int, label: str) -> PasscodeGrant:
        pin = self._generate_pin()
        logger.info(
            "Creating passcode",
            extra={"lock_id": lock_id, "start_ms": start_ms, "end_ms": end_ms, "label": label},
        )
        try:
            data = await self._request(
                "/v3/keyboardPwd/add",
                {
                    "lockId": lock_id,
                    "keyboardPwd": pin,
                    "keyboardPwdName": label or "Guest",
                    "startDate": start_ms,
                    "endDate": end_ms,
                    "addType": 2,  # custom passcode via gateway
                },
            )
        except ProviderError as error:
            if error.kind != ProviderError.AMBIGUOUS:
                raise
            # Outcome unknown: read back before anyone retries.
            logger.warning("Passcode creation timed out, reconciling", extra={"lock_id": lock_id})
            try:
                existing = await self.find_passcode(lock_id, pin)
            except ProviderError as reconcile_error:
                logger.warning(
                    "Passcode reconciliation failed",
                    extra={"lock_id": lock_id, "error": reconcile_error.message},
                )
                raise error from reconcile_error
            if existing:
                logger.info("Reconciled passcode after timeout", extra={"lock_id": lock_id, "remote_id": existing.remote_id})
                return existing
            raise
        return PasscodeGrant(passcode=pin, remote_id=self._field(data, "keyboardPwdId", "/v3/keyboardPwd/add"))

    async def find_passcode(self, lock_id: str, passcode: str) -> Optional[PasscodeGrant]:
        page = 1
        while True:
            data = await self._request(
                "/v3/lock/listKeyboardPwd",
                {"lockId": lock_id, "pageNo": page, "pageSize": self.PASSCODE_PAGE_SIZE},
                method="GET",
            )
            entries: List[Dict[str, Any]] = data.get("list") or []
            for entry in entries:
                if str(entry.get("keyboardPwd")) == passcode:
                    remote_id = self._field(entry, "keyboardPwdId", "/v3/lock/listKeyboardPwd")
                    return PasscodeGrant(passcode=passcode, remote_id=remote_id)
            # "pages" is the provider's total page count for this listing.
            if not entries or page >= int(data.get("pages") or 1):
                return None
            page += 1

    async def delete_passcode(self, lock_id: str, remote_id: str) -> None:
        await self._request(
            "/v3/keyboardPwd/delete",
            {"lockId": lock_id, "keyboardPwdId": remote_id, "deleteType": 2},
        )

    async def remote_unlock(self, lock_id: str) -> None:
        await self._request("/v3/lock/unlock", {"lockId": lock_id})

    async def send_credential_to_guest_app(
        self,
        lock_id: str,
        guest_identity: str,
        start_ms: int,
        end_ms: int,
        remarks: str,
    ) -> str:
        data = await self._request(
            "/v3/key/send",
            {
                "lockId": lock_id,
                "receiverUsername": guest_identity,
                "keyName": remarks,
                "startDate": start_ms,
                "endDate": end_ms,
                "remarks": remarks,
            },
        )
        return self._field(data, "keyId", "/v3/key/send")
