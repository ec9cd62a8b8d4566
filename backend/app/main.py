from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.exceptions import ReservationError
from app.db.database import async_session_factory
from app.routes import additional_services, booking, events, guest_portal, lock_keys, metadata
from app.services.lock_key_service import LockKeyService, run_expiry_sweeper
from app.services.smart_lock_service import TTLockClient
from app.utils.config import get_settings

settings = get_settings()

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    smart_lock = TTLockClient(settings)
    app.state.smart_lock = smart_lock
    missing = settings.missing_ttlock_settings()
    if missing:
        logger.warning("Smart-lock integration is not configured", extra={"missing": missing})

    sweeper = None
    if settings.lock_key_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            run_expiry_sweeper(
                LockKeyService(smart_lock),
                async_session_factory,
                settings.lock_key_sweep_interval_seconds,
            )
        )
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        await smart_lock.aclose()


app = FastAPI(title="RoomKey API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    logger.warning(
        exc.message,
        extra={"path": request.url.path, "error_code": exc.error_code, "details": exc.details},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.error_code})


app.include_router(metadata.router, prefix="/api")
app.include_router(additional_services.router, prefix="/api")
app.include_router(booking.router, prefix="/api")
app.include_router(lock_keys.router, prefix="/api")
app.include_router(guest_portal.router, prefix="/api")
app.include_router(events.router, prefix="/api")


@app.get("/health")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
