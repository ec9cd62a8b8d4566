from __future__ import annotations

import asyncio
import json
from typing import AsyncGenerator

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from app.services.reference_code_service import normalize_reference_code
from app.stores.event_bus import event_bus

router = APIRouter(prefix="/events", tags=["events"])

HEARTBEAT_SECONDS = 15


async def _event_stream(reference_code: str) -> AsyncGenerator[str, None]:
    yield json.dumps({"type": "status", "status": "listening", "reference_code": reference_code})

    async def heartbeat() -> None:
        while True:
            await asyncio.sleep(HEARTBEAT_SECONDS)
            await event_bus.publish(reference_code, {"type": "heartbeat", "reference_code": reference_code})

    task = asyncio.create_task(heartbeat())
    try:
        async for event in event_bus.stream(reference_code):
            yield json.dumps(event, default=str)
    finally:
        task.cancel()


@router.get("/{reference_code}")
async def listen(reference_code: str) -> EventSourceResponse:
    return EventSourceResponse(_event_stream(normalize_reference_code(reference_code)))
