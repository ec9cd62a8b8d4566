from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, DefaultDict, List


logger = logging.getLogger(__name__)


class EventBus:
    """In-memory fan-out of booking notification events, keyed by reference code."""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[asyncio.Queue[dict[str, Any]]]] = defaultdict(list)

    async def publish(self, reference_code: str, event: dict[str, Any]) -> None:
        for queue in list(self._subscribers.get(reference_code, [])):
            await queue.put(event)
        logger.info(
            "booking_event",
            extra={
                "reference_code": reference_code,
                "event": event,
                "event_json": json.dumps(event, default=str),
            },
        )

    async def stream(self, reference_code: str) -> AsyncIterator[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._subscribers[reference_code].append(queue)
        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            self._subscribers[reference_code].remove(queue)
            if not self._subscribers[reference_code]:
                del self._subscribers[reference_code]

    def subscriber_count(self, reference_code: str) -> int:
        return len(self._subscribers.get(reference_code, []))


event_bus = EventBus()
