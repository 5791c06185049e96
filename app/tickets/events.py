from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import AsyncIterator

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TicketEvent:
    """Change notification pushed to live subscribers."""

    collection: str
    ticket_id: str
    action: str
    status: str
    at: datetime

    def to_payload(self) -> dict[str, str]:
        payload = asdict(self)
        payload["at"] = self.at.isoformat()
        return payload


class TicketEventBroker:
    """Fan out ticket changes to every connected subscriber.

    Each subscriber owns a bounded queue. When a subscriber falls behind the
    oldest pending event is dropped so publishers never block.
    """

    def __init__(self, *, queue_size: int = 100) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be greater than zero")
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[TicketEvent]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: TicketEvent) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                logger.debug("Dropped oldest event for a slow subscriber")
            queue.put_nowait(event)

    async def subscribe(self, collection: str | None = None) -> AsyncIterator[TicketEvent]:
        queue: asyncio.Queue[TicketEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        try:
            while True:
                event = await queue.get()
                if collection is None or event.collection == collection:
                    yield event
        finally:
            self._subscribers.discard(queue)


def format_sse(event: TicketEvent) -> str:
    return f"event: ticket\ndata: {json.dumps(event.to_payload())}\n\n"


async def iter_sse(broker: TicketEventBroker, collection: str) -> AsyncIterator[str]:
    async for event in broker.subscribe(collection):
        yield format_sse(event)
