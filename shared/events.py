"""Job event utilities that keep both the database and stream subscribers in sync."""
from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .models import JobEvent

ALL_BATCHES = "*"


class JobEventBroker:
    """In-memory broker that fans out job events to stream consumers.

    Every subscriber owns its own queue.  Events are delivered to the
    subscribers of the event's batch and to the subscribers of
    :data:`ALL_BATCHES`.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._subscribers: Dict[str, List["asyncio.Queue[Dict[str, Any]]"]] = {}
        self._max_queue_size = max_queue_size

    def subscriber_count(self, channel: str = ALL_BATCHES) -> int:
        return len(self._subscribers.get(channel, []))

    def publish(self, payload: Dict[str, Any]) -> None:
        channels = {ALL_BATCHES, str(payload.get("batch_id", ""))}
        for channel in channels:
            for queue in list(self._subscribers.get(channel, [])):
                if queue.full():
                    # slow consumer, drop its oldest event
                    queue.get_nowait()
                queue.put_nowait(payload)

    @asynccontextmanager
    async def subscribe(
        self, batch_id: Optional[str] = None
    ) -> AsyncIterator["asyncio.Queue[Dict[str, Any]]"]:
        channel = batch_id or ALL_BATCHES
        queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.setdefault(channel, []).append(queue)
        try:
            yield queue
        finally:
            queues = self._subscribers.get(channel, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self._subscribers.pop(channel, None)

    async def stream(self, batch_id: Optional[str] = None) -> AsyncIterator[Dict[str, Any]]:
        async with self.subscribe(batch_id) as queue:
            while True:
                item = await queue.get()
                yield item


broker = JobEventBroker()


def serialize_event(entry: JobEvent) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "job_id": entry.job_id,
        "batch_id": entry.batch_id,
        "message": entry.message,
        "level": entry.level,
        "metadata": entry.data or {},
        "created_at": entry.created_at.isoformat(),
    }


async def emit_event(
    session: AsyncSession,
    job_id: str,
    batch_id: str,
    message: str,
    *,
    level: str = "info",
    metadata: Dict[str, Any] | None = None,
    event_broker: Optional[JobEventBroker] = None,
) -> JobEvent:
    """Persist a job event and notify stream listeners."""

    entry = JobEvent(
        id=str(uuid.uuid4()),
        job_id=job_id,
        batch_id=batch_id,
        message=message,
        level=level,
        data=metadata or {},
    )
    session.add(entry)
    await session.commit()
    await session.refresh(entry)

    (event_broker or broker).publish(serialize_event(entry))
    return entry
