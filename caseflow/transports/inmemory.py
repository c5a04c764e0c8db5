"""In-memory event transport for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..models import WorkflowEvent
from .base import BaseTransport


class InMemoryTransport(BaseTransport[Tuple[str, WorkflowEvent]]):
    """Simple in-process queue for unit tests."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, WorkflowEvent]]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        raw = (event.model_dump_json(by_alias=True), event)
        async with self._lock:
            self._queues[topic].append(raw)

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, WorkflowEvent], WorkflowEvent]]:
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            async with self._lock:
                raw_message = self._queues[topic].popleft() if self._queues[topic] else None
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue

            await asyncio.sleep(0.05)

    async def ack(self, raw_message: Tuple[str, WorkflowEvent]) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass
