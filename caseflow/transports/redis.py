"""Redis Streams transport for cross-process monitoring consumers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

try:
    import redis.asyncio as redis
    from redis.exceptions import ResponseError
except ImportError:
    redis = None
    ResponseError = Exception  # type: ignore[misc,assignment]

from pydantic import ValidationError as PydanticValidationError

from ..models import WorkflowEvent
from .base import BaseTransport

logger = logging.getLogger(__name__)

# (stream key, entry id)
StreamEntry = Tuple[str, str]


class RedisTransport(BaseTransport[StreamEntry]):
    """Append events to a Redis stream and read them through a consumer group.

    Each topic maps to the stream ``<prefix>:<topic>``. Subscribers share the
    ``group`` so every event is handed to one consumer, and an entry stays
    pending in the group until it is acknowledged.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "caseflow",
        group: str = "caseflow-monitor",
        consumer: str = "monitor",
        max_length: Optional[int] = 10000,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self.group = group
        self.consumer = consumer
        self.max_length = max_length
        self._client: Optional[Any] = None
        self._groups: set[str] = set()

    def _stream_name(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    async def connect(self) -> None:
        self._client = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._client.ping()
        logger.info(f"Connected to Redis event stream at {self.host}:{self.port}")

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            self._groups.clear()

    async def _ensure_group(self, stream: str) -> None:
        if stream in self._groups:
            return
        try:
            await self._client.xgroup_create(stream, self.group, id="0", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
        self._groups.add(stream)

    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        if not self._client:
            await self.connect()
        await self._client.xadd(
            self._stream_name(topic),
            {"event": event.model_dump_json(by_alias=True)},
            maxlen=self.max_length,
            approximate=True,
        )

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[StreamEntry, WorkflowEvent]]:
        if not self._client:
            await self.connect()
        stream = self._stream_name(topic)
        await self._ensure_group(stream)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            response = await self._client.xreadgroup(
                self.group, self.consumer, {stream: ">"}, count=10, block=1000
            )
            for _, entries in response or []:
                for entry_id, fields in entries:
                    try:
                        event = WorkflowEvent.model_validate_json(fields["event"])
                    except (KeyError, PydanticValidationError) as exc:
                        logger.warning(f"Dropping malformed stream entry {entry_id}: {exc}")
                        await self._client.xack(stream, self.group, entry_id)
                        continue
                    yield (stream, entry_id), event

    async def ack(self, raw_message: StreamEntry) -> None:
        stream, entry_id = raw_message
        await self._client.xack(stream, self.group, entry_id)
