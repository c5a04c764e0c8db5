"""Event stream transports."""

from __future__ import annotations

import os
from typing import Optional

from ..config import EventStreamConfig
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    config: Optional[EventStreamConfig] = None, backend: Optional[str] = None
) -> Optional[BaseTransport]:
    """Build the configured event transport; ``None`` when streaming is off."""

    config = config or EventStreamConfig()
    backend = (backend or os.getenv("CASEFLOW_EVENT_BACKEND") or config.backend).lower()

    if backend == "none":
        return None
    if backend == "inmemory":
        return InMemoryTransport()
    if backend == "redis":
        from .redis import RedisTransport

        return RedisTransport(
            host=config.redis.host,
            port=config.redis.port,
            db=config.redis.db,
            password=config.redis.password,
        )
    raise ValueError(f"Unsupported transport backend: {backend}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
