"""Base transport interface for streaming audit events to monitors."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..models import WorkflowEvent

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Abstract event stream that monitoring consumers subscribe to."""

    async def connect(self) -> None:
        """Open the event stream (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Release the event stream (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        """Append an audit event to the stream for ``topic``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, WorkflowEvent]]:
        """Yield (stream entry, decoded event) pairs in append order.

        Args:
            topic: Event stream to follow, e.g. "workflow-events"
            lifespan: Seconds to keep reading. If None, reads until cancelled.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Mark a consumed stream entry as processed by this monitor."""
        raise NotImplementedError
