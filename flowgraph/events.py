import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

import anyio

from .config import Config

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator, Mapping
    from typing import Any
    from uuid import UUID

logger = logging.getLogger(__name__)


class EventType(Enum):
    FLOW_STARTED = "flow.started"
    WAVE_STARTED = "wave.started"
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    STEP_SKIPPED = "step.skipped"
    WAVE_COMPLETED = "wave.completed"
    FLOW_COMPLETED = "flow.completed"
    FLOW_FAILED = "flow.failed"


@dataclass(kw_only=True, frozen=True, slots=True)
class FlowEvent:
    type: EventType
    flow_id: str
    flow_run_id: "UUID"
    step_id: str | None = None
    wave: int | None = None
    payload: "Mapping[str, Any]" = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventSink(ABC):
    @abstractmethod
    def emit(self, event: FlowEvent) -> None:
        """Accept an event. Must return without waiting on delivery."""
        raise NotImplementedError()


class LoggingEventSink(EventSink):
    def __init__(
        self, logger: logging.Logger | None = None, level: int = logging.INFO
    ) -> None:
        self.logger = logger or logging.getLogger("flowgraph.events")
        self.level = level

    def emit(self, event: FlowEvent) -> None:
        self.logger.log(
            self.level,
            "%s flow=%s run=%s step=%s wave=%s %s",
            event.type.value,
            event.flow_id,
            event.flow_run_id,
            event.step_id,
            event.wave,
            dict(event.payload),
        )


class MemoryEventSink(EventSink):
    """
    Buffers events in a bounded in-memory stream for a consumer to read. When the
    buffer is full, new events are dropped rather than holding up the run.
    """

    def __init__(self, max_buffer_size: int | None = None) -> None:
        if max_buffer_size is None:
            max_buffer_size = Config().event_buffer_size

        self._send, self._receive = anyio.create_memory_object_stream[FlowEvent](
            max_buffer_size
        )
        self.dropped = 0

    def emit(self, event: FlowEvent) -> None:
        try:
            self._send.send_nowait(event)
        except anyio.WouldBlock:
            if not self.dropped:
                warnings.warn(
                    "Event buffer is full, further events are dropped until it is"
                    " drained.",
                    stacklevel=2,
                )

            self.dropped += 1
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("event sink closed, dropping %s", event.type.value)
            self.dropped += 1

    def drain(self) -> list[FlowEvent]:
        """Take every buffered event without waiting."""
        events: list[FlowEvent] = []
        while True:
            try:
                events.append(self._receive.receive_nowait())
            except (anyio.WouldBlock, anyio.EndOfStream):
                return events

    async def stream(self) -> "AsyncIterator[FlowEvent]":
        """Yield events as they arrive until the sink is closed."""
        async for event in self._receive:
            yield event

    def close(self) -> None:
        self._send.close()
