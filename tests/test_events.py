import logging
from uuid import uuid4

import anyio
import pytest

from flowgraph import EventType, FlowEvent, LoggingEventSink, MemoryEventSink


def event(type=EventType.STEP_STARTED, **kwargs):
    return FlowEvent(type=type, flow_id="flow", flow_run_id=uuid4(), **kwargs)


def test_memory_sink_drain():
    sink = MemoryEventSink(max_buffer_size=4)
    sink.emit(event(step_id="a"))
    sink.emit(event(step_id="b"))

    assert [e.step_id for e in sink.drain()] == ["a", "b"]
    assert sink.drain() == []


def test_memory_sink_drops_when_full():
    sink = MemoryEventSink(max_buffer_size=1)
    sink.emit(event(step_id="kept"))

    with pytest.warns(UserWarning, match="buffer is full"):
        sink.emit(event(step_id="dropped"))

    sink.emit(event(step_id="dropped too"))

    assert sink.dropped == 2
    assert [e.step_id for e in sink.drain()] == ["kept"]


def test_memory_sink_buffer_size_from_config(monkeypatch):
    monkeypatch.setenv("FLOWGRAPH_EVENT_BUFFER_SIZE", "1")
    sink = MemoryEventSink()
    sink.emit(event())

    with pytest.warns(UserWarning):
        sink.emit(event())

    assert sink.dropped == 1


def test_closed_memory_sink_drops():
    sink = MemoryEventSink()
    sink.close()
    sink.emit(event())

    assert sink.dropped == 1


@pytest.mark.anyio
async def test_memory_sink_stream():
    sink = MemoryEventSink()
    received = []

    async def consume():
        async for e in sink.stream():
            received.append(e.type)

    async with anyio.create_task_group() as tg:
        tg.start_soon(consume)
        sink.emit(event(EventType.FLOW_STARTED))
        sink.emit(event(EventType.FLOW_COMPLETED))
        sink.close()

    assert received == [EventType.FLOW_STARTED, EventType.FLOW_COMPLETED]


def test_logging_sink(caplog):
    sink = LoggingEventSink()

    with caplog.at_level(logging.INFO, logger="flowgraph.events"):
        sink.emit(event(EventType.STEP_FAILED, step_id="a", payload={"attempts": 2}))

    assert "step.failed" in caplog.text
    assert "'attempts': 2" in caplog.text
