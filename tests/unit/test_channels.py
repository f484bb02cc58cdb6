import asyncio

import pytest

from shipyard.channels import InMemoryChannel, NullChannel
from shipyard.contracts import EventType, StepType, WorkflowEvent


def _event(event_type, workflow_id="wf_1", step=None):
    return WorkflowEvent(type=event_type, workflow_id=workflow_id, step=step)


@pytest.mark.asyncio
async def test_filtered_subscriber_stops_at_final_event():
    channel = InMemoryChannel()
    received = []

    async def consume():
        async for event in channel.subscribe("wf_1", lifespan=2.0):
            received.append((event.workflow_id, event.type))

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)
    assert channel.subscriber_count == 1

    await channel.emit(_event(EventType.STEP_STARTED, step=StepType.ANALYZE))
    await channel.emit(_event(EventType.STEP_STARTED, workflow_id="wf_other"))
    await channel.emit(_event(EventType.PIPELINE_COMPLETED))
    await asyncio.wait_for(task, 1.0)

    assert received == [
        ("wf_1", EventType.STEP_STARTED),
        ("wf_1", EventType.PIPELINE_COMPLETED),
    ]
    assert channel.subscriber_count == 0
    assert len(channel.history) == 3


@pytest.mark.asyncio
async def test_full_subscriber_queue_drops_events_without_blocking():
    channel = InMemoryChannel(queue_size=1)
    received = []

    async def consume():
        async for event in channel.subscribe(lifespan=1.0):
            received.append(event.type)
            if event.type == EventType.PIPELINE_FAILED:
                break

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)

    await channel.emit(_event(EventType.STEP_STARTED))
    await channel.emit(_event(EventType.STEP_COMPLETED))
    await channel.emit(_event(EventType.STEP_SKIPPED))
    assert channel.dropped == 2

    await asyncio.sleep(0.05)
    await channel.emit(_event(EventType.PIPELINE_FAILED))
    await asyncio.wait_for(task, 1.0)

    assert received == [EventType.STEP_STARTED, EventType.PIPELINE_FAILED]


@pytest.mark.asyncio
async def test_subscriber_lifespan_ends_iteration():
    channel = InMemoryChannel()
    events = [event async for event in channel.subscribe(lifespan=0.05)]
    assert events == []


@pytest.mark.asyncio
async def test_emit_without_subscribers_keeps_history():
    channel = InMemoryChannel(history_size=2)
    for event_type in (EventType.STEP_STARTED, EventType.STEP_COMPLETED, EventType.STEP_SKIPPED):
        await channel.emit(_event(event_type))
    assert [e.type for e in channel.history] == [EventType.STEP_COMPLETED, EventType.STEP_SKIPPED]


@pytest.mark.asyncio
async def test_null_channel_discards_events():
    channel = NullChannel()
    await channel.emit(_event(EventType.STEP_STARTED))
    assert [event async for event in channel.subscribe(lifespan=0.01)] == []


def test_event_json_keeps_step_and_data():
    event = WorkflowEvent(
        type=EventType.STEP_SKIPPED,
        workflow_id="wf_1",
        step=StepType.DEMO,
        data={"error": "demo exploded"},
        timestamp=12.5,
    )
    assert WorkflowEvent.from_json(event.to_json()) == event
