"""Tests for the Redis-backed execution event stream."""

import asyncio

import pytest

from flowforge.core.event_stream import is_end_of_stream
from flowforge.models.core import LogEvent, LogEventType


def event(event_type, message="", node_id=None):
    return LogEvent(type=event_type, message=message or event_type.value, node_id=node_id)


class TestEventStream:
    """Test cases for appending, reading and subscribing."""

    @pytest.mark.asyncio
    async def test_append_assigns_increasing_ids(self, event_stream):
        first = await event_stream.append("exec-1", event(LogEventType.NODE_START, node_id="A"))
        second = await event_stream.append("exec-1", event(LogEventType.NODE_COMPLETE, node_id="A"))

        events = await event_stream.read("exec-1")
        assert [e.id for e in events] == [first, second]
        assert [e.type for e in events] == [LogEventType.NODE_START, LogEventType.NODE_COMPLETE]
        assert events[0].node_id == "A"

    @pytest.mark.asyncio
    async def test_read_since_excludes_given_entry(self, event_stream):
        ids = [
            await event_stream.append("exec-1", event(LogEventType.NODE_LOG, f"line {i}"))
            for i in range(4)
        ]

        later = await event_stream.read("exec-1", since=ids[1])
        assert [e.message for e in later] == ["line 2", "line 3"]
        assert await event_stream.read("exec-1", since=ids[-1]) == []

    @pytest.mark.asyncio
    async def test_streams_are_per_execution(self, event_stream):
        await event_stream.append("exec-1", event(LogEventType.NODE_START))
        assert await event_stream.read("exec-2") == []

    @pytest.mark.asyncio
    async def test_subscribe_replays_finished_execution(self, event_stream):
        """A subscriber to a finished execution gets the stored events and stops."""
        await event_stream.append("exec-1", event(LogEventType.NODE_START))
        await event_stream.append("exec-1", event(LogEventType.EXECUTION_FAILED, "failed"))

        received = [e async for e in event_stream.subscribe("exec-1")]
        assert [e.type for e in received] == [LogEventType.NODE_START, LogEventType.EXECUTION_FAILED]

    @pytest.mark.asyncio
    async def test_replay_continues_past_retried_failure(self, event_stream):
        """A failure marked for retry is followed by the retry's own events."""
        await event_stream.append("exec-1", LogEvent(
            type=LogEventType.EXECUTION_FAILED, message="attempt 1", data={"will_retry": True}
        ))
        await event_stream.append("exec-1", event(LogEventType.NODE_START))
        await event_stream.append("exec-1", event(LogEventType.EXECUTION_COMPLETE))

        received = [e async for e in event_stream.subscribe("exec-1")]
        assert [e.type for e in received] == [
            LogEventType.EXECUTION_FAILED, LogEventType.NODE_START, LogEventType.EXECUTION_COMPLETE
        ]

    def test_end_of_stream(self):
        assert is_end_of_stream(event(LogEventType.EXECUTION_COMPLETE))
        assert is_end_of_stream(event(LogEventType.EXECUTION_FAILED))
        assert is_end_of_stream(LogEvent(
            type=LogEventType.EXECUTION_FAILED, message="final", data={"will_retry": False}
        ))
        assert not is_end_of_stream(LogEvent(
            type=LogEventType.EXECUTION_FAILED, message="retrying", data={"will_retry": True}
        ))
        assert not is_end_of_stream(event(LogEventType.NODE_COMPLETE))

    @pytest.mark.asyncio
    async def test_subscribe_follows_live_events(self, event_stream):
        """Events appended after the replay arrive live, without duplicates."""
        await event_stream.append("exec-1", event(LogEventType.NODE_START, node_id="A"))

        subscription = event_stream.subscribe("exec-1")
        replayed = await asyncio.wait_for(subscription.__anext__(), timeout=2)
        assert replayed.node_id == "A"

        await event_stream.append("exec-1", event(LogEventType.NODE_COMPLETE, node_id="A"))
        await event_stream.append("exec-1", LogEvent(
            type=LogEventType.EXECUTION_FAILED, message="retrying", data={"will_retry": True}
        ))
        await event_stream.append("exec-1", LogEvent(type=LogEventType.EXECUTION_CANCELLED, message="cancelled", level="warn"))

        async def collect():
            return [e async for e in subscription]

        live = await asyncio.wait_for(collect(), timeout=2)
        assert [e.type for e in live] == [
            LogEventType.NODE_COMPLETE, LogEventType.EXECUTION_FAILED, LogEventType.EXECUTION_CANCELLED
        ]
        stored = await event_stream.read("exec-1")
        assert [e.id for e in live] == [e.id for e in stored[1:]]

    @pytest.mark.asyncio
    async def test_delete_removes_stream(self, event_stream):
        await event_stream.append("exec-1", event(LogEventType.NODE_START))
        await event_stream.delete("exec-1")
        assert await event_stream.read("exec-1") == []


class TestWorkflowLog:
    """Test cases for the per-workflow log."""

    @pytest.mark.asyncio
    async def test_entries_are_encoded_and_ordered(self, event_stream):
        await event_stream.append_workflow_log("wf-1", {"message": "first", "data": {"n": 1}})
        await event_stream.append_workflow_log("wf-1", {"message": "second", "level": None})

        entries = await event_stream.read_workflow_log("wf-1")
        assert [entry["message"] for entry in entries] == ["first", "second"]
        assert entries[0]["data"] == '{"n": 1}'
        assert "level" not in entries[1]
        assert all("id" in entry for entry in entries)

    @pytest.mark.asyncio
    async def test_count_keeps_most_recent(self, event_stream):
        for i in range(5):
            await event_stream.append_workflow_log("wf-1", {"message": str(i)})

        entries = await event_stream.read_workflow_log("wf-1", count=2)
        assert [entry["message"] for entry in entries] == ["3", "4"]
