"""Append-only execution event log on Redis streams with pub/sub fan-out.

Each execution's events live in the stream ``execution:{id}:logs``. Every
append is also published on ``execution:{id}:log`` so subscribers get it
live. Subscribers listen on the channel before replaying the stored prefix
and drop live events whose stream id is not newer than the last replayed
one, so nothing is missed or delivered twice.
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from redis import asyncio as aioredis

from ..models.core import LogEvent, LogEventType
from .logging import get_logger

logger = get_logger(__name__)

END_OF_STREAM = frozenset({
    LogEventType.EXECUTION_COMPLETE,
    LogEventType.EXECUTION_FAILED,
    LogEventType.EXECUTION_CANCELLED,
})


def is_end_of_stream(event: LogEvent) -> bool:
    """Whether ``event`` is the last one of its execution.

    A failed attempt that the job queue will retry is not terminal: the
    retry appends its own events to the same stream.
    """
    if event.type not in END_OF_STREAM:
        return False
    if event.type == LogEventType.EXECUTION_FAILED and event.data:
        return not event.data.get("will_retry", False)
    return True


def stream_key(execution_id: str) -> str:
    return f"execution:{execution_id}:logs"


def channel_name(execution_id: str) -> str:
    return f"execution:{execution_id}:log"


def workflow_log_key(workflow_id: str) -> str:
    return f"workflow:{workflow_id}:logs"


def entry_id_key(entry_id: str) -> Tuple[int, int]:
    """Sortable form of a stream entry id ``<ms>-<seq>``."""
    ms, _, seq = entry_id.partition('-')
    return int(ms), int(seq or 0)


class EventStream:
    """Execution log backed by a ``redis.asyncio`` client."""

    def __init__(self, redis: aioredis.Redis, poll_interval: float = 1.0):
        self.redis = redis
        self.poll_interval = poll_interval

    async def append(self, execution_id: str, event: LogEvent) -> str:
        """
        Append ``event`` to the execution's log and publish it.

        Returns:
            The stream entry id assigned to the event
        """
        payload = event.model_dump_json(exclude={"id"})
        entry_id = await self.redis.xadd(stream_key(execution_id), {"event": payload})
        event.id = entry_id

        await self.redis.publish(channel_name(execution_id), event.model_dump_json())
        logger.debug(f"Appended {event.type.value} event {entry_id} for execution {execution_id}")
        return entry_id

    async def read(self, execution_id: str, since: Optional[str] = None) -> List[LogEvent]:
        """
        Read stored events in order.

        Args:
            execution_id: Execution to read
            since: Only return events with an entry id after this one

        Returns:
            Events with their ``id`` set
        """
        start = since if since and since != '-' else '-'
        entries = await self.redis.xrange(stream_key(execution_id), min=start, max='+')

        events = []
        for entry_id, fields in entries:
            if start != '-' and entry_id_key(entry_id) <= entry_id_key(start):
                continue
            event = LogEvent.model_validate_json(fields["event"])
            event.id = entry_id
            events.append(event)
        return events

    async def subscribe(self, execution_id: str) -> AsyncIterator[LogEvent]:
        """
        Yield the stored events followed by live ones.

        Ends after an execution_complete or execution_cancelled event, or
        an execution_failed event that will not be retried.
        """
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel_name(execution_id))
        try:
            last_id: Optional[str] = None
            for event in await self.read(execution_id):
                last_id = event.id
                yield event
                if is_end_of_stream(event):
                    return

            while True:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self.poll_interval
                )
                if message is None or message.get("type") != "message":
                    continue

                event = LogEvent.model_validate_json(message["data"])
                if last_id and event.id and entry_id_key(event.id) <= entry_id_key(last_id):
                    continue
                last_id = event.id or last_id
                yield event
                if is_end_of_stream(event):
                    return
        finally:
            await pubsub.unsubscribe(channel_name(execution_id))
            await pubsub.aclose()

    async def append_workflow_log(self, workflow_id: str, fields: Dict[str, Any]) -> str:
        """Append an entry to the durable per-workflow log."""
        encoded = {
            key: value if isinstance(value, str) else json.dumps(value, default=str)
            for key, value in fields.items()
            if value is not None
        }
        return await self.redis.xadd(workflow_log_key(workflow_id), encoded)

    async def read_workflow_log(self, workflow_id: str, count: int = 100) -> List[Dict[str, Any]]:
        """Most recent per-workflow log entries, oldest first."""
        entries = await self.redis.xrevrange(workflow_log_key(workflow_id), count=count)
        return [{"id": entry_id, **fields} for entry_id, fields in reversed(entries)]

    async def delete(self, execution_id: str) -> None:
        await self.redis.delete(stream_key(execution_id))
