"""Pytest configuration and fixtures."""

import json
from typing import Any, Dict, List

import fakeredis
import httpx
import pytest

from flowforge.config import get_testing_config
from flowforge.core.event_stream import EventStream
from flowforge.core.execution_engine import ExecutionEngine
from flowforge.core.execution_store import ExecutionStore
from flowforge.core.executor_registry import ExecutorRegistry
from flowforge.core.sandbox import ScriptSandbox
from flowforge.core.workflow_store import WorkflowStore
from flowforge.models.core import Connection, LogEvent, Node, Workflow
from flowforge.nodes.base import NodeContext
from flowforge.storage.database import create_database_engine, create_session_factory, create_tables


def http_handler(request: httpx.Request) -> httpx.Response:
    """Canned responses for the httpRequest node."""
    path = request.url.path
    if path == "/users/1":
        return httpx.Response(200, json={"id": 1, "name": "Ada"})
    if path == "/echo":
        body = json.loads(request.content) if request.content else None
        return httpx.Response(200, json={
            "method": request.method,
            "body": body,
            "headers": {"x-token": request.headers.get("x-token")},
        })
    if path == "/text":
        return httpx.Response(200, text="plain body")
    if path == "/missing":
        return httpx.Response(404, json={"detail": "not here"})
    if path == "/unreachable":
        raise httpx.ConnectError("connection refused", request=request)
    return httpx.Response(500, text="unexpected")


@pytest.fixture
def config():
    """Testing configuration with short backoff and delay caps."""
    return get_testing_config()


@pytest.fixture
def session_factory():
    """Session factory over a fresh in-memory database."""
    engine = create_database_engine("sqlite:///:memory:")
    create_tables(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def redis():
    """Async fake Redis with its own server, returning decoded strings."""
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def http_client():
    """httpx client answering from ``http_handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(http_handler), base_url="http://api.test")


@pytest.fixture
def event_stream(redis):
    return EventStream(redis, poll_interval=0.05)


@pytest.fixture
def sandbox():
    return ScriptSandbox(timeout=2.0)


@pytest.fixture
def registry(redis, http_client, config, event_stream):
    return ExecutorRegistry.with_defaults(redis, http_client, config=config, workflow_log=event_stream)


@pytest.fixture
def workflow_store(session_factory, registry):
    return WorkflowStore(session_factory, known_node_types=registry)


@pytest.fixture
def execution_store(session_factory):
    return ExecutionStore(session_factory)


@pytest.fixture
def engine(workflow_store, execution_store, event_stream, registry, config):
    """Execution engine; async tests start its workers themselves."""
    return ExecutionEngine(workflow_store, execution_store, event_stream, registry, config=config)


class RecordingContext(NodeContext):
    """NodeContext that keeps the node_log events it emits."""

    def __init__(self, node_type: str = "test", variables: Dict[str, Any] = None,
                 workflow_id: str = "wf-test"):
        self.events: List[LogEvent] = []

        async def sink(event: LogEvent):
            self.events.append(event)

        super().__init__(
            execution_id="exec-test",
            workflow_id=workflow_id,
            node_id="node-1",
            node_name="Test Node",
            node_type=node_type,
            variables=variables or {},
            log_sink=sink
        )

    def messages(self) -> List[str]:
        return [event.message for event in self.events]


@pytest.fixture
def node_context():
    return RecordingContext()


def make_workflow(nodes, connections=(), name="Test Workflow") -> Workflow:
    """Build a workflow from ``(id, type, config)`` tuples and ``(source, target)`` pairs."""
    return Workflow(
        name=name,
        nodes=[
            node if isinstance(node, Node) else Node(id=node[0], type=node[1], config=node[2] if len(node) > 2 else {})
            for node in nodes
        ],
        connections=[
            Connection(id=f"{source}-{target}", source=source, target=target)
            for source, target in connections
        ]
    )
