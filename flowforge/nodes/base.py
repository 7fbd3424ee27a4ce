"""Executor contract and per-node context."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from ..models.core import LogEvent, LogEventType


LogSink = Callable[[LogEvent], Awaitable[Any]]


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp used in node results."""
    return datetime.now(timezone.utc).isoformat()


def option(config: Dict[str, Any], name: str, alias: Optional[str] = None, default: Any = None) -> Any:
    """Read a config option by its snake_case name or its camelCase alias."""
    if name in config:
        return config[name]
    if alias and alias in config:
        return config[alias]
    return default


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


class NodeContext:
    """
    Context handed to an executor for one node invocation.

    Carries the identifiers of the run and node, the run's shared
    variables and a ``log`` coroutine appending ``node_log`` events.
    """

    def __init__(
        self,
        execution_id: str,
        workflow_id: str,
        node_id: str,
        node_name: str,
        node_type: str,
        variables: Dict[str, Any],
        log_sink: LogSink
    ):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.node_id = node_id
        self.node_name = node_name
        self.node_type = node_type
        self.variables = variables
        self._log_sink = log_sink

    async def log(self, level: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Append a node_log event for this node."""
        await self._log_sink(LogEvent(
            type=LogEventType.NODE_LOG,
            node_id=self.node_id,
            node_name=self.node_name,
            level=level,
            message=message,
            data=data
        ))


class NodeExecutor(ABC):
    """Base class for node type executors."""

    node_type: str = ""
    description: str = ""

    @abstractmethod
    async def execute(self, config: Dict[str, Any], inputs: Any, context: NodeContext) -> Any:
        """
        Run the node.

        Args:
            config: The node's configuration
            inputs: Resolved inputs from predecessors or the run
            context: Node context with identifiers, variables and ``log``

        Returns:
            The node's result, recorded as its output
        """


class UnknownNodeExecutor(NodeExecutor):
    """Fallback for node types without an executor."""

    node_type = "unknown"
    description = "Returns a warning payload for unregistered node types"

    async def execute(self, config, inputs, context):
        return {
            "warning": "No executor implemented",
            "nodeType": context.node_type,
            "inputs": inputs,
        }
