"""Executor registry mapping node type tags to executors."""

from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

from ..nodes.base import NodeExecutor, UnknownNodeExecutor
from .exceptions import ExecutorRegistryError
from .logging import get_logger

logger = get_logger(__name__)


class ExecutorRegistry:
    """
    Immutable mapping from node type to executor.

    Built once and injected into the coordinator. Unknown types resolve to
    a fallback executor that returns a warning payload instead of failing.
    """

    def __init__(self, executors: Mapping[str, NodeExecutor],
                 fallback: Optional[NodeExecutor] = None):
        for node_type, executor in executors.items():
            if not node_type or not node_type.strip():
                raise ExecutorRegistryError("Node type cannot be empty")
            if not isinstance(executor, NodeExecutor):
                raise ExecutorRegistryError(
                    f"Executor for '{node_type}' must be a NodeExecutor",
                    node_type=node_type
                )
        self._executors = MappingProxyType(dict(executors))
        self._fallback = fallback or UnknownNodeExecutor()

    def get(self, node_type: str) -> NodeExecutor:
        """Executor for ``node_type``, or the fallback when none is registered."""
        executor = self._executors.get(node_type)
        if executor is None:
            logger.warning(f"No executor registered for node type '{node_type}', using fallback")
            return self._fallback
        return executor

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._executors

    def __iter__(self) -> Iterator[str]:
        return iter(self._executors)

    def __len__(self) -> int:
        return len(self._executors)

    def extend(self, executors: Mapping[str, NodeExecutor]) -> 'ExecutorRegistry':
        """Return a new registry with ``executors`` added or replaced."""
        merged = dict(self._executors)
        merged.update(executors)
        return ExecutorRegistry(merged, fallback=self._fallback)

    def describe(self) -> List[Dict[str, str]]:
        """Type tags with descriptions, for the node-types listing."""
        return [
            {"type": node_type, "description": executor.description}
            for node_type, executor in sorted(self._executors.items())
        ]

    @classmethod
    def with_defaults(cls, redis_client: Any, http_client: Any,
                      config: Optional[Any] = None,
                      workflow_log: Optional[Any] = None) -> 'ExecutorRegistry':
        """
        Build the registry of built-in executors.

        Args:
            redis_client: ``redis.asyncio`` client for the redis nodes
            http_client: ``httpx.AsyncClient`` for the httpRequest node
            config: AppConfig supplying timeouts and limits
            workflow_log: Durable per-workflow log used by the logger node

        Returns:
            Registry with every built-in node type
        """
        from ..config import get_config
        from ..nodes import (
            ConditionExecutor, DelayExecutor, HttpRequestExecutor, LoggerExecutor,
            RedisGetExecutor, RedisSetExecutor, TransformExecutor
        )
        from .sandbox import ScriptSandbox

        config = config or get_config()
        sandbox = ScriptSandbox(timeout=config.script_timeout)

        executors = [
            HttpRequestExecutor(http_client, default_timeout_ms=config.http_timeout * 1000),
            TransformExecutor(sandbox),
            RedisGetExecutor(redis_client),
            RedisSetExecutor(redis_client),
            ConditionExecutor(sandbox),
            DelayExecutor(max_delay_seconds=config.max_delay_seconds),
            LoggerExecutor(workflow_log),
        ]
        return cls({executor.node_type: executor for executor in executors})
