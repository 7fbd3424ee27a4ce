"""Built-in node executors."""

from .base import NodeContext, NodeExecutor, UnknownNodeExecutor
from .condition import ConditionExecutor
from .delay import DelayExecutor
from .http_request import HttpRequestExecutor
from .logger import LoggerExecutor
from .redis_get import RedisGetExecutor
from .redis_set import RedisSetExecutor
from .transform import TransformExecutor

__all__ = [
    "NodeContext",
    "NodeExecutor",
    "UnknownNodeExecutor",
    "ConditionExecutor",
    "DelayExecutor",
    "HttpRequestExecutor",
    "LoggerExecutor",
    "RedisGetExecutor",
    "RedisSetExecutor",
    "TransformExecutor",
]
