"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    WorkflowValidationError,
    NodeExecutionError,
    ExecutionEngineError,
    ExecutorRegistryError,
    StorageError,
    SandboxError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "WorkflowEngineError",
    "WorkflowValidationError",
    "NodeExecutionError",
    "ExecutionEngineError",
    "ExecutorRegistryError",
    "StorageError",
    "SandboxError",
    "setup_logging",
    "get_logger",
]
