"""Data models for the workflow execution engine."""

from .core import (
    ExecutionStatusEnum,
    ExecutionMode,
    LogEventType,
    ValidationResult,
    Node,
    Connection,
    Workflow,
    WorkflowSummary,
    ExecutionContext,
    ExecutionRecord,
    LogEvent,
    now_ms,
)

__all__ = [
    "ExecutionStatusEnum",
    "ExecutionMode",
    "LogEventType",
    "ValidationResult",
    "Node",
    "Connection",
    "Workflow",
    "WorkflowSummary",
    "ExecutionContext",
    "ExecutionRecord",
    "LogEvent",
    "now_ms",
]
