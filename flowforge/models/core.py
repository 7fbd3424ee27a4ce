"""Core Pydantic models for the workflow execution engine."""

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ExecutionStatusEnum(str, Enum):
    """Enumeration of execution lifecycle statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionMode(str, Enum):
    """How a run is dispatched."""
    SYNC = "sync"
    ASYNC = "async"


class LogEventType(str, Enum):
    """Enumeration of execution log event types."""
    NODE_START = "node_start"
    NODE_COMPLETE = "node_complete"
    NODE_ERROR = "node_error"
    NODE_SKIPPED = "node_skipped"
    NODE_LOG = "node_log"
    EXECUTION_COMPLETE = "execution_complete"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_CANCELLED = "execution_cancelled"


class ValidationResult(BaseModel):
    """Result of workflow validation."""
    is_valid: bool = Field(..., description="Whether the workflow is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class Node(BaseModel):
    """One typed, configured unit of work in a workflow."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Identifier, unique within the workflow")
    type: str = Field(..., description="Type tag selecting the executor")
    name: Optional[str] = Field(None, description="Display name, defaults to the type")
    config: Dict[str, Any] = Field(default_factory=dict, description="Executor-specific configuration")
    continue_on_error: bool = Field(
        False,
        alias="continueOnError",
        description="Record executor failures as output instead of aborting the run"
    )
    position: Optional[Dict[str, Any]] = Field(None, description="Editor layout, ignored by execution")

    @field_validator('id', 'type')
    @classmethod
    def validate_not_blank(cls, value):
        """Ensure identifiers are not blank."""
        if not value or not value.strip():
            raise ValueError("Node id and type cannot be empty")
        return value.strip()

    @model_validator(mode='after')
    def default_name(self):
        if not self.name:
            self.name = self.type
        return self


class Connection(BaseModel):
    """Directed data-flow edge between two nodes."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Connection identifier")
    source: str = Field(..., description="Source node id")
    target: str = Field(..., description="Target node id")
    condition: Optional[str] = Field(None, description="Informational branch tag, not evaluated")


class Workflow(BaseModel):
    """A workflow document: nodes, connections and settings."""
    id: Optional[str] = Field(None, description="Workflow id, assigned on creation")
    name: str = Field(..., description="Name of the workflow")
    description: str = Field("", description="Description of the workflow")
    nodes: List[Node] = Field(..., description="Nodes in input order")
    connections: List[Connection] = Field(default_factory=list, description="Edges between nodes")
    settings: Dict[str, Any] = Field(default_factory=dict, description="Free-form workflow settings")
    version: int = Field(1, ge=1, description="Document version")

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        """Ensure workflow name is not empty."""
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("All node IDs must be unique")
        return nodes

    def valid_connections(self) -> List[Connection]:
        """Connections whose endpoints both name existing nodes."""
        node_ids = {node.id for node in self.nodes}
        return [
            conn for conn in self.connections
            if conn.source in node_ids and conn.target in node_ids
        ]


class WorkflowSummary(BaseModel):
    """Summary information about a stored workflow."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    description: str = Field("", description="Workflow description")
    version: int = Field(..., description="Document version")
    node_count: int = Field(..., description="Number of nodes")
    connection_count: int = Field(..., description="Number of connections")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")


class ExecutionContext(BaseModel):
    """Mutable per-run state, owned by a single coordinator run."""
    execution_id: str
    workflow_id: str
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)


class ExecutionRecord(BaseModel):
    """Persisted lifecycle record of one execution."""
    id: str = Field(..., description="Execution ID")
    workflow_id: str = Field(..., description="ID of the executed workflow")
    status: ExecutionStatusEnum = Field(..., description="Current execution status")
    mode: ExecutionMode = Field(ExecutionMode.SYNC, description="Dispatch mode")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Caller-supplied inputs")
    outputs: Optional[Dict[str, Any]] = Field(None, description="Per-node outputs once completed")
    error: Optional[str] = Field(None, description="Error message if execution failed")
    attempts: int = Field(0, description="Number of coordinator runs started")
    progress: Dict[str, Any] = Field(default_factory=dict, description="Latest progress report")
    created_at: datetime = Field(..., description="When the execution was requested")
    started_at: Optional[datetime] = Field(None, description="When the coordinator started")
    completed_at: Optional[datetime] = Field(None, description="When a terminal state was reached")


class LogEvent(BaseModel):
    """One entry of an execution's event stream."""
    type: LogEventType = Field(..., description="Type of event")
    message: str = Field(..., description="Human readable message")
    node_id: Optional[str] = Field(None, description="Node the event refers to")
    node_name: Optional[str] = Field(None, description="Display name of the node")
    level: str = Field("info", description="Log level")
    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds")
    data: Optional[Dict[str, Any]] = Field(None, description="Structured payload")
    error: Optional[str] = Field(None, description="Error detail or traceback")
    id: Optional[str] = Field(None, description="Stream entry id, set when read back")
