"""FastAPI REST endpoints for the workflow engine."""

from datetime import datetime
from typing import Dict, List, Any, Optional
from fastapi import APIRouter, HTTPException, Depends, Response, status, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from ..core.execution_engine import ExecutionEngine, StartResult
from ..core.executor_registry import ExecutorRegistry
from ..core.workflow_store import WorkflowStore
from ..core.exceptions import (
    WorkflowValidationError,
    ExecutionEngineError,
    StorageError,
    ResourceExhaustionError,
    WorkflowEngineError,
    create_error_response
)
from ..models.core import (
    ExecutionMode,
    ExecutionRecord,
    LogEvent,
    Workflow,
    WorkflowSummary,
    ValidationResult
)
from ..core.logging import get_logger

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized by the application factory)
_workflow_store: Optional[WorkflowStore] = None
_execution_engine: Optional[ExecutionEngine] = None
_executor_registry: Optional[ExecutorRegistry] = None


def init_dependencies(
    workflow_store: WorkflowStore,
    execution_engine: ExecutionEngine,
    executor_registry: ExecutorRegistry
):
    """Initialize the global dependencies."""
    global _workflow_store, _execution_engine, _executor_registry
    _workflow_store = workflow_store
    _execution_engine = execution_engine
    _executor_registry = executor_registry


def get_workflow_store() -> WorkflowStore:
    """Dependency to get the workflow store."""
    if _workflow_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow store not initialized"
        )
    return _workflow_store


def get_execution_engine() -> ExecutionEngine:
    """Dependency to get execution engine."""
    if _execution_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution engine not initialized"
        )
    return _execution_engine


def get_executor_registry() -> ExecutorRegistry:
    """Dependency to get the executor registry."""
    if _executor_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Executor registry not initialized"
        )
    return _executor_registry


def error_status_code(error: WorkflowEngineError) -> int:
    """HTTP status code for an engine error."""
    if isinstance(error, WorkflowValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, StorageError):
        return status.HTTP_404_NOT_FOUND if error.not_found else status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(error, ResourceExhaustionError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, ExecutionEngineError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(error: Exception, action: str) -> HTTPException:
    """Translate an exception raised while performing ``action``."""
    if isinstance(error, WorkflowEngineError):
        status_code = error_status_code(error)
        if status_code >= 500:
            logger.error(f"Workflow engine error while {action}: {error.message}")
        else:
            logger.warning(f"Workflow engine error while {action}: {error.message}")
        return HTTPException(status_code=status_code, detail=create_error_response(error))

    logger.error(f"Unexpected error while {action}: {str(error)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while {action}",
            "details": {"original_error": str(error)},
            "timestamp": datetime.utcnow().isoformat()
        }
    )


# Request/Response models
class CreateWorkflowRequest(BaseModel):
    """Request model for creating a workflow."""
    workflow: Workflow = Field(..., description="Workflow document to store")


class CreateWorkflowResponse(BaseModel):
    """Response model for workflow creation."""
    workflow_id: str = Field(..., description="Unique identifier of the created workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class RunWorkflowRequest(BaseModel):
    """Request model for starting an execution."""
    workflow_id: str = Field(..., description="ID of the workflow to execute")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Run inputs")
    mode: ExecutionMode = Field(default=ExecutionMode.SYNC, description="sync or async")


class NodeTypeInfo(BaseModel):
    """A registered node type."""
    type: str = Field(..., description="Node type tag")
    description: str = Field(..., description="What the executor does")


# Workflow endpoints

@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new workflow",
    description="Validate and store a workflow document and return its unique identifier"
)
async def create_workflow(
    request: CreateWorkflowRequest,
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> CreateWorkflowResponse:
    """
    Create a new workflow.

    Args:
        request: Workflow creation request containing the document
        workflow_store: Workflow store dependency

    Returns:
        Response containing the workflow ID and any validation warnings

    Raises:
        HTTPException: If validation fails or storage encounters an error
    """
    try:
        logger.info(f"Creating new workflow: {request.workflow.name}")

        validation_result = workflow_store.validate_workflow(request.workflow)
        workflow_id = workflow_store.create_workflow(request.workflow)

        return CreateWorkflowResponse(
            workflow_id=workflow_id,
            message=f"Workflow '{request.workflow.name}' created successfully",
            validation_warnings=validation_result.warnings
        )
    except Exception as e:
        raise to_http_exception(e, "creating the workflow")


@router.post(
    "/workflows/validate",
    response_model=ValidationResult,
    summary="Validate a workflow",
    description="Validate a workflow document without storing it"
)
async def validate_workflow(
    request: CreateWorkflowRequest,
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> ValidationResult:
    try:
        return workflow_store.validate_workflow(request.workflow)
    except Exception as e:
        raise to_http_exception(e, "validating the workflow")


@router.get(
    "/workflows",
    response_model=List[WorkflowSummary],
    summary="List all workflows",
    description="Retrieve summary information for stored workflows, newest first"
)
async def list_workflows(
    limit: int = 100,
    offset: int = 0,
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> List[WorkflowSummary]:
    try:
        workflows = workflow_store.list_workflows(limit=limit, offset=offset)
        logger.debug(f"Retrieved {len(workflows)} workflows")
        return workflows
    except Exception as e:
        raise to_http_exception(e, "listing workflows")


@router.get(
    "/workflows/{workflow_id}",
    response_model=Workflow,
    summary="Get a workflow",
    description="Retrieve the complete workflow document"
)
async def get_workflow(
    workflow_id: str,
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> Workflow:
    try:
        return workflow_store.get_workflow(workflow_id)
    except Exception as e:
        raise to_http_exception(e, "retrieving the workflow")


@router.delete(
    "/workflows/{workflow_id}",
    summary="Delete a workflow",
    description="Delete a workflow and its execution records"
)
async def delete_workflow(
    workflow_id: str,
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    try:
        deleted = workflow_store.delete_workflow(workflow_id)
    except Exception as e:
        raise to_http_exception(e, "deleting the workflow")

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "WorkflowNotFound",
                "message": f"Workflow with ID '{workflow_id}' not found",
                "details": {"workflow_id": workflow_id}
            }
        )
    return {"message": f"Workflow '{workflow_id}' deleted successfully", "workflow_id": workflow_id}


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=List[ExecutionRecord],
    summary="List executions of a workflow",
    description="Retrieve the execution records of one workflow, newest first"
)
async def list_workflow_executions(
    workflow_id: str,
    limit: int = 100,
    offset: int = 0,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> List[ExecutionRecord]:
    try:
        return execution_engine.list_executions(workflow_id, limit=limit, offset=offset)
    except Exception as e:
        raise to_http_exception(e, "listing executions")


# Execution endpoints

@router.post(
    "/executions",
    response_model=StartResult,
    summary="Execute a workflow",
    description=(
        "Run a stored workflow. Synchronous runs return their outputs; "
        "asynchronous runs are queued and return 202 with the execution ID"
    )
)
async def start_execution(
    request: RunWorkflowRequest,
    response: Response,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> StartResult:
    """
    Start an execution.

    Args:
        request: Workflow ID, run inputs and mode
        response: Used to answer 202 for queued runs
        execution_engine: Execution engine dependency

    Returns:
        Execution ID and status, plus outputs for synchronous runs

    Raises:
        HTTPException: 404 for an unknown workflow, 503 when the queue is
            full, 500 when a synchronous run fails
    """
    try:
        logger.info(f"Starting {request.mode.value} execution for workflow: {request.workflow_id}")
        result = await execution_engine.start(request.workflow_id, request.inputs, request.mode)
    except Exception as e:
        raise to_http_exception(e, "executing the workflow")

    if request.mode == ExecutionMode.ASYNC:
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionRecord,
    summary="Get execution status",
    description="Retrieve the lifecycle record of an execution"
)
async def get_execution(
    execution_id: str,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecutionRecord:
    try:
        return execution_engine.get_execution(execution_id)
    except Exception as e:
        raise to_http_exception(e, "retrieving execution status")


@router.get(
    "/executions/{execution_id}/logs",
    response_model=List[LogEvent],
    summary="Get execution events",
    description="Retrieve the stored events of an execution in order, optionally after an entry ID"
)
async def get_execution_logs(
    execution_id: str,
    since: Optional[str] = None,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> List[LogEvent]:
    try:
        logs = await execution_engine.get_logs(execution_id, since=since)
        logger.debug(f"Retrieved {len(logs)} events for execution {execution_id}")
        return logs
    except Exception as e:
        raise to_http_exception(e, "retrieving execution logs")


@router.post(
    "/executions/{execution_id}/cancel",
    response_model=ExecutionRecord,
    summary="Cancel an execution",
    description="Mark an execution cancelled"
)
async def cancel_execution(
    execution_id: str,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecutionRecord:
    try:
        return await execution_engine.cancel(execution_id)
    except Exception as e:
        raise to_http_exception(e, "cancelling the execution")


@router.get(
    "/node-types",
    response_model=List[NodeTypeInfo],
    summary="List node types",
    description="Retrieve the node types with a registered executor"
)
async def list_node_types(
    executor_registry: ExecutorRegistry = Depends(get_executor_registry)
) -> List[NodeTypeInfo]:
    return [NodeTypeInfo(**entry) for entry in executor_registry.describe()]


# WebSocket endpoint for real-time monitoring

@router.websocket("/executions/{execution_id}/stream")
async def stream_execution(websocket: WebSocket, execution_id: str):
    """
    Stream an execution's events over a WebSocket.

    Stored events are replayed first, then live events follow until the
    execution completes, fails or is cancelled. Each message is one event:
    {
        "id": "stream_entry_id",
        "type": "node_start" | "node_complete" | ... | "execution_complete",
        "message": "...",
        "node_id": "optional",
        "timestamp": epoch_ms,
        "data": {...}
    }
    """
    if _execution_engine is None:
        await websocket.close(code=1011, reason="Execution engine not initialized")
        return

    await websocket.accept()
    logger.info(f"WebSocket client connected for execution {execution_id}")

    try:
        async for event in _execution_engine.subscribe(execution_id):
            await websocket.send_json(event.model_dump(mode="json"))
        await websocket.close()
    except StorageError as e:
        await websocket.send_json({
            "type": "error",
            "message": e.message,
            "timestamp": datetime.utcnow().isoformat()
        })
        await websocket.close(code=1008, reason="Execution not found")
    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected from execution {execution_id}")
