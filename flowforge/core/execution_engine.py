"""Execution engine: synchronous and queued dispatch of workflow runs."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..config import AppConfig, get_config
from ..models.core import (
    ExecutionMode, ExecutionRecord, ExecutionStatusEnum, LogEvent, LogEventType, Workflow
)
from .coordinator import Coordinator
from .error_recovery import RetryConfig
from .event_stream import EventStream
from .exceptions import ExecutionEngineError
from .execution_store import ExecutionStore
from .executor_registry import ExecutorRegistry
from .job_queue import Job, JobQueue
from .logging import get_logger, log_with_context
from .workflow_store import WorkflowStore

logger = get_logger(__name__)

QUEUED = "queued"


class StartResult(BaseModel):
    """Outcome of starting an execution."""
    execution_id: str = Field(..., description="ID of the new execution")
    status: str = Field(..., description="completed, cancelled or queued")
    outputs: Optional[Dict[str, Any]] = Field(None, description="Node outputs for synchronous runs")
    error: Optional[str] = Field(None, description="Error message, if any")


class ExecutionEngine:
    """
    Runs workflows inline or through the job queue.

    Both modes drive the same Coordinator. Queued runs are retried as a
    whole with exponential backoff; synchronous runs are never retried.
    """

    def __init__(self, workflow_store: WorkflowStore, execution_store: ExecutionStore,
                 event_stream: EventStream, registry: ExecutorRegistry,
                 config: Optional[AppConfig] = None):
        """
        Args:
            workflow_store: Source of workflow documents
            execution_store: Execution lifecycle records
            event_stream: Execution event log
            registry: Executors by node type
            config: Settings for workers, retries and cancellation
        """
        self.config = config or get_config()
        self.workflow_store = workflow_store
        self.execution_store = execution_store
        self.event_stream = event_stream
        self.coordinator = Coordinator(
            registry, event_stream, execution_store,
            cooperative_cancellation=self.config.cooperative_cancellation
        )
        self.job_queue = JobQueue(
            self._process_job,
            concurrency=self.config.worker_concurrency,
            retry_config=RetryConfig(
                max_attempts=self.config.job_attempts,
                base_delay=self.config.job_backoff_delay,
                exponential_base=2.0,
                max_delay=max(self.config.job_backoff_delay, 1.0) * 2 ** self.config.job_attempts,
                jitter=False,
                retryable_exceptions=[Exception]
            ),
            finished_job_retention=self.config.finished_job_retention
        )

        logger.info(
            f"ExecutionEngine initialized with worker_concurrency={self.config.worker_concurrency}, "
            f"job_attempts={self.config.job_attempts}"
        )

    def start_workers(self) -> None:
        """Start the asynchronous worker pool on the running loop."""
        self.job_queue.start()

    async def shutdown(self, drain: bool = True) -> None:
        await self.job_queue.shutdown(drain=drain)

    async def start(self, workflow_id: str, inputs: Optional[Dict[str, Any]] = None,
                    mode: Union[ExecutionMode, str] = ExecutionMode.SYNC) -> StartResult:
        """
        Start an execution of a stored workflow.

        Args:
            workflow_id: Workflow to run
            inputs: Run inputs, given to nodes without predecessors
            mode: ``sync`` runs inline; ``async`` queues a job

        Returns:
            StartResult with outputs for sync runs, status ``queued`` for async

        Raises:
            StorageError: If the workflow does not exist
            NodeExecutionError: If a synchronous run fails
        """
        mode = ExecutionMode(mode)
        inputs = inputs or {}
        workflow = self.workflow_store.get_workflow(workflow_id)
        record = self.execution_store.create_execution(workflow_id, inputs, mode)

        log_with_context(
            logger, logging.INFO,
            f"Starting {mode.value} execution",
            execution_id=record.id,
            workflow_id=workflow_id
        )

        if mode == ExecutionMode.SYNC:
            outputs = await self.coordinator.run(record.id, workflow, inputs)
            status = self.execution_store.get_status(record.id)
            return StartResult(execution_id=record.id, status=status.value, outputs=outputs)

        await self.job_queue.enqueue({
            "execution_id": record.id,
            "workflow_id": workflow_id,
            "workflow": workflow.model_dump(mode="json"),
            "inputs": inputs,
        }, job_id=record.id)
        return StartResult(execution_id=record.id, status=QUEUED)

    async def _process_job(self, job: Job) -> Optional[Dict[str, Any]]:
        execution_id = job.data["execution_id"]

        if self.execution_store.get_status(execution_id) == ExecutionStatusEnum.CANCELLED:
            logger.info(f"Execution {execution_id} was cancelled before it started")
            return None

        workflow = Workflow.model_validate(job.data["workflow"])

        def on_progress(progress: Dict[str, Any]) -> None:
            job.update_progress(progress)
            self.execution_store.update_progress(execution_id, progress)

        attempt = job.attempts_made

        def will_retry(error: Exception) -> bool:
            return self.job_queue.retry_config.should_retry(error, attempt)

        return await self.coordinator.run(
            execution_id, workflow, job.data["inputs"],
            on_progress=on_progress, will_retry=will_retry
        )

    def await_result(self, execution_id: str) -> Dict[str, Any]:
        """
        Final outputs of a synchronous execution.

        Raises:
            ExecutionEngineError: For asynchronous executions, or with the
                stored error when the execution failed
        """
        record = self.execution_store.get_execution(execution_id)
        if record.mode == ExecutionMode.ASYNC:
            raise ExecutionEngineError(
                f"Execution {execution_id} runs asynchronously; poll its status or subscribe to its events",
                execution_id=execution_id
            )
        if record.status == ExecutionStatusEnum.COMPLETED:
            return record.outputs or {}
        if record.status == ExecutionStatusEnum.FAILED:
            raise ExecutionEngineError(record.error or "Execution failed", execution_id=execution_id)
        raise ExecutionEngineError(
            f"Execution {execution_id} is {record.status.value}", execution_id=execution_id
        )

    async def wait_for_job(self, execution_id: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Wait for a queued execution's job to finish, re-raising its final error."""
        return await self.job_queue.wait(execution_id, timeout=timeout)

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        return self.execution_store.get_execution(execution_id)

    def list_executions(self, workflow_id: Optional[str] = None,
                        limit: int = 100, offset: int = 0) -> List[ExecutionRecord]:
        return self.execution_store.list_executions(workflow_id, limit=limit, offset=offset)

    async def get_logs(self, execution_id: str, since: Optional[str] = None) -> List[LogEvent]:
        """Stored events of an execution, optionally after entry id ``since``."""
        self.execution_store.get_execution(execution_id)
        return await self.event_stream.read(execution_id, since=since)

    async def subscribe(self, execution_id: str) -> AsyncIterator[LogEvent]:
        """Stored events followed by live ones until the execution ends."""
        self.execution_store.get_execution(execution_id)
        async for event in self.event_stream.subscribe(execution_id):
            yield event

    async def cancel(self, execution_id: str) -> ExecutionRecord:
        """
        Mark an execution cancelled.

        An in-flight run is only stopped when cooperative cancellation is
        enabled; otherwise it finishes and records its outputs.

        Raises:
            ExecutionEngineError: If the execution already completed or failed
        """
        record = self.execution_store.get_execution(execution_id)
        if record.status == ExecutionStatusEnum.CANCELLED:
            return record
        if record.status in (ExecutionStatusEnum.COMPLETED, ExecutionStatusEnum.FAILED):
            raise ExecutionEngineError(
                f"Execution {execution_id} already {record.status.value}",
                execution_id=execution_id,
                error_code="ExecutionFinished"
            )

        record = self.execution_store.mark_cancelled(execution_id)
        await self.event_stream.append(execution_id, LogEvent(
            type=LogEventType.EXECUTION_CANCELLED,
            level="warn",
            message="Execution cancelled by user",
        ))
        log_with_context(
            logger, logging.INFO,
            "Execution cancelled",
            execution_id=execution_id,
            cooperative=self.config.cooperative_cancellation
        )
        return record
