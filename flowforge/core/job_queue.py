"""In-process job queue for asynchronous executions."""

import asyncio
import uuid
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .error_recovery import RetryConfig, execute_async_with_retry
from .exceptions import ExecutionEngineError, ResourceExhaustionError
from .logging import get_logger

logger = get_logger(__name__)


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Job:
    """One queued execution: the run request plus its delivery state."""

    def __init__(self, data: Dict[str, Any], job_id: Optional[str] = None):
        self.id = job_id or str(uuid.uuid4())
        self.data = data
        self.status = JobStatus.WAITING
        self.attempts_made = 0
        self.progress: Dict[str, Any] = {}
        self.result: Any = None
        self.error: Optional[str] = None
        self.created_at = datetime.utcnow()
        self.finished_at: Optional[datetime] = None
        self._done = asyncio.get_running_loop().create_future()

    def update_progress(self, progress: Dict[str, Any]) -> None:
        self.progress = dict(progress)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "attempts_made": self.attempts_made,
            "progress": self.progress,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


JobHandler = Callable[[Job], Awaitable[Any]]


class JobQueue:
    """
    Bounded worker pool over an ``asyncio.Queue``.

    Each job is handed to ``handler`` and retried as a whole according to
    ``retry_config``, with exponential backoff between attempts. Only the
    ``finished_job_retention`` most recently finished jobs are kept.
    """

    def __init__(self, handler: JobHandler, concurrency: int = 5,
                 retry_config: Optional[RetryConfig] = None, max_queue_size: int = 1000,
                 finished_job_retention: int = 1000):
        self.handler = handler
        self.concurrency = concurrency
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3, base_delay=2.0, jitter=False, retryable_exceptions=[Exception]
        )
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._jobs: Dict[str, Job] = {}
        self._finished: deque = deque()
        self.finished_job_retention = finished_job_retention
        self._workers: List[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the worker tasks on the running event loop."""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"flowforge-worker-{n}")
            for n in range(self.concurrency)
        ]
        logger.info(f"Job queue started with {self.concurrency} workers")

    async def enqueue(self, data: Dict[str, Any], job_id: Optional[str] = None) -> Job:
        """
        Queue a job.

        Raises:
            ExecutionEngineError: If the queue is not running
            ResourceExhaustionError: If the queue is full
        """
        if not self._running:
            raise ExecutionEngineError("Job queue is not running")

        job = Job(data, job_id=job_id)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            raise ResourceExhaustionError(
                "Execution queue is full, please try again later",
                resource_type="job_queue",
                current_usage=self._queue.qsize(),
                limit=self._queue.maxsize
            )
        self._jobs[job.id] = job
        logger.info(f"Queued job {job.id}")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Any:
        """
        Wait for a job to finish.

        Returns:
            The handler's result

        Raises:
            ExecutionEngineError: If the job is unknown
            Exception: The job's final error, if it failed
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise ExecutionEngineError(f"Job {job_id} not found")
        return await asyncio.wait_for(asyncio.shield(job._done), timeout=timeout)

    def stats(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return {"workers": len(self._workers), "queued": self._queue.qsize(), "jobs": counts}

    async def shutdown(self, drain: bool = True) -> None:
        """Stop the workers, first letting queued jobs finish when ``drain`` is set."""
        if not self._running:
            return
        self._running = False
        if drain:
            await self._queue.join()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Job queue stopped")

    async def _worker(self, worker_number: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            finally:
                self._queue.task_done()

    async def _process(self, job: Job) -> None:
        job.status = JobStatus.ACTIVE

        def on_retry(error: Exception, attempt: int) -> None:
            logger.warning(f"Job {job.id} attempt {attempt} failed: {error}")

        async def run_execution_job(current: Job) -> Any:
            current.attempts_made += 1
            return await self.handler(current)

        try:
            result = await execute_async_with_retry(
                run_execution_job, self.retry_config, job, on_retry=on_retry
            )
        except asyncio.CancelledError:
            job.status = JobStatus.FAILED
            job.error = "Job cancelled during shutdown"
            job.finished_at = datetime.utcnow()
            if not job._done.done():
                job._done.cancel()
            self._retain(job)
            raise
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            job.finished_at = datetime.utcnow()
            logger.error(f"Job {job.id} failed after {job.attempts_made} attempts: {e}")
            if not job._done.done():
                job._done.set_exception(e)
                # Retrieved here so an unawaited failure is not reported as lost
                job._done.exception()
            self._retain(job)
            return

        job.status = JobStatus.COMPLETED
        job.result = result
        job.finished_at = datetime.utcnow()
        logger.info(f"Job {job.id} completed after {job.attempts_made} attempts")
        if not job._done.done():
            job._done.set_result(result)
        self._retain(job)

    def _retain(self, job: Job) -> None:
        """Remember a finished job, evicting the oldest beyond the retention limit."""
        self._finished.append(job.id)
        while len(self._finished) > self.finished_job_retention:
            evicted = self._finished.popleft()
            self._jobs.pop(evicted, None)
