"""Execution lifecycle records."""

import json
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import ExecutionMode, ExecutionRecord, ExecutionStatusEnum
from ..storage.database import SessionLocal
from ..storage.models import ExecutionModel
from .exceptions import StorageError
from .logging import get_logger

logger = get_logger(__name__)


def json_safe(value: Any) -> Any:
    """Coerce node results into plain JSON types for storage."""
    return json.loads(json.dumps(value, default=str))


def _to_record(model: ExecutionModel) -> ExecutionRecord:
    return ExecutionRecord(
        id=model.id,
        workflow_id=model.workflow_id,
        status=ExecutionStatusEnum(model.status),
        mode=ExecutionMode(model.mode),
        inputs=model.inputs or {},
        outputs=model.outputs,
        error=model.error,
        attempts=model.attempts or 0,
        progress=model.progress or {},
        created_at=model.created_at,
        started_at=model.started_at,
        completed_at=model.completed_at
    )


class ExecutionStore:
    """
    Persists execution records.

    A ``cancelled`` record keeps its status when the run later finishes;
    the outputs or error are still recorded.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or SessionLocal

    def create_execution(self, workflow_id: str, inputs: Dict[str, Any],
                         mode: ExecutionMode = ExecutionMode.SYNC) -> ExecutionRecord:
        """Create a pending execution record."""
        execution_id = str(uuid.uuid4())
        try:
            with self._session_factory() as db:
                model = ExecutionModel(
                    id=execution_id,
                    workflow_id=workflow_id,
                    status=ExecutionStatusEnum.PENDING.value,
                    mode=ExecutionMode(mode).value,
                    inputs=json_safe(inputs or {}),
                    attempts=0,
                    created_at=datetime.utcnow()
                )
                db.add(model)
                db.commit()
                logger.debug(f"Created execution {execution_id} for workflow {workflow_id}")
                return _to_record(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while creating execution: {str(e)}")
            raise StorageError(f"Failed to create execution: {str(e)}", operation="create", table="executions")

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        """
        Raises:
            StorageError: If not found (``not_found`` set) or the read fails
        """
        try:
            with self._session_factory() as db:
                return _to_record(self._load(db, execution_id))
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving execution: {str(e)}")
            raise StorageError(f"Failed to retrieve execution: {str(e)}", operation="get", table="executions")

    def get_status(self, execution_id: str) -> ExecutionStatusEnum:
        return self.get_execution(execution_id).status

    def list_executions(self, workflow_id: Optional[str] = None,
                        limit: int = 100, offset: int = 0) -> List[ExecutionRecord]:
        """List executions, newest first, optionally for one workflow."""
        try:
            with self._session_factory() as db:
                query = db.query(ExecutionModel)
                if workflow_id:
                    query = query.filter(ExecutionModel.workflow_id == workflow_id)
                models = (
                    query.order_by(ExecutionModel.created_at.desc())
                    .offset(offset)
                    .limit(limit)
                    .all()
                )
                return [_to_record(model) for model in models]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing executions: {str(e)}")
            raise StorageError(f"Failed to list executions: {str(e)}", operation="list", table="executions")

    def mark_running(self, execution_id: str) -> ExecutionRecord:
        """Set ``running`` and count the attempt."""
        def apply(model):
            model.status = ExecutionStatusEnum.RUNNING.value
            model.started_at = datetime.utcnow()
            model.completed_at = None
            model.error = None
            model.attempts = (model.attempts or 0) + 1
        return self._update(execution_id, apply)

    def mark_completed(self, execution_id: str, outputs: Dict[str, Any]) -> ExecutionRecord:
        def apply(model):
            self._finish(model, ExecutionStatusEnum.COMPLETED)
            model.outputs = json_safe(outputs)
            model.error = None
        return self._update(execution_id, apply)

    def mark_failed(self, execution_id: str, error: str,
                    outputs: Optional[Dict[str, Any]] = None) -> ExecutionRecord:
        def apply(model):
            self._finish(model, ExecutionStatusEnum.FAILED)
            model.error = error
            if outputs is not None:
                model.outputs = json_safe(outputs)
        return self._update(execution_id, apply)

    def mark_cancelled(self, execution_id: str) -> ExecutionRecord:
        def apply(model):
            model.status = ExecutionStatusEnum.CANCELLED.value
            model.completed_at = datetime.utcnow()
        return self._update(execution_id, apply)

    def update_progress(self, execution_id: str, progress: Dict[str, Any]) -> ExecutionRecord:
        def apply(model):
            model.progress = json_safe(progress)
        return self._update(execution_id, apply)

    @staticmethod
    def _finish(model: ExecutionModel, status: ExecutionStatusEnum) -> None:
        if model.status != ExecutionStatusEnum.CANCELLED.value:
            model.status = status.value
        model.completed_at = datetime.utcnow()

    @staticmethod
    def _load(db: Session, execution_id: str) -> ExecutionModel:
        model = db.get(ExecutionModel, execution_id)
        if model is None:
            raise StorageError(
                f"Execution with ID '{execution_id}' not found",
                operation="get", table="executions", not_found=True
            )
        return model

    def _update(self, execution_id: str, apply: Callable[[ExecutionModel], None]) -> ExecutionRecord:
        try:
            with self._session_factory() as db:
                model = self._load(db, execution_id)
                apply(model)
                db.commit()
                return _to_record(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while updating execution {execution_id}: {str(e)}")
            raise StorageError(f"Failed to update execution: {str(e)}", operation="update", table="executions")
