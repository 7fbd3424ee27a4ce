"""Workflow document store."""

import uuid
from datetime import datetime
from typing import Callable, Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import Workflow, WorkflowSummary, ValidationResult
from ..storage.database import SessionLocal
from ..storage.models import WorkflowModel
from .error_recovery import RetryConfig, with_retry
from .exceptions import WorkflowValidationError, StorageError, TransientError
from .graph_order import find_cycle_nodes
from .logging import get_logger

logger = get_logger(__name__)


class WorkflowStore:
    """Stores, validates and retrieves workflow documents."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None,
                 known_node_types: Optional[Iterable[str]] = None):
        """
        Args:
            session_factory: Callable returning a new SQLAlchemy session
            known_node_types: Node types with a registered executor, used
                for validation warnings
        """
        self._session_factory = session_factory or SessionLocal
        self._known_node_types = set(known_node_types) if known_node_types is not None else None

    @with_retry(RetryConfig(max_attempts=3, base_delay=0.5, retryable_exceptions=[StorageError, TransientError]))
    def create_workflow(self, workflow: Workflow) -> str:
        """
        Validate and store a workflow document.

        Returns:
            str: The new workflow id

        Raises:
            WorkflowValidationError: If validation fails
            StorageError: If the storage operation fails
        """
        logger.info(f"Creating workflow: {workflow.name}")

        validation_result = self.validate_workflow(workflow)
        if not validation_result.is_valid:
            error_msg = f"Workflow validation failed: {'; '.join(validation_result.errors)}"
            logger.error(error_msg)
            raise WorkflowValidationError(
                error_msg,
                validation_errors=validation_result.errors,
                workflow_name=workflow.name
            )

        if validation_result.warnings:
            logger.warning(f"Workflow validation warnings: {'; '.join(validation_result.warnings)}")

        workflow_id = workflow.id or str(uuid.uuid4())
        try:
            with self._session_factory() as db:
                db.add(WorkflowModel(
                    id=workflow_id,
                    name=workflow.name,
                    description=workflow.description,
                    version=workflow.version,
                    definition=workflow.model_dump(mode="json", exclude={"id"}),
                    created_at=datetime.utcnow()
                ))
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database error while creating workflow: {str(e)}")
            raise StorageError(f"Failed to store workflow: {str(e)}", operation="create", table="workflows")

        logger.info(f"Created workflow '{workflow.name}' with ID: {workflow_id}")
        return workflow_id

    def get_workflow(self, workflow_id: str) -> Workflow:
        """
        Retrieve a workflow document by id.

        Raises:
            StorageError: If not found (``not_found`` set) or the read fails
        """
        try:
            with self._session_factory() as db:
                model = db.get(WorkflowModel, workflow_id)
                if model is None:
                    raise StorageError(
                        f"Workflow with ID '{workflow_id}' not found",
                        operation="get", table="workflows", not_found=True
                    )
                return Workflow(id=model.id, **model.definition)
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving workflow: {str(e)}")
            raise StorageError(f"Failed to retrieve workflow: {str(e)}", operation="get", table="workflows")

    def list_workflows(self, limit: int = 100, offset: int = 0) -> List[WorkflowSummary]:
        """List stored workflows, newest first."""
        try:
            with self._session_factory() as db:
                models = (
                    db.query(WorkflowModel)
                    .order_by(WorkflowModel.created_at.desc())
                    .offset(offset)
                    .limit(limit)
                    .all()
                )
                return [
                    WorkflowSummary(
                        id=model.id,
                        name=model.name,
                        description=model.description or "",
                        version=model.version,
                        node_count=len(model.definition.get("nodes", [])),
                        connection_count=len(model.definition.get("connections", [])),
                        created_at=model.created_at,
                        updated_at=model.updated_at
                    )
                    for model in models
                ]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing workflows: {str(e)}")
            raise StorageError(f"Failed to list workflows: {str(e)}", operation="list", table="workflows")

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow and its execution records. Returns False if absent."""
        try:
            with self._session_factory() as db:
                model = db.get(WorkflowModel, workflow_id)
                if model is None:
                    return False
                db.delete(model)
                db.commit()
                logger.info(f"Deleted workflow {workflow_id}")
                return True
        except SQLAlchemyError as e:
            logger.error(f"Database error while deleting workflow: {str(e)}")
            raise StorageError(f"Failed to delete workflow: {str(e)}", operation="delete", table="workflows")

    def validate_workflow(self, workflow: Workflow) -> ValidationResult:
        """
        Check a workflow for structural problems.

        Missing nodes are errors. Dangling connections, self-loops, cycles
        and node types without an executor are warnings, since the engine
        tolerates all of them.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not workflow.nodes:
            errors.append("Workflow must contain at least one node")

        node_ids = {node.id for node in workflow.nodes}
        for conn in workflow.connections:
            if conn.source not in node_ids or conn.target not in node_ids:
                warnings.append(
                    f"Connection '{conn.id}' references unknown node and will be ignored: "
                    f"{conn.source} -> {conn.target}"
                )
            elif conn.source == conn.target:
                warnings.append(f"Connection '{conn.id}' connects node '{conn.source}' to itself")

        cycle_nodes = find_cycle_nodes(workflow.nodes, workflow.connections)
        if cycle_nodes:
            warnings.append(
                f"Workflow contains a cycle through nodes: {', '.join(sorted(cycle_nodes))}; "
                "execution order may not respect dependencies"
            )

        if self._known_node_types is not None:
            for node in workflow.nodes:
                if node.type not in self._known_node_types:
                    warnings.append(f"Node '{node.id}' has unknown type '{node.type}'")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
