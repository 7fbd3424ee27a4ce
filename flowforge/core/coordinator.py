"""Execution coordinator: walks one workflow run node by node."""

import asyncio
import json
import logging
import traceback
from typing import Any, Callable, Dict, List, Optional

from ..models.core import (
    ExecutionContext, ExecutionStatusEnum, LogEvent, LogEventType, Node, Workflow
)
from ..nodes.base import NodeContext
from .event_stream import EventStream
from .exceptions import NodeExecutionError, WorkflowEngineError
from .execution_store import ExecutionStore, json_safe
from .executor_registry import ExecutorRegistry
from .graph_order import downstream, order, predecessors
from .logging import get_logger, log_with_context

logger = get_logger(__name__)

SKIP_REASON = "Upstream condition evaluated to false"

ProgressCallback = Callable[[Dict[str, Any]], Any]
RetryPolicy = Callable[[Exception], bool]


def skip_marker(skipped_by: str) -> Dict[str, Any]:
    return {"skipped": True, "reason": SKIP_REASON, "skippedBy": skipped_by}


def is_skip_marker(output: Any) -> bool:
    return isinstance(output, dict) and output.get("skipped") is True


def is_failed_condition(node: Optional[Node], output: Any) -> bool:
    """A condition node whose result stops its downstream branch."""
    return (
        node is not None
        and node.type == "condition"
        and isinstance(output, dict)
        and output.get("success") is False
        and output.get("passed") is False
    )


class Coordinator:
    """
    Runs a workflow's nodes strictly one after another.

    Each node receives the run inputs (no predecessors), its single
    predecessor's output, or a dict keyed by predecessor id. A condition
    node that evaluates to false marks everything downstream of it as
    skipped; executor failures abort the run unless the node sets
    ``continue_on_error``.
    """

    def __init__(self, registry: ExecutorRegistry, event_stream: EventStream,
                 execution_store: ExecutionStore, cooperative_cancellation: bool = False):
        self.registry = registry
        self.event_stream = event_stream
        self.execution_store = execution_store
        self.cooperative_cancellation = cooperative_cancellation

    async def run(self, execution_id: str, workflow: Workflow, inputs: Dict[str, Any],
                  on_progress: Optional[ProgressCallback] = None,
                  will_retry: Optional[RetryPolicy] = None) -> Dict[str, Any]:
        """
        Execute ``workflow`` for an existing execution record.

        Args:
            execution_id: Record to update
            workflow: Workflow snapshot to run
            inputs: Run inputs
            on_progress: Called after each executed node with
                ``{current_node, completed_nodes, total_nodes}``;
                ``completed_nodes`` counts every node visited so far in
                execution order, skipped ones included
            will_retry: Tells whether a failure will be retried by the
                caller; recorded on the execution_failed event

        Returns:
            Mapping of node id to that node's output

        Raises:
            NodeExecutionError: If a node fails without ``continue_on_error``
        """
        self.execution_store.mark_running(execution_id)
        context = ExecutionContext(
            execution_id=execution_id,
            workflow_id=workflow.id or "",
            inputs=inputs or {},
        )
        connections = workflow.valid_connections()
        nodes = {node.id: node for node in workflow.nodes}
        execution_order = order(workflow.nodes, connections)
        node_predecessors = {node.id: predecessors(node.id, connections) for node in workflow.nodes}

        log_with_context(
            logger, logging.INFO,
            f"Starting execution of workflow '{workflow.name}'",
            execution_id=execution_id,
            workflow_id=context.workflow_id,
            execution_order=execution_order
        )

        visited = 0
        try:
            for node_id in execution_order:
                node = nodes[node_id]
                visited += 1

                marker = context.outputs.get(node_id)
                if is_skip_marker(marker):
                    await self._emit(execution_id, node, LogEventType.NODE_SKIPPED,
                                     f"Skipping node: {node.name} - {marker['reason']}",
                                     data=marker)
                    continue

                preds = node_predecessors[node_id]
                node_inputs = self._resolve_inputs(preds, context)

                blocker = self._blocking_condition(preds, nodes, context.outputs)
                if blocker is not None:
                    # Eager marking normally covers this; reaching it means the marks diverged
                    logger.warning(
                        f"Node {node_id} was not pre-marked although condition {blocker} failed"
                    )
                    context.outputs[node_id] = skip_marker(blocker)
                    await self._emit(execution_id, node, LogEventType.NODE_SKIPPED,
                                     f"Skipping node: {node.name} - Upstream condition failed",
                                     data=context.outputs[node_id])
                    continue

                if self.cooperative_cancellation and self._is_cancelled(execution_id):
                    log_with_context(
                        logger, logging.INFO,
                        "Execution cancelled, stopping before next node",
                        execution_id=execution_id,
                        node_id=node_id
                    )
                    return context.outputs

                await self._run_node(context, node, node_inputs, connections)

                if on_progress is not None:
                    on_progress({
                        "current_node": node_id,
                        "completed_nodes": visited,
                        "total_nodes": len(workflow.nodes),
                    })

        except asyncio.CancelledError:
            await self._fail(execution_id, context, NodeExecutionError(
                "Execution interrupted before completion", execution_id=execution_id
            ))
            raise
        except Exception as e:
            error = e if isinstance(e, WorkflowEngineError) else NodeExecutionError(
                str(e), execution_id=execution_id
            )
            retrying = will_retry is not None and will_retry(error)
            await self._fail(execution_id, context, e, will_retry=retrying)
            if error is e:
                raise
            raise error from e

        self.execution_store.mark_completed(execution_id, context.outputs)
        await self._emit(execution_id, None, LogEventType.EXECUTION_COMPLETE,
                         "Workflow execution completed successfully",
                         data={"outputs": json_safe(context.outputs)})
        log_with_context(
            logger, logging.INFO,
            "Execution completed",
            execution_id=execution_id,
            nodes_visited=visited
        )
        return context.outputs

    async def _run_node(self, context: ExecutionContext, node: Node, node_inputs: Any,
                        connections) -> None:
        execution_id = context.execution_id
        await self._emit(execution_id, node, LogEventType.NODE_START,
                         f"Starting node: {node.name}")

        node_context = NodeContext(
            execution_id=execution_id,
            workflow_id=context.workflow_id,
            node_id=node.id,
            node_name=node.name,
            node_type=node.type,
            variables=context.variables,
            log_sink=lambda event: self.event_stream.append(execution_id, event),
        )

        try:
            executor = self.registry.get(node.type)
            result = await executor.execute(node.config, node_inputs, node_context)
        except Exception as e:
            await self._emit(execution_id, node, LogEventType.NODE_ERROR,
                             f"Error in node: {e}", level="error",
                             error=traceback.format_exc())
            if node.continue_on_error:
                log_with_context(
                    logger, logging.WARNING,
                    f"Node {node.id} failed, continuing: {e}",
                    execution_id=execution_id,
                    node_id=node.id
                )
                context.outputs[node.id] = {"error": str(e)}
                return
            raise NodeExecutionError(str(e), node_id=node.id, execution_id=execution_id) from e

        context.outputs[node.id] = result

        if is_failed_condition(node, result):
            for target in downstream(node.id, connections):
                # Outputs are append-only; nodes already visited keep their result
                if target not in context.outputs:
                    context.outputs[target] = skip_marker(node.id)
            await self._emit(execution_id, node, LogEventType.NODE_COMPLETE,
                             "Condition node evaluated to false, stopping downstream execution",
                             data={"result": _serialize(result)})
        else:
            await self._emit(execution_id, node, LogEventType.NODE_COMPLETE,
                             f"Completed node: {node.name}",
                             data={"result": _serialize(result)})

    @staticmethod
    def _resolve_inputs(preds: List[str], context: ExecutionContext) -> Any:
        if not preds:
            return context.inputs
        if len(preds) == 1:
            output = context.outputs.get(preds[0])
            return {} if output is None else output
        combined = {}
        for pred in preds:
            output = context.outputs.get(pred)
            if output not in (None, {}):
                combined[pred] = output
        return combined

    @staticmethod
    def _blocking_condition(preds: List[str], nodes: Dict[str, Node],
                            outputs: Dict[str, Any]) -> Optional[str]:
        for pred in preds:
            if is_failed_condition(nodes.get(pred), outputs.get(pred)):
                return pred
        return None

    def _is_cancelled(self, execution_id: str) -> bool:
        return self.execution_store.get_status(execution_id) == ExecutionStatusEnum.CANCELLED

    async def _fail(self, execution_id: str, context: ExecutionContext, error: Exception,
                    will_retry: bool = False) -> None:
        message = getattr(error, "message", None) or str(error)
        log_with_context(
            logger, logging.ERROR,
            f"Execution failed: {message}",
            execution_id=execution_id,
            node_id=getattr(error, "node_id", None)
        )
        self.execution_store.mark_failed(execution_id, message, context.outputs)
        await self._emit(execution_id, None, LogEventType.EXECUTION_FAILED,
                         f"Workflow execution failed: {message}", level="error",
                         data={"will_retry": will_retry},
                         error="".join(traceback.format_exception(type(error), error, error.__traceback__)))

    async def _emit(self, execution_id: str, node: Optional[Node], event_type: LogEventType,
                    message: str, level: str = "info", data: Optional[Dict[str, Any]] = None,
                    error: Optional[str] = None) -> None:
        await self.event_stream.append(execution_id, LogEvent(
            type=event_type,
            node_id=node.id if node else None,
            node_name=node.name if node else None,
            level=level,
            message=message,
            data=data,
            error=error,
        ))


def _serialize(result: Any) -> str:
    return json.dumps(result, default=str)
