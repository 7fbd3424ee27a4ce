"""Tests for the execution coordinator."""

import pytest

from flowforge.core.coordinator import Coordinator, SKIP_REASON
from flowforge.core.exceptions import NodeExecutionError
from flowforge.core.executor_registry import ExecutorRegistry
from flowforge.models.core import ExecutionStatusEnum, LogEventType, Node
from flowforge.nodes import ConditionExecutor, NodeExecutor

from conftest import make_workflow


class EchoExecutor(NodeExecutor):
    """Returns its node id and the inputs it received."""

    node_type = "echo"
    description = "Echo inputs"

    def __init__(self):
        self.calls = []

    async def execute(self, config, inputs, context):
        self.calls.append(context.node_id)
        return {"node": context.node_id, "inputs": inputs, **config}


class FailingExecutor(NodeExecutor):
    node_type = "fail"
    description = "Always raises"

    async def execute(self, config, inputs, context):
        raise RuntimeError("boom")


class CancellingExecutor(NodeExecutor):
    """Cancels the running execution from inside a node."""

    node_type = "cancel"
    description = "Cancels its own execution"

    def __init__(self, execution_store):
        self.execution_store = execution_store

    async def execute(self, config, inputs, context):
        self.execution_store.mark_cancelled(context.execution_id)
        return {"cancelled": True}


FALSE_CONDITION = {"operator": "equals", "leftValue": 1, "rightValue": 2}
TRUE_CONDITION = {"operator": "equals", "leftValue": 1, "rightValue": 1}


@pytest.fixture
def echo():
    return EchoExecutor()


@pytest.fixture
def test_registry(echo, sandbox, execution_store):
    return ExecutorRegistry({
        "echo": echo,
        "fail": FailingExecutor(),
        "condition": ConditionExecutor(sandbox),
        "cancel": CancellingExecutor(execution_store),
    })


@pytest.fixture
def coordinator(test_registry, event_stream, execution_store):
    return Coordinator(test_registry, event_stream, execution_store)


async def run(coordinator, workflow_store, execution_store, workflow, inputs=None, **kwargs):
    """Store ``workflow``, create an execution and run it."""
    workflow_id = workflow_store.create_workflow(workflow)
    workflow = workflow_store.get_workflow(workflow_id)
    record = execution_store.create_execution(workflow_id, inputs or {})
    outputs = await coordinator.run(record.id, workflow, inputs or {}, **kwargs)
    return record.id, outputs


async def event_trail(event_stream, execution_id):
    """``(type, node_id)`` of every non-log event, in order."""
    events = await event_stream.read(execution_id)
    return [(e.type, e.node_id) for e in events if e.type != LogEventType.NODE_LOG]


class TestCoordinator:
    """Test cases for sequential workflow execution."""

    @pytest.mark.asyncio
    async def test_false_condition_skips_downstream(self, coordinator, workflow_store,
                                                    execution_store, event_stream, echo):
        """A -> B -> C with B false: C is skipped and never started."""
        workflow = make_workflow(
            [("A", "echo"), ("B", "condition", FALSE_CONDITION), ("C", "echo")],
            [("A", "B"), ("B", "C")]
        )
        execution_id, outputs = await run(coordinator, workflow_store, execution_store, workflow, {"x": 1})

        assert outputs["A"] == {"node": "A", "inputs": {"x": 1}}
        assert outputs["B"]["success"] is False
        assert outputs["B"]["passed"] is False
        assert outputs["C"] == {"skipped": True, "reason": SKIP_REASON, "skippedBy": "B"}
        assert echo.calls == ["A"]

        assert await event_trail(event_stream, execution_id) == [
            (LogEventType.NODE_START, "A"),
            (LogEventType.NODE_COMPLETE, "A"),
            (LogEventType.NODE_START, "B"),
            (LogEventType.NODE_COMPLETE, "B"),
            (LogEventType.NODE_SKIPPED, "C"),
            (LogEventType.EXECUTION_COMPLETE, None),
        ]
        assert execution_store.get_status(execution_id) == ExecutionStatusEnum.COMPLETED

    @pytest.mark.asyncio
    async def test_true_condition_continues(self, coordinator, workflow_store, execution_store, echo):
        workflow = make_workflow(
            [("A", "condition", TRUE_CONDITION), ("B", "echo")],
            [("A", "B")]
        )
        _, outputs = await run(coordinator, workflow_store, execution_store, workflow)

        assert echo.calls == ["B"]
        assert outputs["B"]["inputs"]["passed"] is True

    @pytest.mark.asyncio
    async def test_skip_reaches_whole_subtree(self, coordinator, workflow_store, execution_store, echo):
        """Every node reachable from a false condition is skipped."""
        workflow = make_workflow(
            [("K", "condition", FALSE_CONDITION), ("L", "echo"), ("M", "echo"), ("N", "echo")],
            [("K", "L"), ("L", "M"), ("K", "N")]
        )
        _, outputs = await run(coordinator, workflow_store, execution_store, workflow)

        assert echo.calls == []
        assert all(outputs[node]["skipped"] for node in ("L", "M", "N"))

    @pytest.mark.asyncio
    async def test_visited_nodes_keep_their_output(self, coordinator, workflow_store, execution_store, echo):
        """A node visited before the condition keeps its result instead of a skip marker."""
        workflow = make_workflow(
            [("S", "echo"), ("K", "condition", FALSE_CONDITION), ("T", "echo")],
            [("S", "T"), ("K", "T")]
        )
        _, outputs = await run(coordinator, workflow_store, execution_store, workflow)

        assert echo.calls == ["S", "T"]
        assert outputs["T"]["node"] == "T"

    @pytest.mark.asyncio
    async def test_edgeless_nodes_run_in_input_order(self, coordinator, workflow_store, execution_store, echo):
        """Without connections every node runs in input order on the run inputs."""
        workflow = make_workflow([("X", "echo"), ("Y", "echo"), ("Z", "echo")])
        _, outputs = await run(coordinator, workflow_store, execution_store, workflow, {"seed": 7})

        assert echo.calls == ["X", "Y", "Z"]
        assert all(outputs[node]["inputs"] == {"seed": 7} for node in ("X", "Y", "Z"))

    @pytest.mark.asyncio
    async def test_multiple_predecessors_are_keyed_by_id(self, coordinator, workflow_store,
                                                         execution_store):
        workflow = make_workflow(
            [("A", "echo"), ("B", "echo"), ("C", "echo")],
            [("A", "B"), ("A", "C"), ("B", "C")]
        )
        _, outputs = await run(coordinator, workflow_store, execution_store, workflow)

        assert outputs["B"]["inputs"] == outputs["A"]
        assert outputs["C"]["inputs"] == {"A": outputs["A"], "B": outputs["B"]}

    @pytest.mark.asyncio
    async def test_unvisited_predecessors_are_left_out(self, coordinator, workflow_store, execution_store):
        """A join reached before one of its predecessors only sees the outputs recorded so far."""
        workflow = make_workflow(
            [("A", "echo"), ("B", "echo"), ("C", "echo")],
            [("A", "C"), ("B", "C")]
        )
        _, outputs = await run(coordinator, workflow_store, execution_store, workflow)

        assert outputs["C"]["inputs"] == {"A": outputs["A"]}

    @pytest.mark.asyncio
    async def test_continue_on_error_records_error(self, coordinator, workflow_store,
                                                   execution_store, event_stream, echo):
        """A failing node with continueOnError yields ``{error}`` and the run proceeds."""
        workflow = make_workflow(
            [Node(id="F", type="fail", continueOnError=True), ("N", "echo")],
            [("F", "N")]
        )
        execution_id, outputs = await run(coordinator, workflow_store, execution_store, workflow)

        assert outputs["F"] == {"error": "boom"}
        assert outputs["N"]["inputs"] == {"error": "boom"}
        trail = await event_trail(event_stream, execution_id)
        assert (LogEventType.NODE_ERROR, "F") in trail
        assert trail[-1] == (LogEventType.EXECUTION_COMPLETE, None)

    @pytest.mark.asyncio
    async def test_node_failure_fails_the_run(self, coordinator, workflow_store,
                                              execution_store, event_stream, echo):
        """Without continueOnError the run stops at the failing node."""
        workflow = make_workflow([("A", "echo"), ("F", "fail"), ("N", "echo")], [("A", "F"), ("F", "N")])
        workflow_id = workflow_store.create_workflow(workflow)
        record = execution_store.create_execution(workflow_id, {})

        with pytest.raises(NodeExecutionError) as exc_info:
            await coordinator.run(record.id, workflow_store.get_workflow(workflow_id), {})

        assert exc_info.value.message == "boom"
        assert exc_info.value.node_id == "F"
        assert echo.calls == ["A"]

        stored = execution_store.get_execution(record.id)
        assert stored.status == ExecutionStatusEnum.FAILED
        assert stored.error == "boom"
        assert "A" in stored.outputs

        events = await event_stream.read(record.id)
        assert events[-1].type == LogEventType.EXECUTION_FAILED
        assert events[-1].message == "Workflow execution failed: boom"
        assert events[-1].data == {"will_retry": False}
        assert not any(e.node_id == "N" for e in events)

    @pytest.mark.asyncio
    async def test_unknown_type_uses_fallback(self, coordinator, workflow_store, execution_store):
        workflow = make_workflow([("Q", "mystery")])
        _, outputs = await run(coordinator, workflow_store, execution_store, workflow, {"a": 1})

        assert outputs["Q"] == {"warning": "No executor implemented", "nodeType": "mystery", "inputs": {"a": 1}}

    @pytest.mark.asyncio
    async def test_reruns_are_deterministic(self, coordinator, workflow_store, execution_store):
        workflow = make_workflow(
            [("A", "echo", {"tag": "a"}), ("B", "condition", TRUE_CONDITION), ("C", "echo")],
            [("A", "B"), ("B", "C")]
        )
        _, first = await run(coordinator, workflow_store, execution_store, workflow, {"n": 1})
        _, second = await run(coordinator, workflow_store, execution_store, workflow, {"n": 1})

        for outputs in (first, second):
            outputs["B"].pop("timestamp", None)
            outputs["C"]["inputs"].pop("timestamp", None)
        assert first == second

    @pytest.mark.asyncio
    async def test_progress_is_reported_per_node(self, coordinator, workflow_store, execution_store):
        reports = []
        workflow = make_workflow([("A", "echo"), ("B", "echo")], [("A", "B")])
        await run(coordinator, workflow_store, execution_store, workflow, on_progress=reports.append)

        assert reports == [
            {"current_node": "A", "completed_nodes": 1, "total_nodes": 2},
            {"current_node": "B", "completed_nodes": 2, "total_nodes": 2},
        ]

    @pytest.mark.asyncio
    async def test_progress_counts_skipped_visits(self, coordinator, workflow_store, execution_store):
        """Skipped nodes are not reported but still count toward completed_nodes."""
        reports = []
        workflow = make_workflow(
            [("A", "echo"), ("B", "condition", FALSE_CONDITION), ("C", "echo"), ("D", "echo")],
            [("A", "B"), ("B", "C")]
        )
        await run(coordinator, workflow_store, execution_store, workflow, on_progress=reports.append)

        assert [(r["current_node"], r["completed_nodes"]) for r in reports] == [("A", 1), ("B", 2), ("D", 4)]

    @pytest.mark.asyncio
    async def test_failure_event_records_retry_decision(self, coordinator, workflow_store,
                                                        execution_store, event_stream):
        seen = []

        def will_retry(error):
            seen.append(error)
            return True

        workflow = make_workflow([("F", "fail")])
        workflow_id = workflow_store.create_workflow(workflow)
        record = execution_store.create_execution(workflow_id, {})

        with pytest.raises(NodeExecutionError):
            await coordinator.run(record.id, workflow_store.get_workflow(workflow_id), {},
                                  will_retry=will_retry)

        assert isinstance(seen[0], NodeExecutionError)
        events = await event_stream.read(record.id)
        assert events[-1].type == LogEventType.EXECUTION_FAILED
        assert events[-1].data == {"will_retry": True}

    @pytest.mark.asyncio
    async def test_cooperative_cancellation_stops_before_next_node(self, test_registry, event_stream,
                                                                   workflow_store, execution_store, echo):
        coordinator = Coordinator(test_registry, event_stream, execution_store, cooperative_cancellation=True)
        workflow = make_workflow([("K", "cancel"), ("A", "echo")], [("K", "A")])
        execution_id, outputs = await run(coordinator, workflow_store, execution_store, workflow)

        assert outputs == {"K": {"cancelled": True}}
        assert echo.calls == []
        assert execution_store.get_status(execution_id) == ExecutionStatusEnum.CANCELLED

    @pytest.mark.asyncio
    async def test_cancellation_is_ignored_by_default(self, coordinator, workflow_store, execution_store, echo):
        """Without cooperative cancellation the run finishes but the status stays cancelled."""
        workflow = make_workflow([("K", "cancel"), ("A", "echo")], [("K", "A")])
        execution_id, outputs = await run(coordinator, workflow_store, execution_store, workflow)

        assert echo.calls == ["A"]
        stored = execution_store.get_execution(execution_id)
        assert stored.status == ExecutionStatusEnum.CANCELLED
        assert stored.outputs["A"]["node"] == "A"
