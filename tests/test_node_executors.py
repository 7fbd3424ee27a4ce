"""Tests for the built-in node executors."""

import asyncio
import json

import pytest

from flowforge.core.templates import get_path
from flowforge.nodes import (
    ConditionExecutor, DelayExecutor, HttpRequestExecutor, LoggerExecutor,
    RedisGetExecutor, RedisSetExecutor, TransformExecutor, UnknownNodeExecutor
)
from flowforge.nodes.condition import loose_equals, strict_equals
from flowforge.nodes.transform import format_date

from conftest import RecordingContext


class TestHttpRequestExecutor:
    """Test cases for the httpRequest node."""

    @pytest.mark.asyncio
    async def test_get_returns_json_body(self, http_client, node_context):
        """A successful GET returns status and decoded body."""
        executor = HttpRequestExecutor(http_client)
        result = await executor.execute({"url": "http://api.test/users/{{id}}"}, {"id": 1}, node_context)

        assert result["status"] == 200
        assert result["statusText"] == "OK"
        assert result["success"] is True
        assert result["data"] == {"id": 1, "name": "Ada"}
        assert "Making GET request to: http://api.test/users/1" in node_context.messages()

    @pytest.mark.asyncio
    async def test_post_sends_json_body_and_headers(self, http_client, node_context):
        """Bodies are sent only for POST/PUT/PATCH, headers are templated."""
        executor = HttpRequestExecutor(http_client)
        result = await executor.execute({
            "url": "http://api.test/echo",
            "method": "post",
            "headers": {"X-Token": "{{token}}"},
            "body": '{"name": "Ada"}',
        }, {"token": "secret"}, node_context)

        assert result["data"]["method"] == "POST"
        assert result["data"]["body"] == {"name": "Ada"}
        assert result["data"]["headers"]["x-token"] == "secret"

    @pytest.mark.asyncio
    async def test_get_ignores_body(self, http_client, node_context):
        executor = HttpRequestExecutor(http_client)
        result = await executor.execute({
            "url": "http://api.test/echo", "body": '{"ignored": true}'
        }, {}, node_context)
        assert result["data"]["body"] is None

    @pytest.mark.asyncio
    async def test_text_response(self, http_client, node_context):
        """Non-JSON bodies are returned as text."""
        executor = HttpRequestExecutor(http_client)
        result = await executor.execute({"url": "http://api.test/text"}, {}, node_context)
        assert result["data"] == "plain body"

    @pytest.mark.asyncio
    async def test_error_status_returns_error_payload(self, http_client, node_context):
        """HTTP error statuses are reported, not raised."""
        executor = HttpRequestExecutor(http_client)
        result = await executor.execute({"url": "http://api.test/missing"}, {}, node_context)

        assert result["error"] is True
        assert result["status"] == 404
        assert result["statusText"] == "Not Found"
        assert result["message"] == "Request failed with status code 404"
        assert result["data"] == {"detail": "not here"}

    @pytest.mark.asyncio
    async def test_no_response(self, http_client, node_context):
        """Transport failures become a 'no response' payload."""
        executor = HttpRequestExecutor(http_client)
        result = await executor.execute({"url": "http://api.test/unreachable"}, {}, node_context)
        assert result["error"] is True
        assert result["message"] == "No response received from server"

    @pytest.mark.asyncio
    async def test_invalid_body_is_a_setup_failure(self, http_client, node_context):
        executor = HttpRequestExecutor(http_client)
        result = await executor.execute({
            "url": "http://api.test/echo", "method": "POST", "body": "{not json"
        }, {}, node_context)
        assert result == {"error": True, "message": "Request setup failed", "details": result["details"]}


class TestTransformExecutor:
    """Test cases for the transform node."""

    @pytest.mark.asyncio
    async def test_returns_script_result(self, sandbox, node_context):
        executor = TransformExecutor(sandbox)
        result = await executor.execute(
            {"code": "return {'doubled': inputs['value'] * 2}"}, {"value": 21}, node_context
        )
        assert result == {"doubled": 42}

    @pytest.mark.asyncio
    async def test_none_result_passes_inputs_through(self, sandbox, node_context):
        executor = TransformExecutor(sandbox)
        result = await executor.execute({"code": "x = 1"}, {"keep": True}, node_context)
        assert result == {"keep": True}

    @pytest.mark.asyncio
    async def test_helpers_and_console(self, sandbox, node_context):
        """Scripts can use helpers and console output is flushed as node logs."""
        executor = TransformExecutor(sandbox)
        code = "console.log('user is', helpers.get(inputs, 'user.name'))\nreturn helpers.set({}, 'a.b', 1)"
        result = await executor.execute({"code": code}, {"user": {"name": "Ada"}}, node_context)

        assert result == {"a": {"b": 1}}
        assert "[Transform] user is Ada" in node_context.messages()

    @pytest.mark.asyncio
    async def test_script_error_returns_error_payload(self, sandbox, node_context):
        """Script failures are returned as output, not raised."""
        executor = TransformExecutor(sandbox)
        result = await executor.execute({"code": "return inputs['missing']"}, {}, node_context)

        assert result["error"] is True
        assert result["message"] == "Transform execution failed"
        assert result["code"] == "return inputs['missing']"

    def test_format_date(self):
        assert format_date(0) == "1970-01-01T00:00:00+00:00"
        assert format_date("2024-01-02T03:04:05Z").startswith("2024-01-02T03:04:05")


class TestConditionExecutor:
    """Test cases for the condition node."""

    @pytest.mark.asyncio
    async def test_operator_comparison(self, sandbox, node_context):
        executor = ConditionExecutor(sandbox)
        result = await executor.execute({
            "operator": "greaterThan", "leftValue": "{{age}}", "rightValue": 18
        }, {"age": 21}, node_context)

        assert result["success"] is True
        assert result["passed"] is True
        assert "message" not in result

    @pytest.mark.asyncio
    async def test_false_condition(self, sandbox, node_context):
        """A false result is marked with success and passed both False."""
        executor = ConditionExecutor(sandbox)
        result = await executor.execute({
            "operator": "equals", "left_value": "{{status}}", "right_value": "active"
        }, {"status": "inactive"}, node_context)

        assert result["success"] is False
        assert result["passed"] is False
        assert result["message"] == "Condition evaluated to false"

    @pytest.mark.asyncio
    async def test_custom_expression(self, sandbox, node_context):
        """Custom expressions see the keys of ``inputs['data']`` directly."""
        executor = ConditionExecutor(sandbox)
        result = await executor.execute(
            {"condition": "score > 5 and len(data) == 1"}, {"data": {"score": 9}}, node_context
        )
        assert result["passed"] is True
        assert result["data"] == {"score": 9}

    @pytest.mark.asyncio
    async def test_unknown_operator_is_an_error_payload(self, sandbox, node_context):
        executor = ConditionExecutor(sandbox)
        result = await executor.execute({"operator": "between", "leftValue": 1}, {}, node_context)
        assert result["error"] is True
        assert result["message"] == "Condition evaluation failed"
        assert "passed" not in result

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operator,left,right,expected", [
        ("contains", "hello world", "world", True),
        ("notContains", ["a", "b"], "c", True),
        ("startsWith", "flowforge", "flow", True),
        ("matches", "abc123", r"\d+$", True),
        ("in", "b", ["a", "b"], True),
        ("exists", None, None, False),
        ("empty", "   ", None, True),
        ("<=", 3, "3", True),
    ])
    async def test_operators(self, sandbox, node_context, operator, left, right, expected):
        executor = ConditionExecutor(sandbox)
        result = await executor.execute(
            {"operator": operator, "leftValue": left, "rightValue": right}, {}, node_context
        )
        assert result["passed"] is expected

    def test_loose_and_strict_equality(self):
        assert loose_equals("5", 5)
        assert not strict_equals("5", 5)
        assert strict_equals(5, 5.0)


class TestRedisExecutors:
    """Test cases for the redisGet and redisSet nodes."""

    @pytest.mark.asyncio
    async def test_set_then_get_string(self, redis, node_context):
        """Objects stored as strings are JSON-decoded on read."""
        setter = RedisSetExecutor(redis)
        getter = RedisGetExecutor(redis)

        stored = await setter.execute({"key": "user:{{id}}", "value": '{"name": "Ada"}'}, {"id": 1}, node_context)
        assert stored["success"] is True
        assert stored["key"] == "user:1"
        assert stored["id"] == 1

        result = await getter.execute({"key": "user:1"}, {}, node_context)
        assert result["found"] is True
        assert result["value"] == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_set_without_value_stores_inputs(self, redis, node_context):
        setter = RedisSetExecutor(redis)
        await setter.execute({"key": "payload", "value": "${JSON.stringify(data)}"}, {"a": 1}, node_context)
        assert json.loads(await redis.get("payload")) == {"a": 1}

    @pytest.mark.asyncio
    async def test_ttl_sets_expiry(self, redis, node_context):
        setter = RedisSetExecutor(redis)
        result = await setter.execute({"key": "temp", "value": "v", "ttl": 60}, {}, node_context)
        assert result["ttl"] == 60
        assert 0 < await redis.ttl("temp") <= 60

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data_type,value,expected", [
        ("hash", {"a": 1, "b": {"c": 2}}, {"a": "1", "b": {"c": 2}}),
        ("list", ["x", {"y": 1}], ["x", {"y": 1}]),
        ("set", ["b", "a"], ["a", "b"]),
        ("json", {"deep": [1, 2]}, {"deep": [1, 2]}),
    ])
    async def test_structured_types(self, redis, node_context, data_type, value, expected):
        setter = RedisSetExecutor(redis)
        getter = RedisGetExecutor(redis)

        stored = await setter.execute({"key": "k", "value": value, "dataType": data_type}, {}, node_context)
        result = await getter.execute({"key": "k", "data_type": data_type}, {}, node_context)

        assert stored["dataType"] == data_type
        assert result["success"] is True
        assert result["dataType"] == data_type
        assert result["value"] == expected

    @pytest.mark.asyncio
    async def test_missing_key(self, redis, node_context):
        getter = RedisGetExecutor(redis)
        result = await getter.execute({"key": "nope", "dataType": "hash"}, {}, node_context)
        assert result == {
            "success": False, "found": False, "key": "nope", "value": None, "message": "Key not found"
        }

    @pytest.mark.asyncio
    async def test_hash_requires_object(self, redis, node_context):
        setter = RedisSetExecutor(redis)
        result = await setter.execute({"key": "h", "value": 5, "dataType": "hash"}, {}, node_context)
        assert result["error"] is True
        assert result["message"] == "Redis SET operation failed"

    @pytest.mark.asyncio
    async def test_invalid_json_read_fails(self, redis, node_context):
        await redis.set("broken", "{oops")
        getter = RedisGetExecutor(redis)
        result = await getter.execute({"key": "broken", "dataType": "json"}, {}, node_context)
        assert result["message"] == "Redis GET operation failed"


class TestDelayExecutor:
    """Test cases for the delay node."""

    @pytest.mark.asyncio
    async def test_delay_passes_inputs_through(self, node_context, monkeypatch):
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        executor = DelayExecutor()
        result = await executor.execute({"delay": 2, "unit": "seconds"}, {"a": 1}, node_context)

        assert slept == [2.0]
        assert result["a"] == 1
        assert result["delay"]["requested"] == 2000

    @pytest.mark.asyncio
    async def test_delay_is_capped(self, node_context):
        """Requests above the cap are shortened and a warning is logged."""
        executor = DelayExecutor(max_delay_seconds=0.01)
        result = await executor.execute({"delay": 5, "unit": "minutes"}, {}, node_context)

        assert result["delay"]["requested"] == 10
        assert any(event.level == "warn" for event in node_context.events)

    @pytest.mark.asyncio
    async def test_zero_delay(self, node_context):
        executor = DelayExecutor()
        result = await executor.execute({"delay": 0}, {}, node_context)
        assert result["delay"]["requested"] == 0


class TestLoggerExecutor:
    """Test cases for the logger node."""

    @pytest.mark.asyncio
    async def test_message_is_rendered_and_persisted(self, event_stream):
        context = RecordingContext(node_type="logger", workflow_id="wf-1")
        executor = LoggerExecutor(event_stream)
        result = await executor.execute(
            {"message": "Fetched {{name}}", "level": "warn", "includeInputs": True},
            {"data": {"name": "Ada"}},
            context
        )

        assert result["logged"] is True
        assert result["message"] == "Fetched Ada"
        assert context.events[0].level == "warn"
        assert "[WARN] [Test Node] Fetched Ada | Data:" in context.events[0].message

        entries = await event_stream.read_workflow_log("wf-1")
        assert len(entries) == 1
        assert entries[0]["message"] == "Fetched Ada"
        assert entries[0]["execution_id"] == "exec-test"

    @pytest.mark.asyncio
    async def test_default_message(self, node_context):
        executor = LoggerExecutor()
        result = await executor.execute({}, {}, node_context)
        assert result["message"] == "Workflow execution log"


class TestUnknownNodeExecutor:

    @pytest.mark.asyncio
    async def test_returns_warning_payload(self):
        context = RecordingContext(node_type="mystery")
        result = await UnknownNodeExecutor().execute({}, {"a": 1}, context)
        assert result == {"warning": "No executor implemented", "nodeType": "mystery", "inputs": {"a": 1}}
        assert get_path(result, "inputs.a") == 1

