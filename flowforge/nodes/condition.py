"""Condition node: evaluates a boolean that gates downstream execution."""

import re
from typing import Any, Callable, Dict

from ..core.logging import get_logger
from ..core.sandbox import ScriptSandbox
from ..core.templates import (
    WHOLE_TEMPLATE_PATTERN, build_scope, get_path, render, stringify
)
from .base import NodeExecutor, option, utc_timestamp

logger = get_logger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any):
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that treats numeric strings and numbers as comparable."""
    if left == right:
        return True
    if _is_number(left) != _is_number(right):
        a, b = _as_number(left), _as_number(right)
        return a is not None and b is not None and a == b
    return False


def strict_equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def op(left, right):
        if _is_number(left) != _is_number(right):
            left, right = _as_number(left), _as_number(right)
            if left is None or right is None:
                return False
        try:
            return bool(compare(left, right))
        except TypeError:
            return False
    return op


def _text(value: Any) -> str:
    return value if isinstance(value, str) else stringify(value)


def _contains(left: Any, right: Any) -> bool:
    if isinstance(left, (list, dict)):
        return right in left
    return _text(right) in _text(left)


def _matches(left: Any, right: Any) -> bool:
    try:
        return re.search(_text(right), _text(left)) is not None
    except re.error:
        return False


def is_empty(value: Any) -> bool:
    if not value:
        return True
    return isinstance(value, str) and value.strip() == ''


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    'equals': loose_equals,
    'notEquals': lambda l, r: not loose_equals(l, r),
    'strictEquals': strict_equals,
    'strictNotEquals': lambda l, r: not strict_equals(l, r),
    'greaterThan': _ordered(lambda l, r: l > r),
    'greaterThanOrEqual': _ordered(lambda l, r: l >= r),
    'lessThan': _ordered(lambda l, r: l < r),
    'lessThanOrEqual': _ordered(lambda l, r: l <= r),
    'contains': _contains,
    'notContains': lambda l, r: not _contains(l, r),
    'startsWith': lambda l, r: _text(l).startswith(_text(r)),
    'endsWith': lambda l, r: _text(l).endswith(_text(r)),
    'matches': _matches,
    'in': lambda l, r: isinstance(r, list) and l in r,
    'notIn': lambda l, r: not isinstance(r, list) or l not in r,
    'exists': lambda l, r: l is not None,
    'notExists': lambda l, r: l is None,
    'empty': lambda l, r: is_empty(l),
    'notEmpty': lambda l, r: not is_empty(l),
}

OPERATOR_ALIASES = {
    '==': 'equals',
    '!=': 'notEquals',
    '===': 'strictEquals',
    '!==': 'strictNotEquals',
    '>': 'greaterThan',
    '>=': 'greaterThanOrEqual',
    '<': 'lessThan',
    '<=': 'lessThanOrEqual',
}


def process_value(value: Any, scope: Dict[str, Any]) -> Any:
    """Resolve an operand; a whole ``{{path}}`` keeps the referenced type."""
    if not isinstance(value, str):
        return value
    whole = WHOLE_TEMPLATE_PATTERN.match(value)
    if whole and value.strip().startswith('{{'):
        return get_path(scope, whole.group(1).strip())
    return render(value, scope)


def _passthrough(inputs: Any) -> Any:
    if isinstance(inputs, dict) and inputs.get('data'):
        return inputs['data']
    return inputs


class ConditionExecutor(NodeExecutor):
    """Evaluates a comparison or a custom expression."""

    node_type = "condition"
    description = "Evaluate a condition and stop downstream nodes when false"

    def __init__(self, sandbox: ScriptSandbox):
        self.sandbox = sandbox

    async def execute(self, config, inputs, context):
        expression = config.get('condition') or config.get('expression')
        operator = config.get('operator') or 'custom'
        left_value = option(config, 'left_value', 'leftValue')
        right_value = option(config, 'right_value', 'rightValue')
        timeout_ms = config.get('timeout')
        description = expression or f"{left_value} {operator} {right_value}"

        try:
            await context.log('info', 'Evaluating condition')
            if operator == 'custom' and expression:
                result = await self.sandbox.evaluate(
                    expression,
                    self._bindings(inputs),
                    timeout=float(timeout_ms) / 1000 if timeout_ms else None
                )
            else:
                name = OPERATOR_ALIASES.get(operator, operator)
                if name not in OPERATORS:
                    raise ValueError(f"Unknown operator: {operator}")
                scope = build_scope(inputs, context.variables)
                result = OPERATORS[name](
                    process_value(left_value, scope),
                    process_value(right_value, scope)
                )
        except Exception as e:
            logger.warning(f"Condition failed in node {context.node_id}: {e}")
            await context.log('error', f"Condition evaluation failed: {e}")
            return {
                "error": True,
                "message": "Condition evaluation failed",
                "details": str(e),
                "condition": description,
                "operator": operator,
            }

        passed = bool(result)
        await context.log('info', f"Condition evaluated to: {str(passed).lower()}")

        output = {
            "success": passed,
            "result": passed,
            "passed": passed,
            "operator": operator,
            "condition": description,
            "timestamp": utc_timestamp(),
            "data": _passthrough(inputs),
        }
        if not passed:
            output["message"] = "Condition evaluated to false"
        return output

    @staticmethod
    def _bindings(inputs: Any) -> Dict[str, Any]:
        bindings: Dict[str, Any] = {}
        if isinstance(inputs, dict) and isinstance(inputs.get('data'), dict):
            bindings.update(inputs['data'])
        bindings.update({
            'data': _passthrough(inputs),
            'inputs': inputs,
            'input': inputs,
            'get': get_path,
        })
        return bindings
