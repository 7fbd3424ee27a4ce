"""Restricted execution of user scripts for transform and condition nodes.

Scripts are screened before compilation (no imports, no access to private
or introspection attributes), run against a fixed set of whitelisted
builtins and bindings, and bounded by a wall-clock timeout. A deadline
tracer stops pure-Python loops in the worker thread once the timeout has
passed; code blocked inside a C call is abandoned rather than killed.

This is a best-effort boundary for trusted operators, not a hardened
isolation layer.
"""

import ast
import asyncio
import json
import math
import re
import sys
import textwrap
import time
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, Iterable, Optional

from .exceptions import SandboxError
from .logging import get_logger


logger = get_logger(__name__)

SCRIPT_FUNCTION_NAME = "_script"

SAFE_BUILTINS: Dict[str, Any] = {
    'abs': abs,
    'all': all,
    'any': any,
    'bool': bool,
    'dict': dict,
    'divmod': divmod,
    'enumerate': enumerate,
    'filter': filter,
    'float': float,
    'int': int,
    'isinstance': isinstance,
    'len': len,
    'list': list,
    'map': map,
    'max': max,
    'min': min,
    'pow': pow,
    'range': range,
    'reversed': reversed,
    'round': round,
    'set': set,
    'sorted': sorted,
    'str': str,
    'sum': sum,
    'tuple': tuple,
    'zip': zip,
    'True': True,
    'False': False,
    'None': None,
    'Exception': Exception,
    'ValueError': ValueError,
    'KeyError': KeyError,
    'TypeError': TypeError,
}

# Modules are exposed as namespaces so their imported submodules stay out of reach
SAFE_GLOBALS: Dict[str, Any] = {
    'json': SimpleNamespace(loads=json.loads, dumps=json.dumps),
    'math': math,
    're': SimpleNamespace(
        match=re.match, search=re.search, fullmatch=re.fullmatch,
        findall=re.findall, sub=re.sub, split=re.split, escape=re.escape,
    ),
    'datetime': datetime,
    'date': date,
    'timedelta': timedelta,
    'timezone': timezone,
    'true': True,
    'false': False,
    'null': None,
}

FORBIDDEN_ATTRIBUTES = frozenset({
    'format', 'format_map', 'mro',
    'gi_frame', 'gi_code', 'cr_frame', 'cr_code', 'ag_frame', 'ag_code',
    'f_back', 'f_globals', 'f_locals', 'f_builtins', 'f_code',
    'tb_frame', 'tb_next', 'co_code', 'func_globals',
})

FORBIDDEN_NODES = (ast.Import, ast.ImportFrom, ast.Global, ast.Nonlocal)


def screen(tree: Iterable[ast.AST]) -> None:
    """
    Reject syntax that could escape the sandbox.

    Raises:
        SandboxError: If a forbidden construct is found
    """
    for root in tree:
        for node in ast.walk(root):
            if isinstance(node, FORBIDDEN_NODES):
                raise SandboxError("Import and scope statements are not allowed in scripts")
            if isinstance(node, ast.Attribute):
                if node.attr.startswith('_') or node.attr in FORBIDDEN_ATTRIBUTES:
                    raise SandboxError(f"Access to attribute '{node.attr}' is not allowed")
            if isinstance(node, ast.Name) and node.id.startswith('__'):
                raise SandboxError(f"Access to name '{node.id}' is not allowed")


def _deadline_tracer(deadline: float):
    def tracer(frame, event, arg):
        if time.monotonic() > deadline:
            raise SandboxError("Script execution timed out", timed_out=True)
        return tracer
    return tracer


def _run_with_deadline(func, deadline: float, *args):
    sys.settrace(_deadline_tracer(deadline))
    try:
        return func(*args)
    finally:
        sys.settrace(None)


class ScriptSandbox:
    """Compiles and runs user scripts with whitelisted bindings."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def _globals(self, bindings: Dict[str, Any]) -> Dict[str, Any]:
        namespace = {"__builtins__": dict(SAFE_BUILTINS)}
        namespace.update(SAFE_GLOBALS)
        namespace.update({k: v for k, v in bindings.items() if not str(k).startswith('__')})
        return namespace

    def compile_function(self, code: str, bindings: Dict[str, Any]):
        """
        Compile a function body into a callable.

        The body may ``return`` a value; falling off the end returns None.
        Names in ``bindings`` are visible as globals.
        """
        body = textwrap.indent(textwrap.dedent(code or ""), "    ")
        source = f"def {SCRIPT_FUNCTION_NAME}():\n{body}\n    pass\n"
        try:
            tree = ast.parse(source, filename="<transform>", mode="exec")
        except SyntaxError as e:
            raise SandboxError(f"Invalid script: {e.msg} (line {e.lineno})") from e

        screen(tree.body[0].body)

        namespace = self._globals(bindings)
        exec(compile(tree, "<transform>", "exec"), namespace)
        return namespace[SCRIPT_FUNCTION_NAME]

    def compile_expression(self, expression: str, bindings: Dict[str, Any]):
        """Compile a single boolean/value expression into a zero-argument callable."""
        try:
            tree = ast.parse(expression.strip(), filename="<condition>", mode="eval")
        except SyntaxError as e:
            raise SandboxError(f"Invalid expression: {e.msg}") from e

        screen([tree])

        code = compile(tree, "<condition>", "eval")
        namespace = self._globals(bindings)
        return lambda: eval(code, namespace)

    async def _run(self, func, timeout: Optional[float]) -> Any:
        timeout = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(_run_with_deadline, func, deadline),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Script exceeded timeout of {timeout}s")
            raise SandboxError(
                f"Script execution timed out after {timeout}s", timed_out=True
            )

    async def run_function(self, code: str, bindings: Dict[str, Any],
                           timeout: Optional[float] = None) -> Any:
        """Run a function body and return its return value."""
        func = self.compile_function(code, bindings)
        return await self._run(func, timeout)

    async def evaluate(self, expression: str, bindings: Dict[str, Any],
                       timeout: Optional[float] = None) -> Any:
        """Evaluate an expression and return its value."""
        func = self.compile_expression(expression, bindings)
        return await self._run(func, timeout)
