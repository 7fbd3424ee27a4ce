"""Transform node: runs a user script over the node's inputs."""

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, List, Tuple

from ..core.logging import get_logger
from ..core.sandbox import ScriptSandbox
from ..core.templates import get_path, set_path
from .base import NodeExecutor

logger = get_logger(__name__)


def format_date(value: Any, fmt: str = "ISO") -> str:
    """Format a datetime, ISO string or epoch-milliseconds value."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)):
        moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        moment = datetime.fromisoformat(str(value).replace('Z', '+00:00'))

    if fmt == "ISO":
        return moment.isoformat()
    if fmt == "locale":
        return moment.strftime("%c")
    if fmt == "date":
        return moment.strftime("%x")
    if fmt == "time":
        return moment.strftime("%X")
    return str(moment)


def make_helpers() -> SimpleNamespace:
    return SimpleNamespace(get=get_path, set=set_path, format_date=format_date)


class ScriptConsole:
    """Collects console output of a script; flushed as node logs afterwards."""

    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    def log(self, *args):
        self.messages.append(('info', ' '.join(str(a) for a in args)))

    def warn(self, *args):
        self.messages.append(('warn', ' '.join(str(a) for a in args)))

    def error(self, *args):
        self.messages.append(('error', ' '.join(str(a) for a in args)))


class TransformExecutor(NodeExecutor):
    """Runs ``code`` as a function body with ``inputs`` bound."""

    node_type = "transform"
    description = "Transform data with a sandboxed Python script"

    def __init__(self, sandbox: ScriptSandbox):
        self.sandbox = sandbox

    async def execute(self, config, inputs, context):
        code = config.get('code') or ''
        timeout_ms = config.get('timeout')
        timeout = float(timeout_ms) / 1000 if timeout_ms else None
        console = ScriptConsole()

        await context.log('info', 'Executing transform node')
        try:
            result = await self.sandbox.run_function(code, {
                'inputs': inputs,
                'input': inputs,
                'helpers': make_helpers(),
                'console': console,
            }, timeout=timeout)
        except Exception as e:
            await self._flush(console, context)
            logger.warning(f"Transform script failed in node {context.node_id}: {e}")
            await context.log('error', f"Transform execution failed: {e}")
            return {
                "error": True,
                "message": "Transform execution failed",
                "details": str(e),
                "code": code,
                "inputs": inputs,
            }

        await self._flush(console, context)
        await context.log('info', 'Transform executed successfully')
        return inputs if result is None else result

    @staticmethod
    async def _flush(console: ScriptConsole, context) -> None:
        for level, message in console.messages:
            await context.log(level, f"[Transform] {message}")
