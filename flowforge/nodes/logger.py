"""Logger node: records a templated message in the execution and workflow logs."""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.logging import get_logger
from ..core.templates import build_extended_scope, render
from .base import NodeExecutor, as_bool, option, utc_timestamp

logger = get_logger(__name__)


def summarize(value: Any, max_length: int = 100) -> str:
    """Short one-line rendering of a value for console output."""
    if value is None or not isinstance(value, (dict, list)):
        return str(value)[:max_length]
    text = json.dumps(value, default=str)
    if len(text) <= max_length:
        return text
    if isinstance(value, dict) and value:
        keys = list(value)
        more = ', ...' if len(keys) > 3 else ''
        return f"{{{', '.join(keys[:3])}{more}}} ({len(keys)} keys)"
    return text[:max_length - 3] + '...'


def format_entry(entry: Dict[str, Any]) -> str:
    parts = []
    if entry.get('timestamp'):
        parts.append(f"[{datetime.fromisoformat(entry['timestamp']).strftime('%H:%M:%S')}]")
    parts.append(f"[{entry['level'].upper()}]")
    if entry.get('node_name'):
        parts.append(f"[{entry['node_name']}]")
    parts.append(entry['message'])
    if 'inputs' in entry:
        parts.append(f"| Data: {summarize(entry['inputs'])}")
    return ' '.join(parts)


class LoggerExecutor(NodeExecutor):
    """Emits a node log and appends to the workflow's durable log."""

    node_type = "logger"
    description = "Log a message to the execution and workflow logs"

    def __init__(self, workflow_log: Optional[Any] = None):
        # Anything with ``append_workflow_log(workflow_id, fields)``
        self.workflow_log = workflow_log

    async def execute(self, config, inputs, context):
        level = config.get('level') or 'info'
        message = config.get('message') or ''
        include_inputs = as_bool(option(config, 'include_inputs', 'includeInputs', False))
        include_node_info = as_bool(option(config, 'include_node_info', 'includeNodeInfo', False))

        try:
            entry: Dict[str, Any] = {
                "level": level,
                "timestamp": utc_timestamp(),
                "execution_id": context.execution_id,
                "node_id": context.node_id,
                "node_name": context.node_name or "Logger",
            }
            if message:
                scope = build_extended_scope(inputs, context.variables)
                entry["message"] = render(str(message), scope)
            else:
                entry["message"] = "Workflow execution log"
            if include_inputs:
                entry["inputs"] = inputs
            if include_node_info:
                entry["node"] = {
                    "id": context.node_id,
                    "name": context.node_name,
                    "type": self.node_type,
                }

            await context.log(level, format_entry(entry), entry)

            if context.workflow_id and self.workflow_log is not None:
                await self.workflow_log.append_workflow_log(context.workflow_id, {
                    "level": level,
                    "message": entry["message"],
                    "execution_id": context.execution_id,
                    "node_id": context.node_id,
                    "timestamp": entry["timestamp"],
                    "data": entry,
                })
        except Exception as e:
            logger.warning(f"Logger node {context.node_id} failed: {e}")
            await context.log('error', f"Logger node failed: {e}")
            return {
                "error": True,
                "message": "Logger execution failed",
                "details": str(e),
                "original_message": message,
            }

        return {
            "success": True,
            "logged": True,
            "entry": entry,
            "message": entry["message"],
            "level": level,
            "timestamp": entry["timestamp"],
        }
