"""Delay node."""

import asyncio
import time

from ..core.logging import get_logger
from ..core.templates import build_scope, resolve_string
from .base import NodeExecutor, utc_timestamp

logger = get_logger(__name__)

UNIT_MILLISECONDS = {
    'ms': 1,
    'milliseconds': 1,
    's': 1000,
    'seconds': 1000,
    'min': 60 * 1000,
    'minutes': 60 * 1000,
    'h': 60 * 60 * 1000,
    'hours': 60 * 60 * 1000,
}


class DelayExecutor(NodeExecutor):
    """Waits a configured duration, then passes its inputs through."""

    node_type = "delay"
    description = "Pause the workflow for a fixed duration"

    def __init__(self, max_delay_seconds: float = 300.0):
        self.max_delay_ms = int(max_delay_seconds * 1000)

    async def execute(self, config, inputs, context):
        unit = config.get('unit') or 'milliseconds'
        message = config.get('message') or 'Waiting...'

        try:
            try:
                amount = float(config.get('delay', 1000))
            except (TypeError, ValueError):
                amount = 1000
            delay_ms = int(amount * UNIT_MILLISECONDS.get(unit, 1))

            if delay_ms > self.max_delay_ms:
                await context.log(
                    'warn',
                    f"Delay capped at {self.max_delay_ms}ms (requested: {delay_ms}ms)"
                )
                delay_ms = self.max_delay_ms
            delay_ms = max(delay_ms, 0)

            delay_message = resolve_string(message, build_scope(inputs, context.variables))
            await context.log('info', f"{delay_message} ({delay_ms}ms)")

            start_time = utc_timestamp()
            started = time.monotonic()
            await asyncio.sleep(delay_ms / 1000)
            actual_ms = int((time.monotonic() - started) * 1000)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Delay failed in node {context.node_id}: {e}")
            await context.log('error', f"Delay execution failed: {e}")
            return {
                "error": True,
                "message": "Delay execution failed",
                "details": str(e),
                "inputs": inputs,
            }

        await context.log('info', f"Delay completed after {actual_ms}ms")
        output = dict(inputs) if isinstance(inputs, dict) else {}
        output["delay"] = {
            "requested": delay_ms,
            "actual": actual_ms,
            "unit": unit,
            "start_time": start_time,
            "end_time": utc_timestamp(),
            "message": delay_message,
        }
        return output
