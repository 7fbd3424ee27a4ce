"""Redis GET node."""

import json
from typing import Any

from redis import asyncio as aioredis

from ..core.logging import get_logger
from ..core.templates import build_scope, resolve_string
from .base import NodeExecutor, as_bool, option, utc_timestamp

logger = get_logger(__name__)


def maybe_json(value: Any) -> Any:
    """Decode strings that look like a JSON object or array, else return as is."""
    if isinstance(value, str) and value.startswith(('{', '[')):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


class RedisGetExecutor(NodeExecutor):
    """Reads a key of type string, hash, list, set or json."""

    node_type = "redisGet"
    description = "Read a value from Redis"

    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    async def execute(self, config, inputs, context):
        key = config.get('key')
        data_type = option(config, 'data_type', 'dataType', 'string')
        parse_json = as_bool(option(config, 'parse_json', 'parseJson', True))

        try:
            processed_key = resolve_string(key, build_scope(inputs, context.variables))
            await context.log('info', f"Getting Redis key: {processed_key}")
            value = await self._read(processed_key, data_type, parse_json)
        except Exception as e:
            logger.warning(f"Redis GET failed in node {context.node_id}: {e}")
            await context.log('error', f"Redis GET failed: {e}")
            return {
                "error": True,
                "message": "Redis GET operation failed",
                "details": str(e),
                "key": key,
            }

        if value is None:
            await context.log('warn', f"Redis key not found: {processed_key}")
            return {
                "success": False,
                "found": False,
                "key": processed_key,
                "value": None,
                "message": "Key not found",
            }

        await context.log('info', f"Successfully retrieved Redis key: {processed_key}")
        return {
            "success": True,
            "found": True,
            "key": processed_key,
            "value": value,
            "dataType": data_type,
            "timestamp": utc_timestamp(),
        }

    async def _read(self, key: str, data_type: str, parse_json: bool) -> Any:
        if data_type == 'string':
            value = await self.redis.get(key)
            return maybe_json(value) if parse_json else value

        if data_type == 'hash':
            value = await self.redis.hgetall(key)
            if not value:
                return None
            if parse_json:
                value = {k: maybe_json(v) for k, v in value.items()}
            return value

        if data_type == 'list':
            members = await self.redis.lrange(key, 0, -1)
        elif data_type == 'set':
            members = sorted(await self.redis.smembers(key))
        elif data_type == 'json':
            value = await self.redis.get(key)
            if not value:
                return None
            try:
                return json.loads(value)
            except ValueError as e:
                raise ValueError(f"Failed to parse JSON value: {e}") from e
        else:
            raise ValueError(f"Unsupported data type: {data_type}")

        if not members:
            return None
        if parse_json:
            members = [maybe_json(m) for m in members]
        return members
