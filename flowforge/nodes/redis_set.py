"""Redis SET node."""

import json
from typing import Any

from redis import asyncio as aioredis

from ..core.logging import get_logger
from ..core.templates import build_scope, resolve, resolve_string, stringify
from .base import NodeExecutor, option, utc_timestamp

logger = get_logger(__name__)

# Config values left behind by editors that failed to render a template
PLACEHOLDER_VALUES = ('${JSON.stringify(data)}', '[object Object]')


def _member(value: Any) -> str:
    return value if isinstance(value, str) else stringify(value)


class RedisSetExecutor(NodeExecutor):
    """Writes the configured value, or the node's inputs, to a key."""

    node_type = "redisSet"
    description = "Write a value to Redis"

    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    async def execute(self, config, inputs, context):
        key = config.get('key')
        value = config.get('value')
        ttl = config.get('ttl')
        data_type = option(config, 'data_type', 'dataType', 'string')

        try:
            scope = build_scope(inputs, context.variables)
            processed_key = resolve_string(key, scope)
            await context.log('info', f"Setting Redis key: {processed_key}")

            if value is None or value == '' or value in PLACEHOLDER_VALUES:
                to_store = inputs
            else:
                to_store = value
            if isinstance(to_store, str):
                to_store = resolve(to_store, scope)

            ttl = int(ttl) if ttl else None
            stored, result = await self._write(processed_key, to_store, data_type, ttl)
        except Exception as e:
            logger.warning(f"Redis SET failed in node {context.node_id}: {e}")
            await context.log('error', f"Redis SET failed: {e}")
            return {
                "error": True,
                "message": "Redis SET operation failed",
                "details": str(e),
                "key": key,
                "value": value,
            }

        await context.log('info', f"Successfully set Redis key: {processed_key}")
        output = {
            "success": True,
            "key": processed_key,
            "value": stored,
            "dataType": data_type,
            "ttl": ttl,
            "result": result,
            "timestamp": utc_timestamp(),
        }
        # Upstream data passes through for downstream nodes
        if isinstance(inputs, dict):
            output.update(inputs)
        return output

    async def _write(self, key: str, value: Any, data_type: str, ttl):
        expires = ttl is not None and ttl > 0

        if data_type in ('string', 'json'):
            text = json.dumps(value) if data_type == 'json' else _member(value)
            if expires:
                result = await self.redis.setex(key, ttl, text)
            else:
                result = await self.redis.set(key, text)
            return text, result

        if data_type == 'hash':
            if not isinstance(value, dict):
                raise ValueError("Hash data type requires an object value")
            mapping = {str(k): _member(v) for k, v in value.items()}
            result = await self.redis.hset(key, mapping=mapping)
        elif data_type in ('list', 'set'):
            members = [_member(v) for v in (value if isinstance(value, list) else [value])]
            if data_type == 'list':
                result = await self.redis.rpush(key, *members)
            else:
                result = await self.redis.sadd(key, *members)
        else:
            raise ValueError(f"Unsupported data type: {data_type}")

        if expires:
            await self.redis.expire(key, ttl)
        return value, result
