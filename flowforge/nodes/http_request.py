"""HTTP request node."""

import json
from typing import Optional

import httpx

from ..core.logging import get_logger
from ..core.templates import build_scope, resolve
from .base import NodeExecutor, option

logger = get_logger(__name__)

BODY_METHODS = ('POST', 'PUT', 'PATCH')


class HttpRequestExecutor(NodeExecutor):
    """Issues an HTTP call through a shared httpx client."""

    node_type = "httpRequest"
    description = "Send an HTTP request and return the response"

    def __init__(self, client: httpx.AsyncClient, default_timeout_ms: float = 30000):
        self.client = client
        self.default_timeout_ms = default_timeout_ms

    async def execute(self, config, inputs, context):
        scope = build_scope(inputs, context.variables)
        method = str(option(config, 'method', default='GET') or 'GET').upper()
        url = resolve(config.get('url'), scope)
        timeout_ms = option(config, 'timeout', default=self.default_timeout_ms)

        try:
            await context.log('info', f"Making {method} request to: {url}")

            headers = {'Content-Type': 'application/json'}
            headers.update({
                str(k): str(v) for k, v in (resolve(config.get('headers') or {}, scope)).items()
            })

            payload = None
            body = config.get('body')
            if method in BODY_METHODS and body:
                body = resolve(body, scope)
                payload = json.loads(body) if isinstance(body, str) else body

            response = await self.client.request(
                method,
                str(url),
                headers=headers,
                content=None if payload is None else json.dumps(payload),
                timeout=float(timeout_ms) / 1000,
                follow_redirects=True,
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"HTTP request setup failed in node {context.node_id}: {e}")
            await context.log('error', f"HTTP request failed: {e}")
            return {
                "error": True,
                "message": "Request setup failed",
                "details": str(e),
            }
        except httpx.RequestError as e:
            logger.warning(f"HTTP request to {url} failed in node {context.node_id}: {e}")
            await context.log('error', f"HTTP request failed: {e}")
            return {
                "error": True,
                "message": "No response received from server",
                "details": str(e),
            }

        data = self._decode(response)

        if response.is_error:
            message = f"Request failed with status code {response.status_code}"
            await context.log('error', f"HTTP request failed: {message}")
            return {
                "error": True,
                "status": response.status_code,
                "statusText": response.reason_phrase,
                "data": data,
                "message": message,
            }

        await context.log('info', f"HTTP request successful. Status: {response.status_code}")
        return {
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "data": data,
            "success": 200 <= response.status_code < 300,
        }

    @staticmethod
    def _decode(response: httpx.Response) -> Optional[object]:
        if not response.content:
            return ""
        try:
            return response.json()
        except ValueError:
            return response.text
