"""
HTTP transport for the Messages API.

- Separate connect/read timeouts
- No retries; every failure surfaces as TransportError with the upstream status/body
- Security: no API keys or full responses in logs
"""
import json
import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from relay_service.core.errors import TransportError
from relay_service.core.interfaces import Transport
from relay_service.core.logging import logger
from relay_service.core.types import Message, RequestConfig
from relay_service.protocol.assembly.assembler import normalize_message
from relay_service.protocol.request import build_body, build_count_body


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text[:1000]


def _status_error(response: httpx.Response, body: Any) -> TransportError:
    message = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
    return TransportError(
        message or f"API request failed with status {response.status_code}",
        status_code=response.status_code,
        body=body,
    )


class AnthropicTransport(Transport):
    MESSAGES_PATH = "/v1/messages"
    COUNT_PATH = "/v1/messages/count_tokens"

    def __init__(
        self,
        base_url: str = "https://api.anthropic.com",
        timeout_sec: float = 600.0,
        connect_timeout_sec: float = 10.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Upstream root URL (a forwarding proxy works too)
            timeout_sec: Read timeout per request in seconds
            connect_timeout_sec: Socket connect timeout in seconds
            http_transport: Optional httpx transport, e.g. httpx.MockTransport in tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(connect=connect_timeout_sec, read=timeout_sec, write=30.0, pool=10.0)
        self.http_transport = http_transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.http_transport)

    async def send_atomic(self, config: RequestConfig, headers: Dict[str, str]) -> Message:
        body = build_body(config, stream=False)
        start = time.time()
        try:
            async with self._client() as client:
                response = await client.post(self.MESSAGES_PATH, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Upstream request failed: {type(e).__name__}: {str(e)[:100]}")
            raise TransportError(f"Upstream request failed: {e}") from e

        logger.info(f"Upstream response: status={response.status_code}, latency={int((time.time() - start) * 1000)}ms")
        if response.status_code >= 400:
            raise _status_error(response, _error_body(response))
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise TransportError("Upstream returned a non-JSON body", status_code=response.status_code, body=response.text[:1000]) from e
        return normalize_message(data)

    async def send_streaming(self, config: RequestConfig, headers: Dict[str, str]) -> AsyncIterator[bytes]:
        body = build_body(config, stream=True)
        try:
            async with self._client() as client:
                async with client.stream("POST", self.MESSAGES_PATH, json=body, headers=headers) as response:
                    logger.info(f"Upstream stream opened: status={response.status_code}")
                    if response.status_code >= 400:
                        await response.aread()
                        raise _status_error(response, _error_body(response))
                    async for chunk in response.aiter_bytes():
                        yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Upstream stream failed: {type(e).__name__}: {str(e)[:100]}")
            raise TransportError(f"Upstream stream failed: {e}") from e

    async def count_tokens(self, config: RequestConfig, headers: Dict[str, str]) -> int:
        try:
            async with self._client() as client:
                response = await client.post(self.COUNT_PATH, json=build_count_body(config), headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Token count request failed: {e}") from e
        if response.status_code >= 400:
            raise _status_error(response, _error_body(response))
        return int(response.json().get("input_tokens", 0))
