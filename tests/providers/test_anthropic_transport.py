import json

import httpx
import pytest

from relay_service.core.errors import TransportError
from relay_service.core.types import Message, RequestConfig, Role, TextBlock
from relay_service.protocol.assembly.assembler import assemble
from relay_service.protocol.parsers.sse import decode_stream, encode_message_events
from relay_service.providers.anthropic.transport import AnthropicTransport

HEADERS = {"x-api-key": "sk-test", "anthropic-version": "2023-06-01", "content-type": "application/json"}
CONFIG = RequestConfig(model="claude-test", messages=({"role": "user", "content": "hi"},), max_tokens=16)

REPLY = {
    "id": "msg_1",
    "type": "message",
    "role": "assistant",
    "model": "claude-test",
    "content": [{"type": "text", "text": "Hello!"}],
    "stop_reason": "end_turn",
    "usage": {"input_tokens": 3, "output_tokens": 2},
}


def make_transport(handler) -> AnthropicTransport:
    return AnthropicTransport(base_url="https://upstream.test/", http_transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_send_atomic_posts_body_and_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=REPLY)

    message = await make_transport(handler).send_atomic(CONFIG, HEADERS)

    assert seen["url"] == "https://upstream.test/v1/messages"
    assert seen["headers"]["x-api-key"] == "sk-test"
    assert seen["body"] == {"model": "claude-test", "messages": [{"role": "user", "content": "hi"}], "max_tokens": 16}
    assert message.text == "Hello!"
    assert message.usage == {"input_tokens": 3, "output_tokens": 2}


@pytest.mark.asyncio
async def test_error_status_carries_upstream_body():
    body = {"type": "error", "error": {"type": "invalid_request_error", "message": "max_tokens: too large"}}
    transport = make_transport(lambda request: httpx.Response(400, json=body))
    with pytest.raises(TransportError) as exc_info:
        await transport.send_atomic(CONFIG, HEADERS)
    assert exc_info.value.status_code == 400
    assert exc_info.value.body == body
    assert str(exc_info.value) == "max_tokens: too large"


@pytest.mark.asyncio
async def test_non_json_error_body():
    transport = make_transport(lambda request: httpx.Response(502, text="<html>bad gateway</html>"))
    with pytest.raises(TransportError) as exc_info:
        await transport.send_atomic(CONFIG, HEADERS)
    assert exc_info.value.status_code == 502
    assert "bad gateway" in exc_info.value.body


@pytest.mark.asyncio
async def test_network_errors_are_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as exc_info:
        await make_transport(handler).send_atomic(CONFIG, HEADERS)
    assert exc_info.value.status_code is None
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_timeouts_are_wrapped():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(TransportError):
        await make_transport(handler).send_atomic(CONFIG, HEADERS)


@pytest.mark.asyncio
async def test_malformed_success_body():
    transport = make_transport(lambda request: httpx.Response(200, json={"role": "assistant", "content": "oops"}))
    with pytest.raises(TransportError):
        await transport.send_atomic(CONFIG, HEADERS)


@pytest.mark.asyncio
async def test_send_streaming_yields_raw_sse_bytes():
    expected = Message(
        role=Role.ASSISTANT,
        content=(TextBlock(text="streamed hello"),),
        stop_reason="end_turn",
        usage={"input_tokens": 3, "output_tokens": 4},
        model="claude-test",
        id="msg_s",
    )
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=encode_message_events(expected).encode())

    chunks = make_transport(handler).send_streaming(CONFIG, HEADERS)
    message = await assemble(decode_stream(chunks))

    assert seen["body"]["stream"] is True
    assert message.text == "streamed hello"
    assert message.stop_reason == "end_turn"
    assert message.complete is True


@pytest.mark.asyncio
async def test_streaming_error_status():
    transport = make_transport(lambda request: httpx.Response(529, json={"error": {"type": "overloaded_error", "message": "Overloaded"}}))
    with pytest.raises(TransportError) as exc_info:
        async for _ in transport.send_streaming(CONFIG, HEADERS):
            pass
    assert exc_info.value.status_code == 529
    assert exc_info.value.upstream_message == "Overloaded"


@pytest.mark.asyncio
async def test_count_tokens():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"input_tokens": 42})

    assert await make_transport(handler).count_tokens(CONFIG, HEADERS) == 42
    assert seen["path"] == "/v1/messages/count_tokens"
    assert "max_tokens" not in seen["body"]
