import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from relay_service.core.errors import TransportError
from relay_service.core.interfaces import Transport
from relay_service.core.types import Message, RequestConfig
from relay_service.protocol.assembly.assembler import normalize_message
from relay_service.protocol.parsers.sse import encode_message_events


class ScriptedTransport(Transport):
    """
    Replays canned upstream responses in order, for offline runs and tests.
    A response that is an exception instance is raised instead of returned.
    Streamed replies are cut into chunk_size byte pieces.
    """

    def __init__(self, responses: Optional[List[Any]] = None, chunk_size: int = 7, delay: float = 0.0):
        self.responses: List[Any] = list(responses or [])
        self.chunk_size = chunk_size
        self.delay = delay
        self.requests: List[Tuple[RequestConfig, Dict[str, str]]] = []

    def add(self, response: Any) -> None:
        self.responses.append(response)

    def _next(self, config: RequestConfig, headers: Dict[str, str]) -> Message:
        self.requests.append((config, dict(headers)))
        if not self.responses:
            raise TransportError("No scripted response left", status_code=500)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item if isinstance(item, Message) else normalize_message(item)

    async def send_atomic(self, config: RequestConfig, headers: Dict[str, str]) -> Message:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self._next(config, headers)

    async def send_streaming(self, config: RequestConfig, headers: Dict[str, str]) -> AsyncIterator[bytes]:
        message = self._next(config, headers)
        raw = encode_message_events(message).encode("utf-8")
        for i in range(0, len(raw), self.chunk_size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield raw[i : i + self.chunk_size]

    async def count_tokens(self, config: RequestConfig, headers: Dict[str, str]) -> int:
        # rough 4-characters-per-token estimate
        text = json.dumps([config.system, list(config.messages), [t.to_dict() for t in config.tools]])
        return max(1, len(text) // 4)
