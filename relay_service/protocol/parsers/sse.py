import codecs
import json
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from relay_service.core.errors import MalformedEventError
from relay_service.core.interfaces import StreamParser
from relay_service.core.logging import logger
from relay_service.core.types import (
    BlockDelta,
    BlockStart,
    BlockStop,
    DeltaType,
    Message,
    MessageDelta,
    MessageStart,
    MessageStop,
    Role,
    StreamError,
    StreamEvent,
    StreamEventType,
    ThinkingBlock,
    TextBlock,
    ToolUseBlock,
)

DONE_TOKEN = "[DONE]"

_DELTA_FIELDS = {
    DeltaType.TEXT: "text",
    DeltaType.THINKING: "thinking",
    DeltaType.SIGNATURE: "signature",
    DeltaType.INPUT_JSON: "partial_json",
}


def parse_event(obj: Dict[str, Any]) -> Optional[StreamEvent]:
    """Map one decoded data payload to a typed event. Unknown kinds (ping) map to None."""
    kind = obj.get("type")
    if kind == StreamEventType.MESSAGE_START:
        raw = obj.get("message") or {}
        return MessageStart(
            message=Message(
                role=Role(raw.get("role", "assistant")),
                content=(),
                stop_reason=raw.get("stop_reason"),
                usage=dict(raw.get("usage") or {}),
                model=raw.get("model"),
                id=raw.get("id"),
                complete=False,
            )
        )
    if kind == StreamEventType.CONTENT_BLOCK_START:
        block = obj.get("content_block") or {}
        return BlockStart(index=int(obj.get("index", 0)), block_type=block.get("type", ""), block=block)
    if kind == StreamEventType.CONTENT_BLOCK_DELTA:
        delta = obj.get("delta") or {}
        delta_type = delta.get("type", "")
        value = delta.get(_DELTA_FIELDS.get(delta_type, "text"), "")
        return BlockDelta(index=int(obj.get("index", 0)), delta_type=delta_type, value=value or "")
    if kind == StreamEventType.CONTENT_BLOCK_STOP:
        return BlockStop(index=int(obj.get("index", 0)))
    if kind == StreamEventType.MESSAGE_DELTA:
        delta = obj.get("delta") or {}
        return MessageDelta(
            stop_reason=delta.get("stop_reason"),
            usage=dict(obj.get("usage") or {}),
            stop_sequence=delta.get("stop_sequence"),
        )
    if kind == StreamEventType.MESSAGE_STOP:
        return MessageStop()
    if kind == StreamEventType.ERROR:
        return StreamError(error=obj.get("error") or {})
    return None


class SseDecoder(StreamParser):
    """
    Incremental decoder for the line-oriented event stream.
    - Buffers partial records across arbitrarily sized chunks
    - Emits events only for complete, blank-line-terminated records
    - Drops the [DONE] control record and any record whose data is not JSON
    """

    def __init__(self):
        self.buf = ""
        self.malformed_count = 0
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes | str) -> List[StreamEvent]:
        if not chunk:
            return []
        text = self._utf8.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        self.buf += text
        # a trailing "\r" may pair with a "\n" in the next chunk; it stays in the buffer until then
        self.buf = self.buf.replace("\r\n", "\n")

        events: List[StreamEvent] = []
        while True:
            idx = self.buf.find("\n\n")
            if idx == -1:
                break
            record = self.buf[:idx]
            self.buf = self.buf[idx + 2 :]
            evt = self._parse_record(record)
            if evt is not None:
                events.append(evt)
        return events

    def finalize(self) -> List[StreamEvent]:
        """Flush a record left without its terminating blank line at end of stream."""
        tail = self._utf8.decode(b"", final=True)
        pending = (self.buf + tail).replace("\r\n", "\n").strip("\n")
        self.reset()
        if not pending:
            return []
        evt = self._parse_record(pending)
        return [evt] if evt is not None else []

    def reset(self) -> None:
        self.buf = ""
        self._utf8.reset()

    def _parse_record(self, record: str) -> Optional[StreamEvent]:
        data_lines = []
        for line in record.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "data":
                data_lines.append(value)
            # "event:" names are informational; the payload carries the type
        if not data_lines:
            return None

        payload = "\n".join(data_lines)
        if payload.strip() == DONE_TOKEN:
            return None
        try:
            obj = json.loads(payload)
        except json.JSONDecodeError as e:
            self._drop(MalformedEventError(payload, str(e)))
            return None
        if not isinstance(obj, dict):
            self._drop(MalformedEventError(payload, "payload is not an object"))
            return None

        try:
            evt = parse_event(obj)
        except (TypeError, ValueError, AttributeError) as e:
            self._drop(MalformedEventError(payload, f"unexpected shape: {e}"))
            return None
        if evt is None:
            logger.debug(f"SSE: ignoring event type {obj.get('type')!r}")
        return evt

    def _drop(self, err: MalformedEventError) -> None:
        self.malformed_count += 1
        logger.warning(f"SSE: dropped record #{self.malformed_count}: {err}")


async def decode_stream(
    chunks: AsyncIterable[bytes], decoder: Optional[SseDecoder] = None
) -> AsyncIterator[StreamEvent]:
    """Lazily turn transport chunks into events, one suspension per chunk."""
    decoder = decoder or SseDecoder()
    async for chunk in chunks:
        for evt in decoder.feed(chunk):
            yield evt
    for evt in decoder.finalize():
        yield evt


# --- Encoding (used by the scripted transport and for replaying stored messages) ---

def _record(payload: Dict[str, Any]) -> str:
    return f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n"


def encode_message_events(message: Message, text_chunk: int = 16) -> str:
    """Serialize a finished message into the event records an upstream stream would carry."""
    head = {
        "type": "message_start",
        "message": {
            "id": message.id,
            "type": "message",
            "role": str(message.role),
            "model": message.model,
            "content": [],
            "stop_reason": None,
            "usage": {k: v for k, v in message.usage.items() if k != "output_tokens"},
        },
    }
    out = [_record(head)]
    for index, block in enumerate(message.content):
        if isinstance(block, TextBlock):
            start: Dict[str, Any] = {"type": "text", "text": ""}
            deltas = [{"type": "text_delta", "text": block.text[i : i + text_chunk]} for i in range(0, len(block.text), text_chunk)]
        elif isinstance(block, ThinkingBlock):
            start = {"type": "thinking", "thinking": ""}
            deltas = [
                {"type": "thinking_delta", "thinking": block.thinking[i : i + text_chunk]}
                for i in range(0, len(block.thinking), text_chunk)
            ]
            if block.signature:
                deltas.append({"type": "signature_delta", "signature": block.signature})
        elif isinstance(block, ToolUseBlock):
            start = {"type": "tool_use", "id": block.id, "name": block.name, "input": {}}
            raw = json.dumps(block.input)
            deltas = [{"type": "input_json_delta", "partial_json": raw[i : i + text_chunk]} for i in range(0, len(raw), text_chunk)]
        else:
            start = block.to_dict()
            deltas = []
        out.append(_record({"type": "content_block_start", "index": index, "content_block": start}))
        for delta in deltas:
            out.append(_record({"type": "content_block_delta", "index": index, "delta": delta}))
        out.append(_record({"type": "content_block_stop", "index": index}))
    out.append(
        _record(
            {
                "type": "message_delta",
                "delta": {"stop_reason": message.stop_reason, "stop_sequence": None},
                "usage": {"output_tokens": message.usage.get("output_tokens", 0)},
            }
        )
    )
    out.append(_record({"type": "message_stop"}))
    return "".join(out)
