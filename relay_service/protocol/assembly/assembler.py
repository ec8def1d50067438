"""
Folds protocol events (or one whole response) into a normalized Message.
"""
import json
from typing import Any, AsyncIterable, Dict, Iterable, List, Optional

from relay_service.core.errors import TransportError
from relay_service.core.logging import logger
from relay_service.core.types import (
    BlockDelta,
    BlockStart,
    BlockStop,
    BlockType,
    ContentBlock,
    DeltaType,
    Message,
    MessageDelta,
    MessageStart,
    MessageStop,
    OpaqueBlock,
    Role,
    StreamEvent,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
    block_from_dict,
)


class MessageAssembler:
    """
    Running state for one streamed message.

    Text and thinking deltas go to two running accumulators regardless of index;
    at the end thinking (if any) is placed before text (if any), which is the
    display convention rather than wire order. Tool-use and other non-text
    blocks follow in index order. If the stream ends without message_stop the
    result is still returned, flagged with complete=False.
    """

    def __init__(self):
        self.id: Optional[str] = None
        self.model: Optional[str] = None
        self.role: Role = Role.ASSISTANT
        self.usage: Dict[str, Any] = {}
        self.stop_reason: Optional[str] = None
        self.complete = False
        self._text: List[str] = []
        self._thinking: List[str] = []
        self._signature: Optional[str] = None
        self._block_types: Dict[int, str] = {}
        self._block_starts: Dict[int, Dict[str, Any]] = {}
        self._input_json: Dict[int, List[str]] = {}
        self._stopped: set[int] = set()

    def feed(self, event: StreamEvent) -> None:
        if self.complete:
            logger.debug(f"Assembler: ignoring {event.type} after message_stop")
            return

        if isinstance(event, MessageStart):
            seed = event.message
            self.id = seed.id
            self.model = seed.model
            self.role = seed.role
            self.usage = dict(seed.usage)
            if seed.stop_reason:
                self.stop_reason = seed.stop_reason

        elif isinstance(event, BlockStart):
            self._block_types[event.index] = event.block_type
            self._block_starts[event.index] = dict(event.block)
            # text blocks can open with a non-empty prefix
            if event.block_type == BlockType.TEXT and event.block.get("text"):
                self._text.append(event.block["text"])
            elif event.block_type == BlockType.THINKING and event.block.get("thinking"):
                self._thinking.append(event.block["thinking"])

        elif isinstance(event, BlockDelta):
            if event.index in self._stopped:
                logger.warning(f"Assembler: delta for closed block {event.index}")
            if event.delta_type == DeltaType.TEXT:
                self._text.append(event.value)
            elif event.delta_type == DeltaType.THINKING:
                self._thinking.append(event.value)
            elif event.delta_type == DeltaType.SIGNATURE:
                self._signature = event.value
            elif event.delta_type == DeltaType.INPUT_JSON:
                self._input_json.setdefault(event.index, []).append(event.value)
            else:
                logger.debug(f"Assembler: unknown delta type {event.delta_type!r}")

        elif isinstance(event, BlockStop):
            self._stopped.add(event.index)

        elif isinstance(event, MessageDelta):
            if event.stop_reason is not None:
                self.stop_reason = event.stop_reason
            # shallow overwrite, not additive
            self.usage.update(event.usage)

        elif isinstance(event, MessageStop):
            self.complete = True

    def _tool_input(self, index: int) -> Any:
        fragments = self._input_json.get(index)
        if not fragments:
            return self._block_starts.get(index, {}).get("input", {}) or {}
        raw = "".join(fragments)
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Assembler: incomplete tool input for block {index}: {raw[:100]!r}")
            return {}

    def result(self) -> Message:
        content: List[ContentBlock] = []
        thinking = "".join(self._thinking)
        if thinking:
            content.append(ThinkingBlock(thinking=thinking, signature=self._signature))
        text = "".join(self._text)
        if text:
            content.append(TextBlock(text=text))

        for index in sorted(self._block_types):
            kind = self._block_types[index]
            if kind in (BlockType.TEXT, BlockType.THINKING):
                continue
            start = self._block_starts.get(index, {})
            if kind == BlockType.TOOL_USE:
                content.append(ToolUseBlock(id=start.get("id", ""), name=start.get("name", ""), input=self._tool_input(index)))
            else:
                data = dict(start)
                if index in self._input_json:
                    data["input"] = self._tool_input(index)
                content.append(OpaqueBlock(data=data))

        return Message(
            role=self.role,
            content=tuple(content),
            stop_reason=self.stop_reason,
            usage=dict(self.usage),
            model=self.model,
            id=self.id,
            complete=self.complete,
        )


def assemble_events(events: Iterable[StreamEvent]) -> Message:
    assembler = MessageAssembler()
    for event in events:
        assembler.feed(event)
    return assembler.result()


async def assemble(events: AsyncIterable[StreamEvent]) -> Message:
    assembler = MessageAssembler()
    async for event in events:
        assembler.feed(event)
    return assembler.result()


def normalize_message(raw: Any) -> Message:
    """Validate the shape of an atomic response and convert it to a Message."""
    if not isinstance(raw, dict):
        raise TransportError("Malformed response: expected a JSON object", body=raw)
    content = raw.get("content")
    if not isinstance(content, list) or not all(isinstance(b, dict) and "type" in b for b in content):
        raise TransportError("Malformed response: 'content' must be a list of blocks", body=raw)
    try:
        role = Role(raw.get("role", "assistant"))
    except ValueError:
        raise TransportError(f"Malformed response: unknown role {raw.get('role')!r}", body=raw)
    return Message(
        role=role,
        content=tuple(block_from_dict(b) for b in content),
        stop_reason=raw.get("stop_reason"),
        usage=dict(raw.get("usage") or {}),
        model=raw.get("model"),
        id=raw.get("id"),
        complete=True,
    )
