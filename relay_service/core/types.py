from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from relay_service.core.errors import ConfigError


TOOL_USE_STOP_REASON = "tool_use"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class BlockType(StrEnum):
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    IMAGE = "image"


class StreamEventType(StrEnum):
    MESSAGE_START = "message_start"
    CONTENT_BLOCK_START = "content_block_start"
    CONTENT_BLOCK_DELTA = "content_block_delta"
    CONTENT_BLOCK_STOP = "content_block_stop"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    PING = "ping"
    ERROR = "error"


class DeltaType(StrEnum):
    TEXT = "text_delta"
    THINKING = "thinking_delta"
    SIGNATURE = "signature_delta"
    INPUT_JSON = "input_json_delta"


# --- Content blocks ---

@dataclass(frozen=True)
class TextBlock:
    text: str
    type: ClassVar[str] = BlockType.TEXT

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ThinkingBlock:
    thinking: str
    signature: Optional[str] = None
    type: ClassVar[str] = BlockType.THINKING

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": "thinking", "thinking": self.thinking}
        if self.signature is not None:
            out["signature"] = self.signature
        return out


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: Any = field(default_factory=dict)
    type: ClassVar[str] = BlockType.TOOL_USE

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": copy.deepcopy(self.input)}


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False
    type: ClassVar[str] = BlockType.TOOL_RESULT

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": "tool_result", "tool_use_id": self.tool_use_id, "content": self.content}
        if self.is_error:
            out["is_error"] = True
        return out


@dataclass(frozen=True)
class ImageBlock:
    source: Dict[str, Any]
    type: ClassVar[str] = BlockType.IMAGE

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "image", "source": copy.deepcopy(self.source)}


@dataclass(frozen=True)
class OpaqueBlock:
    """A block kind the engine does not interpret (server tool calls and their results).
    Kept verbatim so it can be echoed back upstream."""
    data: Dict[str, Any]

    @property
    def type(self) -> str:
        return self.data.get("type", "")

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, ImageBlock, OpaqueBlock]


def block_from_dict(data: Dict[str, Any]) -> ContentBlock:
    kind = data.get("type")
    if kind == BlockType.TEXT:
        return TextBlock(text=data.get("text", ""))
    if kind == BlockType.THINKING:
        return ThinkingBlock(thinking=data.get("thinking", ""), signature=data.get("signature"))
    if kind == BlockType.TOOL_USE:
        return ToolUseBlock(id=data.get("id", ""), name=data.get("name", ""), input=copy.deepcopy(data.get("input", {})))
    if kind == BlockType.TOOL_RESULT:
        content = data.get("content", "")
        if not isinstance(content, str):
            # list-of-blocks results collapse to their text parts
            content = "".join(b.get("text", "") for b in content if isinstance(b, dict))
        return ToolResultBlock(tool_use_id=data.get("tool_use_id", ""), content=content, is_error=bool(data.get("is_error", False)))
    if kind == BlockType.IMAGE:
        return ImageBlock(source=copy.deepcopy(data.get("source", {})))
    return OpaqueBlock(data=copy.deepcopy(data))


def blocks_from_content(content: Union[str, List[Dict[str, Any]]]) -> Tuple[ContentBlock, ...]:
    if isinstance(content, str):
        return (TextBlock(text=content),)
    return tuple(block_from_dict(b) for b in content)


def extract_text(content: Union[str, Tuple[ContentBlock, ...], List[Any]]) -> str:
    """Concatenate the text blocks of a content value in order; thinking and tool blocks are ignored."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, TextBlock):
            parts.append(block.text)
        elif isinstance(block, dict) and block.get("type") == BlockType.TEXT:
            parts.append(block.get("text", ""))
    return "".join(parts)


# --- Messages ---

@dataclass(frozen=True)
class Message:
    role: Role
    content: Tuple[ContentBlock, ...] = ()
    stop_reason: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)
    model: Optional[str] = None
    id: Optional[str] = None
    # False when a stream ended before message_stop
    complete: bool = True

    @property
    def text(self) -> str:
        return extract_text(self.content)

    def tool_uses(self) -> List[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def to_wire(self) -> Dict[str, Any]:
        return {"role": str(self.role), "content": [b.to_dict() for b in self.content]}

    def to_dict(self) -> Dict[str, Any]:
        out = self.to_wire()
        out.update(
            {
                "id": self.id,
                "type": "message",
                "model": self.model,
                "stop_reason": self.stop_reason,
                "usage": dict(self.usage),
            }
        )
        return out


# --- Request configuration ---

@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str = ""
    input_schema: Optional[Dict[str, Any]] = None
    # set for server-executed tools, e.g. "web_search_20250305"
    type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        if self.type:
            out: Dict[str, Any] = {"type": self.type, "name": self.name}
            out.update(self.extra)
            return out
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema or {"type": "object", "properties": {}},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolDescriptor":
        known = {"name", "description", "input_schema", "type"}
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            input_schema=data.get("input_schema"),
            type=data.get("type"),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass(frozen=True)
class ThinkingOptions:
    type: str = "enabled"  # "enabled" | "adaptive"
    budget_tokens: int = 1024
    effort: str = "medium"


WireMessage = Dict[str, Any]


def _has_content(message: WireMessage) -> bool:
    content = message.get("content")
    if isinstance(content, str):
        return bool(content.strip())
    if isinstance(content, list):
        return len(content) > 0
    return False


@dataclass(frozen=True)
class RequestConfig:
    model: str
    messages: Tuple[WireMessage, ...]
    max_tokens: int = 1024
    system: str = ""
    temperature: float = 1.0
    top_p: float = 1.0
    top_k: int = 0
    tools: Tuple[ToolDescriptor, ...] = ()
    thinking: Optional[ThinkingOptions] = None
    output_format: Optional[Dict[str, Any]] = None
    container: Optional[Dict[str, Any]] = None
    stop_sequences: Tuple[str, ...] = ()
    metadata: Optional[Dict[str, Any]] = None
    betas: Tuple[str, ...] = ()

    def __post_init__(self):
        # the value is immutable, so keep private copies of the caller's dicts
        object.__setattr__(self, "messages", tuple(copy.deepcopy(m) for m in self.messages))
        object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "betas", tuple(self.betas))
        object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))

    def validate(self) -> None:
        if not self.model:
            raise ConfigError("A model id is required")
        if not self.messages:
            raise ConfigError("At least one message is required")
        if not any(_has_content(m) for m in self.messages):
            raise ConfigError("Please provide at least one message with content")
        for m in self.messages:
            if m.get("role") not in (Role.USER, Role.ASSISTANT):
                raise ConfigError(f"Invalid message role: {m.get('role')!r}")
        if self.max_tokens < 1:
            raise ConfigError("max_tokens must be at least 1")

    def with_messages(self, *extra: WireMessage) -> "RequestConfig":
        """Derive the next round's config; every other field carries forward unchanged."""
        return replace(self, messages=self.messages + tuple(extra))

    @property
    def tool_names(self) -> List[str]:
        return [t.name for t in self.tools]


# --- Stream events ---

@dataclass(frozen=True)
class MessageStart:
    message: Message
    type: ClassVar[str] = StreamEventType.MESSAGE_START


@dataclass(frozen=True)
class BlockStart:
    index: int
    block_type: str
    block: Dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = StreamEventType.CONTENT_BLOCK_START


@dataclass(frozen=True)
class BlockDelta:
    index: int
    delta_type: str
    value: str
    type: ClassVar[str] = StreamEventType.CONTENT_BLOCK_DELTA


@dataclass(frozen=True)
class BlockStop:
    index: int
    type: ClassVar[str] = StreamEventType.CONTENT_BLOCK_STOP


@dataclass(frozen=True)
class MessageDelta:
    stop_reason: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)
    stop_sequence: Optional[str] = None
    type: ClassVar[str] = StreamEventType.MESSAGE_DELTA


@dataclass(frozen=True)
class MessageStop:
    type: ClassVar[str] = StreamEventType.MESSAGE_STOP


@dataclass(frozen=True)
class StreamError:
    error: Dict[str, Any]
    type: ClassVar[str] = StreamEventType.ERROR


StreamEvent = Union[MessageStart, BlockStart, BlockDelta, BlockStop, MessageDelta, MessageStop, StreamError]


# --- Tool loop results ---

@dataclass(frozen=True)
class ToolExecutionResult:
    tool_use_id: str
    name: str
    input: Any
    output: str
    ok: bool


@dataclass(frozen=True)
class ToolRound:
    """One intermediate round that executed client tools."""
    assistant: Message
    results: Tuple[ToolResultBlock, ...]
    executions: Tuple[ToolExecutionResult, ...]

    def assistant_wire(self) -> WireMessage:
        return {"role": "assistant", "content": [b.to_dict() for b in self.assistant.content]}

    def results_wire(self) -> WireMessage:
        return {"role": "user", "content": [b.to_dict() for b in self.results]}


@dataclass(frozen=True)
class OrchestrationOutcome:
    final_message: Message
    rounds: Tuple[ToolRound, ...]
    config: RequestConfig
    round_count: int

    @property
    def partial(self) -> bool:
        return not self.final_message.complete

    @property
    def executions(self) -> List[ToolExecutionResult]:
        return [e for r in self.rounds for e in r.executions]


# --- Transcript ---

@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    content: Union[str, Tuple[ContentBlock, ...]]
    timestamp: float
    id: str

    def to_wire(self) -> WireMessage:
        if isinstance(self.content, str):
            return {"role": str(self.role), "content": self.content}
        return {"role": str(self.role), "content": [b.to_dict() for b in self.content]}

    def to_dict(self) -> Dict[str, Any]:
        out = self.to_wire()
        out.update({"id": self.id, "timestamp": self.timestamp})
        return out

    @property
    def is_tool_result(self) -> bool:
        return (
            self.role == Role.USER
            and not isinstance(self.content, str)
            and len(self.content) > 0
            and isinstance(self.content[0], ToolResultBlock)
        )

    @property
    def text(self) -> str:
        return extract_text(self.content)
