"""
Editable request draft with change notification, and a token count that goes
stale whenever a request-affecting field changes after it was computed.
"""
import copy
from typing import Any, Callable, Dict, List, Optional

from relay_service.core.interfaces import Transport
from relay_service.core.logging import logger
from relay_service.core.types import RequestConfig, ThinkingOptions, ToolDescriptor

Observer = Callable[[str, Any], None]

TRACKED_FIELDS = (
    "model",
    "messages",
    "system",
    "max_tokens",
    "temperature",
    "top_p",
    "top_k",
    "tools",
    "thinking",
    "output_format",
    "container",
    "betas",
)


class RequestDraft:
    """Mutable counterpart of RequestConfig. Assign fields to change them; in-place edits are not observed."""

    def __init__(self, model: str = "", **fields: Any):
        object.__setattr__(self, "_observers", [])
        object.__setattr__(self, "model", model)
        object.__setattr__(self, "messages", [])
        object.__setattr__(self, "system", "")
        object.__setattr__(self, "max_tokens", 1024)
        object.__setattr__(self, "temperature", 1.0)
        object.__setattr__(self, "top_p", 1.0)
        object.__setattr__(self, "top_k", 0)
        object.__setattr__(self, "tools", [])
        object.__setattr__(self, "thinking", None)
        object.__setattr__(self, "output_format", None)
        object.__setattr__(self, "container", None)
        object.__setattr__(self, "betas", [])
        for name, value in fields.items():
            if name not in TRACKED_FIELDS:
                raise AttributeError(f"Unknown draft field: {name}")
            object.__setattr__(self, name, value)

    def __setattr__(self, name: str, value: Any) -> None:
        if name not in TRACKED_FIELDS:
            raise AttributeError(f"Unknown draft field: {name}")
        if getattr(self, name) == value:
            return
        object.__setattr__(self, name, value)
        for observer in list(self._observers):
            observer(name, value)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def build(self) -> RequestConfig:
        tools = tuple(t if isinstance(t, ToolDescriptor) else ToolDescriptor.from_dict(t) for t in self.tools)
        thinking = self.thinking
        if isinstance(thinking, dict):
            thinking = ThinkingOptions(**thinking)
        return RequestConfig(
            model=self.model,
            messages=tuple(copy.deepcopy(self.messages)),
            max_tokens=self.max_tokens,
            system=self.system,
            temperature=self.temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            tools=tools,
            thinking=thinking,
            output_format=self.output_format,
            container=self.container,
            betas=tuple(self.betas),
        )


class TokenCountTracker:
    def __init__(self, draft: RequestDraft, transport: Transport):
        self.draft = draft
        self.transport = transport
        self.count: Optional[int] = None
        self.stale = False
        self.dirty_fields: List[str] = []
        self._unsubscribe = draft.subscribe(self._on_change)

    def _on_change(self, name: str, value: Any) -> None:
        if self.count is None:
            return
        self.stale = True
        if name not in self.dirty_fields:
            self.dirty_fields.append(name)

    async def refresh(self, headers: Dict[str, str]) -> int:
        config = self.draft.build()
        config.validate()
        count = await self.transport.count_tokens(config, headers)
        self.count = count
        self.stale = False
        self.dirty_fields = []
        logger.info(f"Token count refreshed: {count} input tokens for model={config.model}")
        return count

    def close(self) -> None:
        self._unsubscribe()
