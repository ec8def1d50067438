import asyncio
import datetime
import json
from typing import Any, AsyncIterator, Dict, Optional

from relay_service.core.types import ToolExecutionResult, ToolUseBlock


class NdjsonEmitter:
    """Emitter producing NDJSON bytes for unified event schema"""
    def emit(self, event: Dict[str, Any]) -> bytes:
        out = {
            "type": event.get("type", ""),
            "session_id": event.get("session_id", ""),
            "data": event.get("data", {}),
            "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
        return (json.dumps(out, default=str) + "\n").encode("utf-8")


class ProgressSink:
    """Write-only progress channel. The base class ignores everything."""

    def status(self, text: str) -> None:
        pass

    def text(self, delta: str) -> None:
        pass

    def thinking(self, delta: str) -> None:
        pass

    def tool_started(self, block: ToolUseBlock) -> None:
        pass

    def tool_completed(self, result: ToolExecutionResult) -> None:
        pass


class QueueProgressSink(ProgressSink):
    """Buffers progress as event dicts so an HTTP response can stream them."""

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue()

    def _put(self, type_: str, data: Dict[str, Any]) -> None:
        self._queue.put_nowait({"type": type_, "session_id": self.session_id, "data": data})

    def status(self, text: str) -> None:
        self._put("status", {"message": text})

    def text(self, delta: str) -> None:
        self._put("text", {"delta": delta})

    def thinking(self, delta: str) -> None:
        self._put("thinking", {"delta": delta})

    def tool_started(self, block: ToolUseBlock) -> None:
        self._put("tool_started", {"id": block.id, "tool_name": block.name, "tool_args": block.input})

    def tool_completed(self, result: ToolExecutionResult) -> None:
        self._put(
            "tool_completed",
            {"id": result.tool_use_id, "tool_name": result.name, "tool_result": result.output, "ok": result.ok},
        )

    def put(self, type_: str, data: Dict[str, Any]) -> None:
        self._put(type_, data)

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            evt = await self._queue.get()
            if evt is None:
                return
            yield evt
