import json

import pytest

from relay_service.core.types import ToolExecutionResult, ToolUseBlock
from relay_service.protocol.orchestration.emitter import NdjsonEmitter, QueueProgressSink


def parse_event(b: bytes) -> dict:
    """Helper to decode NDJSON event bytes into a dict"""
    return json.loads(b.decode("utf-8").strip())


def test_emit_is_one_json_line():
    b = NdjsonEmitter().emit({"type": "text", "session_id": "s1", "data": {"delta": "hi"}})
    assert b.endswith(b"\n")
    assert b.count(b"\n") == 1
    ev = parse_event(b)
    assert ev["type"] == "text"
    assert ev["session_id"] == "s1"
    assert ev["data"] == {"delta": "hi"}
    assert "ts" in ev


def test_emit_fills_missing_fields():
    ev = parse_event(NdjsonEmitter().emit({"type": "done"}))
    assert ev["session_id"] == ""
    assert ev["data"] == {}


@pytest.mark.asyncio
async def test_queue_sink_preserves_order_and_stops_at_close():
    sink = QueueProgressSink("s1")
    sink.status("Sending request...")
    sink.text("Hel")
    sink.thinking("hmm")
    sink.tool_started(ToolUseBlock(id="t1", name="calculator", input={"expression": "1+1"}))
    sink.tool_completed(ToolExecutionResult(tool_use_id="t1", name="calculator", input={}, output="2", ok=True))
    sink.put("done", {})
    sink.close()

    events = [e async for e in sink.events()]
    assert [e["type"] for e in events] == ["status", "text", "thinking", "tool_started", "tool_completed", "done"]
    assert events[3]["data"] == {"id": "t1", "tool_name": "calculator", "tool_args": {"expression": "1+1"}}
    assert events[4]["data"]["tool_result"] == "2"
    assert all(e["session_id"] == "s1" for e in events)
