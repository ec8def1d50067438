import pytest

from relay_service.core.errors import TransportError
from relay_service.core.types import (
    BlockDelta,
    BlockStart,
    BlockStop,
    Message,
    MessageDelta,
    MessageStart,
    MessageStop,
    OpaqueBlock,
    Role,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
)
from relay_service.protocol.assembly.assembler import MessageAssembler, assemble_events, normalize_message


def start(usage=None) -> MessageStart:
    return MessageStart(
        message=Message(role=Role.ASSISTANT, usage=usage or {"input_tokens": 5, "output_tokens": 1}, model="claude-test", id="msg_1", complete=False)
    )


def test_three_text_deltas_make_one_text_block():
    events = [
        start(),
        BlockStart(index=0, block_type="text", block={"type": "text", "text": ""}),
        BlockDelta(index=0, delta_type="text_delta", value="Hel"),
        BlockDelta(index=0, delta_type="text_delta", value="lo "),
        BlockDelta(index=0, delta_type="text_delta", value="world"),
        BlockStop(index=0),
        MessageStop(),
    ]
    message = assemble_events(events)
    assert message.content == (TextBlock(text="Hello world"),)
    assert message.complete is True
    assert message.model == "claude-test"
    assert message.id == "msg_1"


def test_thinking_is_placed_before_text_regardless_of_wire_order():
    events = [
        start(),
        BlockStart(index=0, block_type="text"),
        BlockDelta(index=0, delta_type="text_delta", value="answer"),
        BlockStop(index=0),
        BlockStart(index=1, block_type="thinking"),
        BlockDelta(index=1, delta_type="thinking_delta", value="reasoning"),
        BlockDelta(index=1, delta_type="signature_delta", value="sig"),
        BlockStop(index=1),
        MessageStop(),
    ]
    message = assemble_events(events)
    assert message.content == (ThinkingBlock(thinking="reasoning", signature="sig"), TextBlock(text="answer"))


def test_empty_accumulators_produce_no_blocks():
    message = assemble_events([start(), BlockStart(index=0, block_type="text"), BlockStop(index=0), MessageStop()])
    assert message.content == ()
    assert message.text == ""


def test_text_across_indices_is_one_running_accumulator():
    events = [
        start(),
        BlockStart(index=0, block_type="text"),
        BlockDelta(index=0, delta_type="text_delta", value="Let me check. "),
        BlockStop(index=0),
        BlockStart(index=1, block_type="tool_use", block={"type": "tool_use", "id": "toolu_1", "name": "calculator", "input": {}}),
        BlockDelta(index=1, delta_type="input_json_delta", value='{"expres'),
        BlockDelta(index=1, delta_type="input_json_delta", value='sion": "2+2"}'),
        BlockStop(index=1),
        BlockStart(index=2, block_type="text"),
        BlockDelta(index=2, delta_type="text_delta", value="Done."),
        BlockStop(index=2),
        MessageDelta(stop_reason="tool_use", usage={"output_tokens": 20}),
        MessageStop(),
    ]
    message = assemble_events(events)
    assert message.content == (
        TextBlock(text="Let me check. Done."),
        ToolUseBlock(id="toolu_1", name="calculator", input={"expression": "2+2"}),
    )
    assert message.stop_reason == "tool_use"


def test_usage_merge_is_a_shallow_overwrite():
    events = [
        start({"input_tokens": 5, "output_tokens": 1, "cache_read_input_tokens": 2}),
        MessageDelta(usage={"output_tokens": 9}),
        MessageDelta(stop_reason="end_turn", usage={"output_tokens": 3}),
        MessageStop(),
    ]
    message = assemble_events(events)
    assert message.usage == {"input_tokens": 5, "output_tokens": 3, "cache_read_input_tokens": 2}
    assert message.stop_reason == "end_turn"


def test_missing_message_stop_returns_partial_result():
    events = [
        start(),
        BlockStart(index=0, block_type="text"),
        BlockDelta(index=0, delta_type="text_delta", value="cut o"),
    ]
    message = assemble_events(events)
    assert message.complete is False
    assert message.text == "cut o"


def test_events_after_message_stop_are_ignored():
    assembler = MessageAssembler()
    for evt in [start(), BlockStart(index=0, block_type="text"), BlockDelta(index=0, delta_type="text_delta", value="a"), MessageStop()]:
        assembler.feed(evt)
    assembler.feed(BlockDelta(index=0, delta_type="text_delta", value="b"))
    assert assembler.result().text == "a"


def test_incomplete_tool_json_falls_back_to_empty_input():
    events = [
        start(),
        BlockStart(index=0, block_type="tool_use", block={"type": "tool_use", "id": "t1", "name": "calculator", "input": {}}),
        BlockDelta(index=0, delta_type="input_json_delta", value='{"expression": "2+'),
    ]
    message = assemble_events(events)
    assert message.tool_uses() == [ToolUseBlock(id="t1", name="calculator", input={})]


def test_server_tool_blocks_are_kept_verbatim():
    events = [
        start(),
        BlockStart(index=0, block_type="server_tool_use", block={"type": "server_tool_use", "id": "srv_1", "name": "web_search", "input": {}}),
        BlockDelta(index=0, delta_type="input_json_delta", value='{"query": "weather"}'),
        BlockStop(index=0),
        MessageStop(),
    ]
    message = assemble_events(events)
    assert message.content == (
        OpaqueBlock(data={"type": "server_tool_use", "id": "srv_1", "name": "web_search", "input": {"query": "weather"}}),
    )


class TestNormalize:
    def test_atomic_response(self):
        raw = {
            "id": "msg_9",
            "type": "message",
            "role": "assistant",
            "model": "claude-test",
            "content": [
                {"type": "text", "text": "Calling"},
                {"type": "tool_use", "id": "toolu_9", "name": "calculator", "input": {"expression": "1+1"}},
            ],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 10, "output_tokens": 4},
        }
        message = normalize_message(raw)
        assert message.text == "Calling"
        assert message.tool_uses()[0].input == {"expression": "1+1"}
        assert message.stop_reason == "tool_use"
        assert message.complete is True
        assert message.to_dict()["content"] == raw["content"]

    @pytest.mark.parametrize(
        "raw",
        [
            "not a dict",
            {"role": "assistant"},
            {"role": "assistant", "content": "text"},
            {"role": "assistant", "content": [{"text": "no type"}]},
            {"role": "system", "content": []},
        ],
    )
    def test_bad_shapes_raise_transport_error(self, raw):
        with pytest.raises(TransportError):
            normalize_message(raw)
