"""Tests for the non-streaming message aggregator."""

import pytest

from src.core.exceptions import UpstreamError
from src.messages.aggregator import MessageAggregator, aggregate_events
from src.messages.types import (
    StepFinish,
    StreamError,
    StreamFinish,
    TextDelta,
    ToolCallComplete,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
)
from src.testing import assert_anthropic_message_valid


async def _aiter(events):
    for event in events:
        yield event


class TestAggregateEvents:
    """Tests for aggregate_events."""

    @pytest.mark.asyncio
    async def test_text_only(self):
        message = await aggregate_events(
            _aiter([
                TextDelta("Hello"),
                TextDelta(" world"),
                StepFinish("stop", input_tokens=10, output_tokens=2),
                StreamFinish(),
            ]),
            "msg_1",
            "claude-test",
        )

        assert_anthropic_message_valid(message)
        assert message == {
            "id": "msg_1",
            "type": "message",
            "role": "assistant",
            "model": "claude-test",
            "content": [{"type": "text", "text": "Hello world"}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
            "usage": {"input_tokens": 10, "output_tokens": 2},
        }

    @pytest.mark.asyncio
    async def test_text_collapsed_before_tool_uses(self):
        """Test that interleaved text ends up in one leading text block."""
        message = await aggregate_events(
            _aiter([
                TextDelta("Before. "),
                ToolCallStart("t1", "ls"),
                ToolCallDelta("t1", '{"dir":"."}'),
                ToolCallEnd("t1"),
                ToolCallComplete("t1", "ls", {"dir": "."}),
                TextDelta("After."),
                ToolCallComplete("t2", "cat", {"path": "a"}),
                StepFinish("tool-calls", output_tokens=7),
                StreamFinish(),
            ]),
            "msg_2",
            "claude-test",
        )

        assert_anthropic_message_valid(message)
        assert message["content"] == [
            {"type": "text", "text": "Before. After."},
            {"type": "tool_use", "id": "t1", "name": "ls", "input": {"dir": "."}},
            {"type": "tool_use", "id": "t2", "name": "cat", "input": {"path": "a"}},
        ]
        assert message["stop_reason"] == "tool_use"

    @pytest.mark.asyncio
    async def test_no_text_block_when_no_text(self):
        message = await aggregate_events(
            _aiter([ToolCallComplete("t1", "ls", {}), StepFinish("tool-calls")]),
            "msg_3",
            "m",
        )

        assert [block["type"] for block in message["content"]] == ["tool_use"]

    @pytest.mark.asyncio
    async def test_usage_summed_over_steps(self):
        message = await aggregate_events(
            _aiter([
                StepFinish("tool-calls", input_tokens=5, output_tokens=1),
                StepFinish("length", input_tokens=3, output_tokens=4),
            ]),
            "msg_4",
            "m",
        )

        assert message["usage"] == {"input_tokens": 8, "output_tokens": 5}
        assert message["stop_reason"] == "max_tokens"

    @pytest.mark.asyncio
    async def test_missing_step_finish_defaults_to_end_turn(self):
        message = await aggregate_events(_aiter([TextDelta("x")]), "msg_5", "m")

        assert message["stop_reason"] == "end_turn"
        assert message["usage"] == {"input_tokens": 0, "output_tokens": 0}

    @pytest.mark.asyncio
    async def test_stream_error_raises(self):
        with pytest.raises(UpstreamError, match="rate limited"):
            await aggregate_events(
                _aiter([TextDelta("x"), StreamError("rate limited")]), "msg_6", "m"
            )

    @pytest.mark.asyncio
    async def test_source_exception_propagates(self):
        async def failing():
            yield TextDelta("x")
            raise ConnectionError("reset")

        with pytest.raises(ConnectionError):
            await aggregate_events(failing(), "msg_7", "m")


class TestMessageAggregator:
    """Tests for the incremental aggregator."""

    def test_non_object_tool_input_coerced(self):
        aggregator = MessageAggregator("msg_1", "m")
        aggregator.feed(ToolCallComplete("t", "f", ["not", "an", "object"]))

        assert aggregator.build()["content"][0]["input"] == {}

    def test_empty_build(self):
        message = MessageAggregator("msg_1", "m").build()

        assert message["content"] == []
        assert message["stop_reason"] == "end_turn"
