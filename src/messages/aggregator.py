"""Fold a generation event sequence into one Anthropic Message response."""

import logging
from typing import Any, AsyncIterator, Optional

from ..core.exceptions import UpstreamError
from .types import (
    GenerationEvent,
    StepFinish,
    StreamError,
    TextDelta,
    ToolCallComplete,
    ensure_object,
    map_stop_reason,
)

logger = logging.getLogger("messages-bridge")


class MessageAggregator:
    """Accumulates generation events for a non-streaming response.

    All generated text is collapsed into a single text block placed first,
    ahead of any tool_use blocks, however text and tool calls were
    interleaved in the event sequence.
    """

    def __init__(self, message_id: str, model: str) -> None:
        self.message_id = message_id
        self.model = model
        self.text = ""
        self.tool_uses: list[dict[str, Any]] = []
        self.stop_reason: Optional[str] = None
        self.input_tokens = 0
        self.output_tokens = 0

    def feed(self, event: GenerationEvent) -> None:
        """Record one event.

        Raises:
            UpstreamError: If the event is a StreamError
        """
        if isinstance(event, TextDelta):
            self.text += event.text
        elif isinstance(event, ToolCallComplete):
            self.tool_uses.append({
                "type": "tool_use",
                "id": event.id,
                "name": event.name,
                "input": ensure_object(event.input),
            })
        elif isinstance(event, StepFinish):
            self.stop_reason = map_stop_reason(event.reason)
            self.input_tokens += event.input_tokens or 0
            self.output_tokens += event.output_tokens or 0
        elif isinstance(event, StreamError):
            raise UpstreamError(event.message)
        # Partial tool input and block boundaries only matter when streaming

    def build(self) -> dict[str, Any]:
        """Build the final Anthropic message object."""
        content: list[dict[str, Any]] = list(self.tool_uses)
        if self.text:
            content.insert(0, {"type": "text", "text": self.text})

        return {
            "id": self.message_id,
            "type": "message",
            "role": "assistant",
            "model": self.model,
            "content": content,
            "stop_reason": self.stop_reason or "end_turn",
            "stop_sequence": None,
            "usage": {
                "input_tokens": self.input_tokens,
                "output_tokens": self.output_tokens,
            },
        }


async def aggregate_events(
    events: AsyncIterator[GenerationEvent],
    message_id: str,
    model: str,
) -> dict[str, Any]:
    """Consume the whole event sequence and return the aggregated message.

    Raises:
        UpstreamError: If the sequence reports a StreamError; any exception
            raised by the sequence itself propagates unchanged.
    """
    aggregator = MessageAggregator(message_id, model)
    async for event in events:
        aggregator.feed(event)
    message = aggregator.build()
    logger.debug(
        f"Aggregated message {message_id}: {len(message['content'])} blocks, "
        f"stop_reason={message['stop_reason']}"
    )
    return message
