"""Stream encoder converting generation events to Anthropic Messages SSE.

Generation events:
    TextDelta, ToolCallStart, ToolCallDelta, ToolCallEnd, ToolCallComplete,
    StepFinish, StreamFinish, StreamError

Anthropic Messages events:
    event: message_start
    data: {"type":"message_start","message":{...}}

    event: content_block_start
    data: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}

    event: content_block_delta
    data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hello"}}

    event: content_block_stop
    data: {"type":"content_block_stop","index":0}

    event: message_delta
    data: {"type":"message_delta","delta":{"stop_reason":"end_turn","stop_sequence":null},"usage":{"output_tokens":10}}

    event: message_stop
    data: {"type":"message_stop"}

At most one content block is open at a time and block indices are never
reused. On failure a single ``error`` event ends the stream without
closing blocks or sending ``message_stop``; Anthropic clients treat the
error event itself as terminal.
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from ..core.sse import format_sse_event
from .types import (
    GenerationEvent,
    StepFinish,
    StreamError,
    StreamFinish,
    TextDelta,
    ToolCallComplete,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
    map_stop_reason,
)

logger = logging.getLogger("messages-bridge")

BLOCK_TEXT = "text"
BLOCK_TOOL = "tool"


@dataclass
class SSEEncoderState:
    """Mutable per-response encoder state."""

    next_block_index: int = 0
    open_block: Optional[str] = None
    open_tool_id: Optional[str] = None
    started: bool = False
    finished: bool = False


class MessagesStreamEncoder:
    """Converts a generation event sequence into Anthropic Messages SSE events.

    One instance serves exactly one response; ``encode`` consumes the event
    sequence once, in order, and yields one group of SSE events per
    generation event.
    """

    def __init__(self, message_id: str, model: str) -> None:
        """Initialize the stream encoder.

        Args:
            message_id: The message ID to use (e.g., "msg_xxx")
            model: Model name for the response
        """
        self.message_id = message_id
        self.model = model
        self.state = SSEEncoderState()

    async def encode(
        self,
        events: AsyncIterator[GenerationEvent],
    ) -> AsyncIterator[bytes]:
        """Transform generation events into Anthropic Messages SSE events.

        An exception raised by the event source is reported like a
        StreamError event.

        Args:
            events: The generation event sequence

        Yields:
            Anthropic Messages API SSE events as bytes
        """
        try:
            async for event in events:
                for chunk in self.process_event(event):
                    yield chunk
                if self.state.finished:
                    break
        except Exception as exc:
            logger.error(f"Stream error: {exc}")
            message = str(exc) or "Unknown error during streaming"
            for chunk in self.process_event(StreamError(message)):
                yield chunk
            return

        for chunk in self.finish():
            yield chunk

    def process_event(self, event: GenerationEvent) -> list[bytes]:
        """Translate one generation event into zero or more SSE events."""
        if self.state.finished:
            logger.debug(f"Ignoring {type(event).__name__} after stream end")
            return []

        out: list[bytes] = []
        if not self.state.started:
            out.append(self._emit_message_start())
            self.state.started = True

        if isinstance(event, TextDelta):
            if self.state.open_block == BLOCK_TOOL:
                out.extend(self._close_open_block())
            if self.state.open_block is None:
                out.append(self._emit_content_block_start(
                    self.state.next_block_index,
                    {"type": "text", "text": ""},
                ))
                self.state.open_block = BLOCK_TEXT
            out.append(self._emit_content_block_delta(
                self.state.next_block_index,
                {"type": "text_delta", "text": event.text},
            ))

        elif isinstance(event, ToolCallStart):
            out.extend(self._close_open_block())
            out.append(self._emit_content_block_start(
                self.state.next_block_index,
                {"type": "tool_use", "id": event.id, "name": event.name, "input": {}},
            ))
            self.state.open_block = BLOCK_TOOL
            self.state.open_tool_id = event.id

        elif isinstance(event, ToolCallDelta):
            if self._is_open_tool(event.id):
                out.append(self._emit_content_block_delta(
                    self.state.next_block_index,
                    {"type": "input_json_delta", "partial_json": event.partial_json},
                ))
            else:
                logger.debug(f"Dropping input delta for tool call {event.id} without open block")

        elif isinstance(event, ToolCallEnd):
            if self._is_open_tool(event.id):
                out.extend(self._close_open_block())
            else:
                logger.debug(f"Ignoring end of tool call {event.id} without open block")

        elif isinstance(event, ToolCallComplete):
            # Already streamed through start/delta/end
            pass

        elif isinstance(event, StepFinish):
            out.extend(self._close_open_block())
            out.append(self._emit_message_delta(
                map_stop_reason(event.reason), event.output_tokens
            ))
            out.append(self._emit_message_stop())
            self.state.finished = True

        elif isinstance(event, StreamFinish):
            out.extend(self._close_open_block())

        elif isinstance(event, StreamError):
            logger.error(f"Stream error: {event.message}")
            out.append(self._emit_error(event.message))
            self.state.finished = True

        else:
            logger.warning(f"Unknown generation event: {event!r}")

        return out

    def finish(self) -> list[bytes]:
        """Emit terminal events when the sequence ended without a step finish."""
        if self.state.finished:
            return []
        out: list[bytes] = []
        if not self.state.started:
            out.append(self._emit_message_start())
            self.state.started = True
        out.extend(self._close_open_block())
        out.append(self._emit_message_delta(map_stop_reason(None), 0))
        out.append(self._emit_message_stop())
        self.state.finished = True
        return out

    def _is_open_tool(self, tool_id: str) -> bool:
        return self.state.open_block == BLOCK_TOOL and self.state.open_tool_id == tool_id

    def _close_open_block(self) -> list[bytes]:
        if self.state.open_block is None:
            return []
        event = self._emit_content_block_stop(self.state.next_block_index)
        self.state.next_block_index += 1
        self.state.open_block = None
        self.state.open_tool_id = None
        return [event]

    def _emit_message_start(self) -> bytes:
        message = {
            "id": self.message_id,
            "type": "message",
            "role": "assistant",
            "model": self.model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": 0, "output_tokens": 0},
        }
        return format_sse_event("message_start", {"type": "message_start", "message": message})

    def _emit_content_block_start(self, index: int, content_block: dict[str, Any]) -> bytes:
        event_data = {
            "type": "content_block_start",
            "index": index,
            "content_block": content_block,
        }
        return format_sse_event("content_block_start", event_data)

    def _emit_content_block_delta(self, index: int, delta: dict[str, Any]) -> bytes:
        event_data = {
            "type": "content_block_delta",
            "index": index,
            "delta": delta,
        }
        return format_sse_event("content_block_delta", event_data)

    def _emit_content_block_stop(self, index: int) -> bytes:
        return format_sse_event("content_block_stop", {"type": "content_block_stop", "index": index})

    def _emit_message_delta(self, stop_reason: str, output_tokens: int) -> bytes:
        event_data = {
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
            "usage": {"output_tokens": output_tokens},
        }
        return format_sse_event("message_delta", event_data)

    def _emit_message_stop(self) -> bytes:
        return format_sse_event("message_stop", {"type": "message_stop"})

    def _emit_error(self, message: str) -> bytes:
        event_data = {
            "type": "error",
            "error": {"type": "api_error", "message": message},
        }
        return format_sse_event("error", event_data)


async def encode_events_to_sse(
    message_id: str,
    model: str,
    events: AsyncIterator[GenerationEvent],
) -> AsyncIterator[bytes]:
    """Convenience function to encode a generation event sequence as SSE.

    Args:
        message_id: Message ID for the response
        model: Model name
        events: Input generation event sequence

    Yields:
        Anthropic Messages API SSE events
    """
    encoder = MessagesStreamEncoder(message_id, model)
    async for chunk in encoder.encode(events):
        yield chunk
