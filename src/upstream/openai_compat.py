"""Generation event source backed by an OpenAI-compatible chat completions API.

The normalized request is sent as a streaming ``/chat/completions`` call
and the returned SSE chunks are turned into generation events:

    data: {"choices":[{"delta":{"content":"Hello"},"index":0}]}
        -> TextDelta("Hello")
    data: {"choices":[{"delta":{"tool_calls":[{"index":0,"id":"call_1","function":{"name":"f","arguments":"{"}}]}}]}
        -> ToolCallStart("call_1", "f"), ToolCallDelta("call_1", "{")
    data: {"choices":[{"delta":{},"finish_reason":"tool_calls","index":0}]}
    data: {"choices":[],"usage":{"prompt_tokens":10,"completion_tokens":5}}
    data: [DONE]
        -> ToolCallEnd, ToolCallComplete, StepFinish("tool-calls", 10, 5), StreamFinish
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from ..core.exceptions import ConfigurationError
from ..core.sse import SSEDecoder, SSEEvent, extract_stream_error
from ..messages.types import (
    AssistantTurn,
    GenerationEvent,
    GenerationRequest,
    NormalizedConversation,
    StepFinish,
    StreamError,
    StreamFinish,
    SystemTurn,
    TextDelta,
    TextPart,
    ToolCallComplete,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallPart,
    ToolCallStart,
    ToolChoicePolicy,
    ToolResultTurn,
    ToolSpecification,
    UserTextTurn,
    ensure_object,
)
from .base import DisconnectChecker, GenerationEventSource
from .transport import get_upstream_transport

logger = logging.getLogger("messages-bridge")

DEFAULT_TIMEOUT = 60.0

_FINISH_REASONS = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


# =============================================================================
# Request building
# =============================================================================


def conversation_to_chat_messages(conversation: NormalizedConversation) -> list[dict[str, Any]]:
    """Render a normalized conversation as OpenAI chat messages."""
    messages: list[dict[str, Any]] = []
    for turn in conversation:
        if isinstance(turn, SystemTurn):
            messages.append({"role": "system", "content": turn.text})
        elif isinstance(turn, UserTextTurn):
            messages.append({"role": "user", "content": turn.text})
        elif isinstance(turn, ToolResultTurn):
            for result in turn.results:
                content = result.output_text
                if result.is_error:
                    content = f"[Error] {content}"
                messages.append({
                    "role": "tool",
                    "tool_call_id": result.tool_call_id,
                    "name": result.tool_name,
                    "content": content,
                })
        elif isinstance(turn, AssistantTurn):
            texts = [part.text for part in turn.parts if isinstance(part, TextPart)]
            tool_calls = [
                {
                    "id": part.id,
                    "type": "function",
                    "function": {
                        "name": part.name,
                        "arguments": json.dumps(part.input, ensure_ascii=False),
                    },
                }
                for part in turn.parts
                if isinstance(part, ToolCallPart)
            ]
            message: dict[str, Any] = {"role": "assistant", "content": "".join(texts) or None}
            if tool_calls:
                message["tool_calls"] = tool_calls
            messages.append(message)
    return messages


def tools_to_chat_tools(tools: list[ToolSpecification]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description or "",
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def tool_choice_to_chat(policy: Optional[ToolChoicePolicy]) -> Any:
    if policy is None:
        return None
    if policy.kind == "any":
        return "required"
    if policy.kind == "tool" and policy.name:
        return {"type": "function", "function": {"name": policy.name}}
    return "auto"


def build_chat_payload(request: GenerationRequest) -> dict[str, Any]:
    """Build the chat completions request body for a generation request."""
    payload: dict[str, Any] = {
        "model": request.model.backend_model,
        "messages": conversation_to_chat_messages(request.conversation),
        "max_tokens": request.params.max_tokens,
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if request.params.temperature is not None:
        payload["temperature"] = request.params.temperature
    if request.params.top_p is not None:
        payload["top_p"] = request.params.top_p
    if request.params.stop_sequences:
        payload["stop"] = request.params.stop_sequences
    if request.tools:
        payload["tools"] = tools_to_chat_tools(request.tools)
        tool_choice = tool_choice_to_chat(request.tool_choice)
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice
    return payload


# =============================================================================
# Response parsing
# =============================================================================


class ChatStreamParser:
    """Turns decoded chat completion SSE events into generation events.

    Only the first choice is followed. Tool calls are streamed one at a
    time: a fragment for a new tool-call index ends the previous call.
    """

    def __init__(self) -> None:
        self.tool_calls: dict[int, dict[str, Any]] = {}
        self.current_tool_index: Optional[int] = None
        self.finish_reason: Optional[str] = None
        self.input_tokens = 0
        self.output_tokens = 0
        self.saw_done = False
        self.errored = False

    def feed(self, sse_event: SSEEvent) -> list[GenerationEvent]:
        data_str = (sse_event.data or "").strip()
        if not data_str:
            return []
        if data_str == "[DONE]":
            self.saw_done = True
            return []

        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            logger.debug(f"ChatStreamParser: Failed to parse: {data_str[:100]}")
            return []

        error_message = extract_stream_error(data)
        if error_message:
            self.errored = True
            return [StreamError(error_message)]

        if not isinstance(data, dict):
            return []

        events: list[GenerationEvent] = []
        for choice in data.get("choices") or []:
            if choice.get("index", 0) != 0:
                continue
            delta = choice.get("delta") or {}

            content = delta.get("content")
            if content:
                events.append(TextDelta(content))

            for tc in delta.get("tool_calls") or []:
                events.extend(self._process_tool_call_delta(tc))

            finish_reason = choice.get("finish_reason")
            if finish_reason:
                self.finish_reason = finish_reason

        usage = data.get("usage")
        if isinstance(usage, dict):
            self.input_tokens = usage.get("prompt_tokens") or 0
            self.output_tokens = usage.get("completion_tokens") or 0

        return events

    def _process_tool_call_delta(self, tc: Mapping[str, Any]) -> list[GenerationEvent]:
        tc_index = tc.get("index", 0)
        function = tc.get("function") or {}
        arguments = function.get("arguments") or ""

        if tc_index not in self.tool_calls:
            events = self._close_current_tool()
            tool_id = tc.get("id") or f"toolu_{uuid.uuid4().hex[:12]}"
            tool_name = function.get("name") or ""
            self.tool_calls[tc_index] = {
                "id": tool_id,
                "name": tool_name,
                "arguments": arguments,
                "closed": False,
            }
            self.current_tool_index = tc_index
            events.append(ToolCallStart(tool_id, tool_name))
            if arguments:
                events.append(ToolCallDelta(tool_id, arguments))
            return events

        tc_data = self.tool_calls[tc_index]
        if function.get("name"):
            tc_data["name"] = function["name"]
        if not arguments:
            return []
        if tc_data["closed"]:
            logger.debug(f"Dropping late arguments for closed tool call {tc_data['id']}")
            return []
        tc_data["arguments"] += arguments
        return [ToolCallDelta(tc_data["id"], arguments)]

    def _close_current_tool(self) -> list[GenerationEvent]:
        if self.current_tool_index is None:
            return []
        tc_data = self.tool_calls[self.current_tool_index]
        self.current_tool_index = None
        tc_data["closed"] = True
        try:
            parsed = json.loads(tc_data["arguments"]) if tc_data["arguments"] else {}
        except json.JSONDecodeError:
            logger.warning(f"Tool call {tc_data['id']} arguments are not valid JSON")
            parsed = {}
        return [
            ToolCallEnd(tc_data["id"]),
            ToolCallComplete(tc_data["id"], tc_data["name"], ensure_object(parsed)),
        ]

    def finish(self) -> list[GenerationEvent]:
        """Terminal events once the upstream body has been fully read."""
        if self.errored:
            return []
        events = self._close_current_tool()
        if self.finish_reason is None and not self.saw_done:
            events.append(StreamError("upstream stream ended before completion"))
            return events
        reason = _FINISH_REASONS.get(self.finish_reason or "stop", self.finish_reason)
        events.append(StepFinish(reason, self.input_tokens, self.output_tokens))
        events.append(StreamFinish())
        return events


# =============================================================================
# Event source
# =============================================================================


def format_httpx_error(exc: Exception, url: str, timeout: float) -> str:
    """Produce a detailed, user-facing description of an httpx error."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)

    try:
        request = exc.request if isinstance(exc, httpx.RequestError) else None
    except RuntimeError:
        # httpx raises when the request was never attached
        request = None
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    else:
        parts.append(f"url={url}")

    if isinstance(exc, httpx.TimeoutException):
        parts.append(f"timeout={timeout}s")

    return "; ".join(parts)


def describe_error_response(status_code: int, body: bytes) -> str:
    """Extract the upstream's error message from an error response body."""
    detail = body.decode("utf-8", errors="replace").strip()
    try:
        parsed = json.loads(detail)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        error_obj = parsed.get("error")
        if isinstance(error_obj, dict) and error_obj.get("message"):
            detail = error_obj["message"]
        elif isinstance(error_obj, str):
            detail = error_obj
        elif parsed.get("message"):
            detail = str(parsed["message"])
    if len(detail) > 500:
        detail = detail[:500] + "..."
    return f"upstream returned status {status_code}: {detail or 'no body'}"


class OpenAICompatibleEventSource(GenerationEventSource):
    """Streams generations from an OpenAI-compatible chat completions endpoint."""

    name = "openai-compatible"

    def __init__(
        self,
        api_base: str,
        api_key: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        extra_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        if not api_base:
            raise ConfigurationError("upstream.api_base is required")
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.extra_headers = dict(extra_headers or {})

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "OpenAICompatibleEventSource":
        upstream = config.get("upstream") or {}
        if not isinstance(upstream, Mapping):
            raise ConfigurationError("upstream section must be a mapping")
        try:
            timeout = float(upstream.get("timeout", DEFAULT_TIMEOUT))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("upstream.timeout must be a number") from exc
        return cls(
            str(upstream.get("api_base") or ""),
            str(upstream.get("api_key") or ""),
            timeout=timeout,
            extra_headers=upstream.get("extra_headers") or {},
        )

    @property
    def url(self) -> str:
        return f"{self.api_base}/chat/completions"

    def describe(self) -> str:
        return f"{self.name} ({self.api_base})"

    def build_headers(self) -> dict[str, str]:
        headers = {
            "content-type": "application/json",
            "accept": "text/event-stream",
        }
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        headers.update(self.extra_headers)
        return headers

    async def stream(
        self,
        request: GenerationRequest,
        disconnect_checker: Optional[DisconnectChecker] = None,
    ) -> AsyncIterator[GenerationEvent]:
        url = self.url
        payload = build_chat_payload(request)
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Upstream request: url={url}, model={payload['model']}, "
                f"messages={len(payload['messages'])}, tools={len(payload.get('tools', []))}"
            )

        # No read timeout: generations may pause for long stretches
        stream_timeout = httpx.Timeout(
            connect=self.timeout, read=None, write=self.timeout, pool=self.timeout
        )
        client = httpx.AsyncClient(
            timeout=stream_timeout,
            transport=get_upstream_transport(url),
            follow_redirects=True,
        )
        try:
            async with client.stream(
                "POST", url, headers=self.build_headers(), content=body
            ) as resp:
                if resp.status_code >= 400:
                    data = await resp.aread()
                    message = describe_error_response(resp.status_code, data)
                    logger.warning(f"Upstream error from {url}: {message}")
                    yield StreamError(message)
                    return

                decoder = SSEDecoder()
                parser = ChatStreamParser()
                async for chunk in resp.aiter_bytes():
                    if disconnect_checker is not None and await disconnect_checker():
                        logger.info(f"Client disconnected, abandoning upstream stream {url}")
                        return
                    for sse_event in decoder.feed(chunk):
                        for event in parser.feed(sse_event):
                            yield event
                        if parser.errored:
                            return

                for sse_event in decoder.flush():
                    for event in parser.feed(sse_event):
                        yield event
                    if parser.errored:
                        return

                for event in parser.finish():
                    yield event
        except httpx.HTTPError as exc:
            message = format_httpx_error(exc, url, self.timeout)
            logger.error(f"Upstream request to {url} failed: {message}")
            yield StreamError(message)
        finally:
            await client.aclose()
