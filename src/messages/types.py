"""Internal, protocol-neutral types shared by the normalizer and encoders.

Conversation turns are what the normalizer produces from an Anthropic
request; generation events are what an event source yields back. Both are
created per request and discarded when the response completes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from ..core.models import ResolvedModel

DEFAULT_MAX_TOKENS = 8192
UNKNOWN_TOOL_NAME = "unknown"


# =============================================================================
# Conversation turns
# =============================================================================


@dataclass
class SystemTurn:
    text: str


@dataclass
class UserTextTurn:
    text: str


@dataclass
class ToolResult:
    tool_call_id: str
    tool_name: str
    output_text: str
    is_error: bool = False


@dataclass
class ToolResultTurn:
    results: list[ToolResult]


@dataclass
class TextPart:
    text: str


@dataclass
class ToolCallPart:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


AssistantPart = Union[TextPart, ToolCallPart]


@dataclass
class AssistantTurn:
    parts: list[AssistantPart] = field(default_factory=list)

    def has_content(self) -> bool:
        """True when the turn carries non-empty text or any tool call."""
        for part in self.parts:
            if isinstance(part, ToolCallPart):
                return True
            if isinstance(part, TextPart) and part.text != "":
                return True
        return False


Turn = Union[SystemTurn, UserTextTurn, ToolResultTurn, AssistantTurn]
NormalizedConversation = list[Turn]


# =============================================================================
# Tools and generation parameters
# =============================================================================


@dataclass
class ToolSpecification:
    name: str
    input_schema: dict[str, Any]
    description: Optional[str] = None


@dataclass(frozen=True)
class ToolChoicePolicy:
    """Caller's directive on whether/which tool must be invoked.

    kind is "auto", "any" (some tool is required) or "tool" (``name`` is
    required).
    """

    kind: str
    name: Optional[str] = None

    @classmethod
    def auto(cls) -> "ToolChoicePolicy":
        return cls("auto")

    @classmethod
    def require_any(cls) -> "ToolChoicePolicy":
        return cls("any")

    @classmethod
    def require_named(cls, name: str) -> "ToolChoicePolicy":
        return cls("tool", name)


@dataclass
class GenerationParams:
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stop_sequences: Optional[list[str]] = None


@dataclass
class GenerationRequest:
    """Everything an event source needs to run one generation."""

    model: ResolvedModel
    conversation: NormalizedConversation
    tools: list[ToolSpecification] = field(default_factory=list)
    tool_choice: Optional[ToolChoicePolicy] = None
    params: GenerationParams = field(default_factory=GenerationParams)
    stream: bool = False


# =============================================================================
# Generation events
# =============================================================================


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallStart:
    id: str
    name: str


@dataclass
class ToolCallDelta:
    id: str
    partial_json: str


@dataclass
class ToolCallEnd:
    id: str


@dataclass
class ToolCallComplete:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepFinish:
    """End of one generation step.

    reason is "stop", "length", "tool-calls" or any other upstream value.
    """

    reason: Optional[str]
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class StreamFinish:
    pass


@dataclass
class StreamError:
    message: str


GenerationEvent = Union[
    TextDelta,
    ToolCallStart,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallComplete,
    StepFinish,
    StreamFinish,
    StreamError,
]


def map_stop_reason(reason: Optional[str]) -> str:
    """Map a step finish reason to an Anthropic stop_reason."""
    if reason == "tool-calls":
        return "tool_use"
    if reason == "length":
        return "max_tokens"
    return "end_turn"


def ensure_object(value: Any) -> dict[str, Any]:
    """Return value if it is a plain JSON object, otherwise an empty dict."""
    if isinstance(value, dict):
        return value
    return {}


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"
