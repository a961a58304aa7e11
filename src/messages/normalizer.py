"""Anthropic Messages request -> normalized conversation.

Key mappings:
- Anthropic system (top-level, string or text blocks) -> leading SystemTurn
- user text / text blocks -> UserTextTurn
- user tool_result blocks -> one ToolResultTurn, emitted before the text
- assistant text / tool_use blocks -> AssistantTurn, block order preserved
- tools -> ToolSpecification, tool_choice -> ToolChoicePolicy

Tool results only carry the id of the call they answer, so tool names are
resolved from a pre-scan of every assistant tool_use block in the request.

Reference:
- Anthropic Messages API: https://docs.anthropic.com/en/api/messages
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..core.exceptions import InvalidRequestError
from ..core.models import ModelTable
from .types import (
    DEFAULT_MAX_TOKENS,
    UNKNOWN_TOOL_NAME,
    AssistantPart,
    AssistantTurn,
    GenerationParams,
    GenerationRequest,
    NormalizedConversation,
    SystemTurn,
    TextPart,
    ToolCallPart,
    ToolChoicePolicy,
    ToolResult,
    ToolResultTurn,
    ToolSpecification,
    UserTextTurn,
    ensure_object,
)

logger = logging.getLogger("messages-bridge")

_ROLES = ("user", "assistant")


def _optional_str(block: Mapping[str, Any], key: str, code: str = "invalid_content") -> Optional[str]:
    """Return block[key] when it is a string or absent; reject any other type."""
    value = block.get(key)
    if value is None or isinstance(value, str):
        return value
    block_type = block.get("type") or "block"
    raise InvalidRequestError(f"{block_type}.{key} must be a string", code=code)


def convert_system(system: Any) -> Optional[str]:
    """Flatten the top-level system parameter into one string.

    A list of blocks is joined with newlines; None means no system turn.
    """
    if system is None:
        return None
    if isinstance(system, str):
        return system
    if isinstance(system, list):
        texts: list[str] = []
        for block in system:
            if not isinstance(block, Mapping):
                raise InvalidRequestError("system blocks must be objects", code="invalid_system")
            texts.append(_optional_str(block, "text", code="invalid_system") or "")
        return "\n".join(texts)
    raise InvalidRequestError("system must be a string or a list of blocks", code="invalid_system")


def collect_tool_names(messages: list[Mapping[str, Any]]) -> dict[str, str]:
    """Map every assistant tool_use id to its tool name, wherever it appears."""
    names: dict[str, str] = {}
    for msg in messages:
        if msg.get("role") != "assistant":
            continue
        content = msg.get("content")
        if not isinstance(content, list):
            continue
        for block in content:
            if not isinstance(block, Mapping) or block.get("type") != "tool_use":
                continue
            block_id = block.get("id")
            name = block.get("name")
            if isinstance(block_id, str) and isinstance(name, str) and block_id and name:
                names[block_id] = name
    return names


def _tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            (_optional_str(item, "text") or "")
            for item in content
            if isinstance(item, Mapping) and item.get("type") == "text"
        )
    return ""


def _convert_user_blocks(
    blocks: list[Any],
    tool_names: Mapping[str, str],
) -> NormalizedConversation:
    texts: list[str] = []
    results: list[ToolResult] = []

    for block in blocks:
        if not isinstance(block, Mapping):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = _optional_str(block, "text")
            if text:
                texts.append(text)
        elif block_type == "tool_result":
            call_id = _optional_str(block, "tool_use_id")
            if not call_id:
                logger.debug("Dropping tool_result block without tool_use_id")
                continue
            results.append(ToolResult(
                tool_call_id=call_id,
                tool_name=tool_names.get(call_id) or _optional_str(block, "name") or UNKNOWN_TOOL_NAME,
                output_text=_tool_result_text(block.get("content")),
                is_error=bool(block.get("is_error")),
            ))
        else:
            logger.debug(f"Dropping unsupported user block type: {block_type}")

    turns: NormalizedConversation = []
    if results:
        turns.append(ToolResultTurn(results))
    if texts:
        turns.append(UserTextTurn("\n".join(texts)))
    return turns


def _convert_assistant_blocks(blocks: list[Any]) -> AssistantTurn:
    parts: list[AssistantPart] = []
    for block in blocks:
        if not isinstance(block, Mapping):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = _optional_str(block, "text")
            if text:
                parts.append(TextPart(text))
        elif block_type == "tool_use":
            call_id = _optional_str(block, "id")
            name = _optional_str(block, "name")
            if call_id and name:
                parts.append(ToolCallPart(
                    id=call_id,
                    name=name,
                    input=ensure_object(block.get("input")),
                ))
        else:
            # thinking, redacted_thinking, etc.
            logger.debug(f"Dropping unsupported assistant block type: {block_type}")
    return AssistantTurn(parts)


def _validate_messages(messages: Any) -> list[Mapping[str, Any]]:
    if not isinstance(messages, list):
        raise InvalidRequestError("messages must be a list", code="invalid_messages")
    for index, msg in enumerate(messages):
        if not isinstance(msg, Mapping):
            raise InvalidRequestError(
                f"messages.{index} must be an object", code="invalid_messages"
            )
        if msg.get("role") not in _ROLES:
            raise InvalidRequestError(
                f"messages.{index}.role must be one of {', '.join(_ROLES)}",
                code="invalid_role",
            )
        if not isinstance(msg.get("content"), (str, list)):
            raise InvalidRequestError(
                f"messages.{index}.content must be a string or a list of blocks",
                code="invalid_content",
            )
    return messages


def convert_messages(
    messages: list[Mapping[str, Any]],
    system: Optional[str] = None,
) -> NormalizedConversation:
    """Convert Anthropic messages into a normalized conversation.

    Within one user message, tool results are always emitted before the
    user's text, whatever the original block order was. An empty system
    string adds no system turn.
    """
    messages = _validate_messages(messages)
    conversation: NormalizedConversation = []

    if system:
        conversation.append(SystemTurn(system))

    tool_names = collect_tool_names(messages)

    for msg in messages:
        role = msg["role"]
        content = msg["content"]

        if role == "user":
            if isinstance(content, str):
                conversation.append(UserTextTurn(content))
            else:
                conversation.extend(_convert_user_blocks(content, tool_names))
        else:
            if isinstance(content, str):
                conversation.append(AssistantTurn([TextPart(content)]))
            else:
                conversation.append(_convert_assistant_blocks(content))

    return conversation


def convert_tools(tools: Any) -> list[ToolSpecification]:
    """Copy tool definitions verbatim; the tools array is optional."""
    if tools is None:
        return []
    if not isinstance(tools, list):
        raise InvalidRequestError("tools must be a list", code="invalid_tools")

    specs: list[ToolSpecification] = []
    for index, tool in enumerate(tools):
        if not isinstance(tool, Mapping) or not isinstance(tool.get("name"), str):
            raise InvalidRequestError(
                f"tools.{index} must be an object with a name", code="invalid_tools"
            )
        specs.append(ToolSpecification(
            name=tool["name"],
            description=tool.get("description"),
            input_schema=ensure_object(tool.get("input_schema")),
        ))
    return specs


def convert_tool_choice(tool_choice: Any) -> Optional[ToolChoicePolicy]:
    """Map Anthropic tool_choice to a policy.

    {"type": "tool"} without a name yields no policy rather than an error.
    """
    if not isinstance(tool_choice, Mapping):
        return None

    choice_type = tool_choice.get("type")
    if choice_type == "auto":
        return ToolChoicePolicy.auto()
    if choice_type == "any":
        return ToolChoicePolicy.require_any()
    if choice_type == "tool":
        name = tool_choice.get("name")
        if name:
            return ToolChoicePolicy.require_named(name)
        return None
    return None


def build_generation_params(payload: Mapping[str, Any]) -> GenerationParams:
    max_tokens = payload.get("max_tokens")
    stop_sequences = payload.get("stop_sequences")
    return GenerationParams(
        max_tokens=max_tokens if max_tokens is not None else DEFAULT_MAX_TOKENS,
        temperature=payload.get("temperature"),
        top_p=payload.get("top_p"),
        stop_sequences=list(stop_sequences) if isinstance(stop_sequences, list) else None,
    )


def trim_trailing_empty_assistant_turn(
    conversation: NormalizedConversation,
) -> NormalizedConversation:
    """Drop a final assistant turn that has neither text nor tool calls.

    Continuation protocols can leave such a turn at the end of the history;
    the upstream must not receive it.
    """
    if conversation and isinstance(conversation[-1], AssistantTurn):
        if not conversation[-1].has_content():
            return conversation[:-1]
    return conversation


def normalize_request(
    payload: Mapping[str, Any],
    model_table: ModelTable,
) -> GenerationRequest:
    """Translate an Anthropic Messages request body into a GenerationRequest.

    Args:
        payload: Anthropic Messages API request body
        model_table: Table used to resolve the requested model id

    Returns:
        The normalized request (conversation is not trimmed)

    Raises:
        InvalidRequestError: If the body is structurally invalid
    """
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("Request body must be a JSON object", code="invalid_json_shape")

    model = payload.get("model")
    if model is not None and not isinstance(model, str):
        raise InvalidRequestError("model must be a string", code="invalid_model")

    if "messages" not in payload:
        raise InvalidRequestError("messages: Field required", code="missing_parameter")

    stream = payload.get("stream")
    if stream is not None and not isinstance(stream, bool):
        raise InvalidRequestError("stream must be a boolean", code="invalid_parameter")

    system = convert_system(payload.get("system"))
    conversation = convert_messages(payload["messages"], system)

    return GenerationRequest(
        model=model_table.resolve(model),
        conversation=conversation,
        tools=convert_tools(payload.get("tools")),
        tool_choice=convert_tool_choice(payload.get("tool_choice")),
        params=build_generation_params(payload),
        stream=stream is True,
    )
