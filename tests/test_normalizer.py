"""Tests for the Anthropic Messages request normalizer."""

import pytest

from src.core.exceptions import InvalidRequestError
from src.core.models import DEFAULT_MODEL_TABLE
from src.messages.normalizer import (
    collect_tool_names,
    convert_messages,
    convert_system,
    convert_tool_choice,
    convert_tools,
    normalize_request,
    trim_trailing_empty_assistant_turn,
)
from src.messages.types import (
    DEFAULT_MAX_TOKENS,
    AssistantTurn,
    SystemTurn,
    TextPart,
    ToolCallPart,
    ToolChoicePolicy,
    ToolResult,
    ToolResultTurn,
    UserTextTurn,
)


class TestConvertSystem:
    """Tests for the top-level system parameter."""

    def test_string_system(self):
        assert convert_system("Be brief.") == "Be brief."

    def test_block_list_joined_with_newlines(self):
        system = [
            {"type": "text", "text": "First"},
            {"type": "text", "text": "Second"},
        ]
        assert convert_system(system) == "First\nSecond"

    def test_missing_system(self):
        assert convert_system(None) is None

    def test_invalid_system_type(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            convert_system(42)
        assert exc_info.value.code == "invalid_system"

    def test_non_string_system_block_text(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            convert_system([{"type": "text", "text": 5}])
        assert exc_info.value.code == "invalid_system"


class TestConvertMessages:
    """Tests for message conversion."""

    def test_system_becomes_leading_turn(self):
        """Test that the system prompt is the first turn."""
        conversation = convert_messages([{"role": "user", "content": "Hi"}], "sys")
        assert conversation == [SystemTurn("sys"), UserTextTurn("Hi")]

    def test_no_system_turn_when_absent(self):
        conversation = convert_messages([{"role": "user", "content": "Hi"}])
        assert conversation == [UserTextTurn("Hi")]

    def test_no_system_turn_for_empty_system(self):
        conversation = convert_messages([{"role": "user", "content": "Hi"}], "")
        assert conversation == [UserTextTurn("Hi")]

    def test_user_text_blocks_joined_with_newlines(self):
        """Test that text blocks in one user message become a single turn."""
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": "line one"},
                {"type": "text", "text": "line two"},
            ],
        }]
        assert convert_messages(messages) == [UserTextTurn("line one\nline two")]

    def test_tool_results_precede_text(self):
        """Test that tool results come before text whatever the block order."""
        messages = [
            {
                "role": "assistant",
                "content": [
                    {"type": "tool_use", "id": "t1", "name": "read_file", "input": {"path": "a.py"}},
                ],
            },
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "here you go"},
                    {"type": "tool_result", "tool_use_id": "t1", "content": "print(1)"},
                ],
            },
        ]

        conversation = convert_messages(messages)

        assert conversation[1] == ToolResultTurn([
            ToolResult(tool_call_id="t1", tool_name="read_file", output_text="print(1)")
        ])
        assert conversation[2] == UserTextTurn("here you go")

    def test_tool_result_name_resolved_from_later_message(self):
        """Test that tool names come from a pre-scan of every assistant message."""
        messages = [
            {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "late", "content": "x"}],
            },
            {
                "role": "assistant",
                "content": [{"type": "tool_use", "id": "late", "name": "search", "input": {}}],
            },
        ]

        conversation = convert_messages(messages)

        assert conversation[0].results[0].tool_name == "search"

    def test_unknown_tool_result_name(self):
        """Test the fallback name for results without a matching tool_use."""
        messages = [{
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "orphan", "content": "x"}],
        }]

        conversation = convert_messages(messages)

        assert conversation[0].results[0].tool_name == "unknown"

    def test_tool_result_content_variants(self):
        """Test string, block list, and error tool results."""
        messages = [{
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "a", "content": "plain"},
                {
                    "type": "tool_result",
                    "tool_use_id": "b",
                    "content": [
                        {"type": "text", "text": "part1"},
                        {"type": "image", "source": {}},
                        {"type": "text", "text": "part2"},
                    ],
                },
                {"type": "tool_result", "tool_use_id": "c", "content": "boom", "is_error": True},
            ],
        }]

        results = convert_messages(messages)[0].results

        assert [r.output_text for r in results] == ["plain", "part1part2", "boom"]
        assert [r.is_error for r in results] == [False, False, True]

    def test_user_message_with_only_tool_results(self):
        messages = [{
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "a", "content": "ok"}],
        }]

        conversation = convert_messages(messages)

        assert len(conversation) == 1
        assert isinstance(conversation[0], ToolResultTurn)

    def test_assistant_blocks_preserve_order(self):
        """Test that assistant text and tool calls keep their order."""
        messages = [{
            "role": "assistant",
            "content": [
                {"type": "thinking", "thinking": "hmm"},
                {"type": "text", "text": "Let me check."},
                {"type": "tool_use", "id": "t1", "name": "ls", "input": {"dir": "."}},
                {"type": "text", "text": ""},
                {"type": "tool_use", "id": "t2", "name": "cat", "input": "not-an-object"},
            ],
        }]

        turn = convert_messages(messages)[0]

        assert turn == AssistantTurn([
            TextPart("Let me check."),
            ToolCallPart("t1", "ls", {"dir": "."}),
            ToolCallPart("t2", "cat", {}),
        ])

    def test_assistant_string_content(self):
        conversation = convert_messages([{"role": "assistant", "content": "Sure."}])
        assert conversation == [AssistantTurn([TextPart("Sure.")])]

    @pytest.mark.parametrize(
        "messages, code",
        [
            ("not-a-list", "invalid_messages"),
            (["not-an-object"], "invalid_messages"),
            ([{"role": "system", "content": "x"}], "invalid_role"),
            ([{"role": "user"}], "invalid_content"),
            ([{"role": "user", "content": 5}], "invalid_content"),
            ([{"role": "user", "content": [{"type": "text", "text": 123}]}], "invalid_content"),
            (
                [{"role": "user", "content": [{"type": "tool_result", "tool_use_id": ["x"]}]}],
                "invalid_content",
            ),
            (
                [{"role": "user", "content": [
                    {"type": "tool_result", "tool_use_id": "t1", "content": [{"type": "text", "text": 7}]},
                ]}],
                "invalid_content",
            ),
            (
                [{"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t1", "name": 9}]}],
                "invalid_content",
            ),
            ([{"role": "assistant", "content": [{"type": "text", "text": None}, {"type": "text", "text": {}}]}], "invalid_content"),
            ([{"role": "assistant", "content": [{"type": "tool_use", "id": 1, "name": "f"}]}], "invalid_content"),
            ([{"role": "assistant", "content": [{"type": "tool_use", "id": "t1", "name": ["f"]}]}], "invalid_content"),
        ],
    )
    def test_malformed_messages_rejected(self, messages, code):
        with pytest.raises(InvalidRequestError) as exc_info:
            convert_messages(messages)
        assert exc_info.value.code == code

    def test_tool_name_scan_ignores_non_string_ids(self):
        messages = [
            {"role": "assistant", "content": [
                {"type": "tool_use", "id": ["t1"], "name": "lookup"},
                {"type": "tool_use", "id": "t2", "name": "search"},
            ]},
        ]
        assert collect_tool_names(messages) == {"t2": "search"}


class TestConvertTools:
    """Tests for tools and tool_choice."""

    def test_tools_copied_verbatim(self):
        schema = {"type": "object", "properties": {"path": {"type": "string"}}}
        specs = convert_tools([
            {"name": "read", "description": "Read a file", "input_schema": schema},
            {"name": "noop", "input_schema": {"type": "object"}},
        ])

        assert specs[0].name == "read"
        assert specs[0].description == "Read a file"
        assert specs[0].input_schema == schema
        assert specs[1].description is None

    def test_missing_tools(self):
        assert convert_tools(None) == []

    def test_invalid_tools(self):
        with pytest.raises(InvalidRequestError):
            convert_tools([{"description": "nameless"}])

    @pytest.mark.parametrize(
        "tool_choice, expected",
        [
            ({"type": "auto"}, ToolChoicePolicy.auto()),
            ({"type": "any"}, ToolChoicePolicy.require_any()),
            ({"type": "tool", "name": "read"}, ToolChoicePolicy.require_named("read")),
            ({"type": "tool"}, None),
            ({"type": "none"}, None),
            (None, None),
        ],
    )
    def test_tool_choice(self, tool_choice, expected):
        assert convert_tool_choice(tool_choice) == expected


class TestTrimTrailingEmptyAssistantTurn:
    """Tests for trimming a trailing empty assistant turn."""

    def test_trims_empty_assistant_turn(self):
        conversation = [UserTextTurn("Hi"), AssistantTurn([])]
        assert trim_trailing_empty_assistant_turn(conversation) == [UserTextTurn("Hi")]

    def test_trims_assistant_turn_with_only_empty_text(self):
        conversation = [UserTextTurn("Hi"), AssistantTurn([TextPart("")])]
        assert trim_trailing_empty_assistant_turn(conversation) == [UserTextTurn("Hi")]

    def test_keeps_non_empty_assistant_turn(self):
        conversation = [UserTextTurn("Hi"), AssistantTurn([TextPart("Hello")])]
        assert trim_trailing_empty_assistant_turn(conversation) == conversation

    def test_keeps_tool_call_only_turn(self):
        conversation = [UserTextTurn("Hi"), AssistantTurn([ToolCallPart("t", "ls")])]
        assert trim_trailing_empty_assistant_turn(conversation) == conversation

    def test_keeps_empty_turn_that_is_not_last(self):
        conversation = [AssistantTurn([]), UserTextTurn("Hi")]
        assert trim_trailing_empty_assistant_turn(conversation) == conversation

    def test_empty_conversation(self):
        assert trim_trailing_empty_assistant_turn([]) == []


class TestNormalizeRequest:
    """Tests for the full request normalization."""

    def test_full_request(self):
        payload = {
            "model": "claude-opus-4-6",
            "system": "sys",
            "messages": [{"role": "user", "content": "Hi"}],
            "max_tokens": 1024,
            "temperature": 0.2,
            "top_p": 0.9,
            "stop_sequences": ["END"],
            "tools": [{"name": "ls", "input_schema": {"type": "object"}}],
            "tool_choice": {"type": "any"},
            "stream": True,
        }

        request = normalize_request(payload, DEFAULT_MODEL_TABLE)

        assert request.model.backend_model == "duo-chat-opus-4-6"
        assert request.model.provider_model == "claude-opus-4-6"
        assert request.conversation == [SystemTurn("sys"), UserTextTurn("Hi")]
        assert request.params.max_tokens == 1024
        assert request.params.temperature == 0.2
        assert request.params.top_p == 0.9
        assert request.params.stop_sequences == ["END"]
        assert [t.name for t in request.tools] == ["ls"]
        assert request.tool_choice == ToolChoicePolicy.require_any()
        assert request.stream is True

    def test_defaults(self):
        request = normalize_request(
            {"messages": [{"role": "user", "content": "Hi"}]}, DEFAULT_MODEL_TABLE
        )

        assert request.model.provider_model == DEFAULT_MODEL_TABLE.default_model
        assert request.params.max_tokens == DEFAULT_MAX_TOKENS
        assert request.params.temperature is None
        assert request.tools == []
        assert request.tool_choice is None
        assert request.stream is False

    def test_unknown_model_falls_back_to_default(self):
        request = normalize_request(
            {"model": "claude-future-9", "messages": []}, DEFAULT_MODEL_TABLE
        )

        assert request.model.provider_model == "claude-sonnet-4-5-20250929"
        assert request.model.backend_model == "duo-chat-sonnet-4-5"

    def test_does_not_trim(self):
        """Test that normalization itself keeps a trailing empty assistant turn."""
        payload = {
            "messages": [
                {"role": "user", "content": "Hi"},
                {"role": "assistant", "content": []},
            ]
        }

        request = normalize_request(payload, DEFAULT_MODEL_TABLE)

        assert request.conversation[-1] == AssistantTurn([])

    def test_missing_messages(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            normalize_request({"model": "claude-opus-4-6"}, DEFAULT_MODEL_TABLE)
        assert exc_info.value.code == "missing_parameter"

    def test_non_string_model(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            normalize_request({"model": 3, "messages": []}, DEFAULT_MODEL_TABLE)
        assert exc_info.value.code == "invalid_model"

    def test_non_object_body(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            normalize_request(["messages"], DEFAULT_MODEL_TABLE)
        assert exc_info.value.code == "invalid_json_shape"

    def test_empty_system_adds_no_turn(self):
        request = normalize_request(
            {"system": "", "messages": [{"role": "user", "content": "Hi"}]}, DEFAULT_MODEL_TABLE
        )
        assert request.conversation == [UserTextTurn("Hi")]

    def test_stream_false(self):
        request = normalize_request(
            {"stream": False, "messages": [{"role": "user", "content": "Hi"}]}, DEFAULT_MODEL_TABLE
        )
        assert request.stream is False

    @pytest.mark.parametrize("stream", ["false", "true", 1, 0, {}])
    def test_non_boolean_stream_rejected(self, stream):
        with pytest.raises(InvalidRequestError) as exc_info:
            normalize_request(
                {"stream": stream, "messages": [{"role": "user", "content": "Hi"}]},
                DEFAULT_MODEL_TABLE,
            )
        assert exc_info.value.code == "invalid_parameter"
