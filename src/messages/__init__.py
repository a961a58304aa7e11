"""Anthropic Messages API translation helpers.

Normalizes Anthropic Messages requests into a protocol-neutral conversation
and re-encodes generation events as Anthropic SSE streams or aggregated
message responses.
"""

from .aggregator import MessageAggregator, aggregate_events
from .normalizer import normalize_request, trim_trailing_empty_assistant_turn
from .stream_adapter import MessagesStreamEncoder, encode_events_to_sse
from .types import map_stop_reason, new_message_id

__all__ = [
    "MessageAggregator",
    "MessagesStreamEncoder",
    "aggregate_events",
    "encode_events_to_sse",
    "map_stop_reason",
    "new_message_id",
    "normalize_request",
    "trim_trailing_empty_assistant_turn",
]
