"""Generation event sources (upstream collaborators)."""

from .base import DisconnectChecker, GenerationEventSource
from .openai_compat import OpenAICompatibleEventSource, build_chat_payload
from .transport import clear_upstream_transports, get_upstream_transport, register_upstream_transport

__all__ = [
    "DisconnectChecker",
    "GenerationEventSource",
    "OpenAICompatibleEventSource",
    "build_chat_payload",
    "clear_upstream_transports",
    "get_upstream_transport",
    "register_upstream_transport",
]
