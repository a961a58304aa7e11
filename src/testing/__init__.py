"""Testing utilities for in-process bridge simulations."""

from .assertions import assert_anthropic_message_valid, assert_anthropic_sse_valid, parse_sse_events
from .fake_source import ScriptedEventSource, ScriptedRun, SimulatedSourceError
from .fake_upstream import FakeUpstream, UpstreamResponse, build_chat_stream_chunks
from .proxy_harness import ProxyHarness

__all__ = [
    # Core simulation classes
    "FakeUpstream",
    "ProxyHarness",
    "ScriptedEventSource",
    "ScriptedRun",
    "SimulatedSourceError",
    "UpstreamResponse",
    # Builders
    "build_chat_stream_chunks",
    # Assertions
    "assert_anthropic_message_valid",
    "assert_anthropic_sse_valid",
    "parse_sse_events",
]
