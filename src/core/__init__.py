"""Core module initialization."""

from .exceptions import ConfigurationError, InvalidRequestError, ProxyError, UpstreamError
from .models import DEFAULT_MODEL_TABLE, ModelEntry, ModelTable, ResolvedModel
from .registry import get_event_source, get_model_table, set_runtime
from .sse import SSEDecoder, SSEEvent, extract_stream_error, format_sse_event

__all__ = [
    "ConfigurationError",
    "DEFAULT_MODEL_TABLE",
    "InvalidRequestError",
    "ModelEntry",
    "ModelTable",
    "ProxyError",
    "ResolvedModel",
    "SSEDecoder",
    "SSEEvent",
    "UpstreamError",
    "extract_stream_error",
    "format_sse_event",
    "get_event_source",
    "get_model_table",
    "set_runtime",
]
