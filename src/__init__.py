"""messages-bridge - Anthropic Messages API bridge

A small FastAPI service that accepts Anthropic-style ``/v1/messages``
requests, hands a normalized conversation to a generation upstream and
re-encodes the upstream's events as Anthropic responses or SSE streams.

This package provides:
- Request normalization (Anthropic blocks -> protocol-neutral turns)
- Stream re-encoding of generation events as Anthropic SSE
- Aggregation of generation events into a single message response
- An OpenAI-compatible chat completions upstream

Example:
    >>> from src.main import app
    >>> import uvicorn
    >>> uvicorn.run(app, host="127.0.0.1", port=4141)
"""

__version__ = "1.0.0"
