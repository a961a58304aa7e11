"""Registry of per-host httpx transports for in-process upstreams.

Tests register an ``httpx.ASGITransport`` for a fake upstream's host so the
event source talks to it without opening sockets.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("messages-bridge")

_TRANSPORTS: dict[str, httpx.AsyncBaseTransport] = {}


def _host_of(url: str) -> str:
    return urlparse(url).netloc.strip().lower()


def register_upstream_transport(url: str, transport: httpx.AsyncBaseTransport) -> None:
    """Route requests for the URL's host (e.g. 'upstream.local:8000') to transport."""
    host = _host_of(url)
    if not host:
        raise ValueError(f"cannot register a transport for '{url}': no host")
    _TRANSPORTS[host] = transport
    logger.debug("Registered upstream transport for host '%s'", host)


def clear_upstream_transports() -> None:
    """Clear all registered transports (useful for tests)."""
    _TRANSPORTS.clear()


def get_upstream_transport(url: str) -> Optional[httpx.AsyncBaseTransport]:
    """Return a registered transport for the URL's host (if any)."""
    if not url:
        return None
    host = _host_of(url)
    if not host:
        return None
    return _TRANSPORTS.get(host)
