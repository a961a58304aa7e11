"""Service info endpoint."""

from fastapi import Request

from ... import __version__
from ...core.registry import get_model_table

SERVICE_NAME = "messages-bridge"
SERVICE_DESCRIPTION = "Anthropic-compatible Messages API bridge for a generic generation upstream"
ENDPOINTS = ["/v1/messages", "/v1/models"]


async def service_info(request: Request) -> dict:
    """GET / - static capability document."""
    return {
        "name": SERVICE_NAME,
        "description": SERVICE_DESCRIPTION,
        "version": __version__,
        "endpoints": list(ENDPOINTS),
        "default_model": get_model_table().default_model,
        "upstream": getattr(request.app.state, "upstream_description", None),
    }
