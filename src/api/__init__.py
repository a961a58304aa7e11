"""API module for the bridge."""

from .routes import list_models, messages_endpoint, service_info

__all__ = [
    "list_models",
    "messages_endpoint",
    "service_info",
]
