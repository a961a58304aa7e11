"""API routes for the bridge."""

from .info import service_info
from .messages import messages_endpoint
from .models import list_models

__all__ = [
    "list_models",
    "messages_endpoint",
    "service_info",
]
