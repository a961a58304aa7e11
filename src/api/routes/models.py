"""Models listing endpoint."""

import logging
import time

from fastapi import Request

from ...core.registry import get_model_table

logger = logging.getLogger("messages-bridge")

DEFAULT_OWNED_BY = "messages-bridge"


async def list_models(request: Request) -> dict:
    """List the statically configured models.

    GET /v1/models

    Returns:
        A dictionary containing the list of available models.
    """
    logger.info("Received models list request")

    owned_by = getattr(request.app.state, "owned_by", DEFAULT_OWNED_BY)
    created = int(time.time())
    models = []
    for entry in get_model_table():
        models.append({
            "id": entry.model_id,
            "object": "model",
            "created": created,
            "owned_by": owned_by,
            "context_window": entry.context_window,
        })

    return {
        "object": "list",
        "data": models,
    }
