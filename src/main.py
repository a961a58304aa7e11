"""Main FastAPI application for the messages bridge."""

import logging
import socket
from contextlib import asynccontextmanager
from typing import Any, Mapping, Optional

from fastapi import FastAPI

from .api.routes import list_models, messages_endpoint, service_info
from .config_loader import get_proxy_settings, load_config, resolve_log_level, resolve_server_address
from .core.models import ModelTable
from .core.registry import set_runtime
from .logging import setup_logging
from .upstream import GenerationEventSource, OpenAICompatibleEventSource

logger = logging.getLogger("messages-bridge")


def create_app(
    config: Optional[Mapping[str, Any]] = None,
    *,
    event_source: Optional[GenerationEventSource] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Parsed configuration; loaded from the config file when None.
        event_source: Generation event source to use instead of the one
            described by the ``upstream`` config section.

    Returns:
        The configured FastAPI application instance.
    """
    if config is None:
        config = load_config()

    setup_logging(resolve_log_level(config))

    model_table = ModelTable.from_config(config)
    if event_source is None:
        event_source = OpenAICompatibleEventSource.from_config(config)
    set_runtime(model_table, event_source)
    logger.info(
        f"Runtime initialized with {len(model_table)} models, upstream {event_source.describe()}"
    )

    host, port = resolve_server_address(config)
    proxy_settings = get_proxy_settings(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Log the startup banner."""
        logger.info("Messages bridge starting up...")
        logger.info("Upstream:       %s", event_source.describe())
        logger.info("Default model:  %s", model_table.default_model)
        logger.info("Configured bind address %s:%s", host, port)
        if host == "0.0.0.0":
            hostname = socket.gethostname()
            logger.info("Reachable on local network at http://%s:%s", hostname, port)
        logger.info("Endpoints:")
        logger.info("  POST http://%s:%s/v1/messages   (Anthropic Messages API)", host, port)
        logger.info("  GET  http://%s:%s/v1/models     (List models)", host, port)
        for entry in model_table:
            logger.info(f"  - {entry.model_id} -> {entry.backend_model}")
        yield
        logger.info("Messages bridge shutting down")

    app = FastAPI(title="Messages Bridge", lifespan=lifespan)
    app.state.config = config
    app.state.model_table = model_table
    app.state.event_source = event_source
    app.state.server_host = host
    app.state.server_port = port
    app.state.owned_by = str(proxy_settings.get("owned_by") or "messages-bridge")
    app.state.upstream_description = event_source.describe()

    # Register routes
    app.get("/")(service_info)
    app.get("/v1/models")(list_models)
    app.post("/v1/messages")(messages_endpoint)

    return app


app = create_app()

# Export for external use
__all__ = ["app", "create_app"]
