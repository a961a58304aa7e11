"""Anthropic-compatible Messages API endpoint."""

import json
import logging
import time
import uuid
from typing import Any, AsyncIterator, Mapping, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.requests import ClientDisconnect

from ...core.exceptions import InvalidRequestError
from ...core.registry import get_event_source, get_model_table
from ...messages import (
    MessagesStreamEncoder,
    aggregate_events,
    new_message_id,
    normalize_request,
    trim_trailing_empty_assistant_turn,
)

logger = logging.getLogger("messages-bridge")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _anthropic_error_response(
    message: str,
    *,
    error_type: str = "invalid_request_error",
    status_code: int = 400,
    error_code: Optional[str] = None,
) -> JSONResponse:
    error: dict[str, Any] = {"type": error_type, "message": message}
    if error_code:
        error["code"] = error_code
    payload = {"type": "error", "error": error}
    return JSONResponse(payload, status_code=status_code)


async def _close_events(events: Any) -> None:
    aclose = getattr(events, "aclose", None)
    if aclose is not None:
        await aclose()


def _debug_dump(req_id: str, label: str, data: Any) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"[{req_id}] {label}:\n{json.dumps(data, indent=2, ensure_ascii=False, default=_to_jsonable)}")


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "__dataclass_fields__"):
        return {"kind": type(value).__name__, **vars(value)}
    return str(value)


async def messages_endpoint(request: Request) -> Response:
    """POST /v1/messages - Anthropic Messages API compatible endpoint."""
    # Generate request ID for log correlation
    req_id = uuid.uuid4().hex[:8]
    start_time = time.perf_counter()

    client_host = request.client.host if request.client else "unknown"
    client_port = request.client.port if request.client else "unknown"
    logger.info(f"[{req_id}] Messages API request from {client_host}:{client_port}")

    try:
        body = await request.body()
        payload = json.loads(body or b"{}")
    except ClientDisconnect:
        elapsed = time.perf_counter() - start_time
        logger.warning(f"[{req_id}] ClientDisconnect after {elapsed:.3f}s while reading body")
        return Response(status_code=499)  # Client Closed Request
    except json.JSONDecodeError as exc:
        logger.warning(f"[{req_id}] Invalid JSON payload: {exc}")
        return _anthropic_error_response("Invalid JSON payload", error_code="invalid_json")

    if not isinstance(payload, Mapping):
        return _anthropic_error_response(
            "Request body must be a JSON object",
            error_code="invalid_json_shape",
        )

    _debug_dump(req_id, "Incoming messages", payload.get("messages"))

    try:
        generation_request = normalize_request(payload, get_model_table())
    except InvalidRequestError as exc:
        logger.warning(f"[{req_id}] Rejected request: {exc.message}")
        return _anthropic_error_response(exc.message, error_code=exc.code)

    generation_request.conversation = trim_trailing_empty_assistant_turn(
        generation_request.conversation
    )
    _debug_dump(req_id, "Converted messages", generation_request.conversation)

    model_name = generation_request.model.provider_model
    is_stream = generation_request.stream
    message_id = new_message_id()
    logger.info(
        f"[{req_id}] model={model_name} backend={generation_request.model.backend_model} "
        f"turns={len(generation_request.conversation)} tools={len(generation_request.tools)} "
        f"stream={is_stream}"
    )

    events = get_event_source().stream(
        generation_request,
        disconnect_checker=request.is_disconnected,
    )

    if is_stream:
        encoder = MessagesStreamEncoder(message_id, model_name)

        async def sse_stream() -> AsyncIterator[bytes]:
            try:
                async for chunk in encoder.encode(events):
                    yield chunk
            finally:
                # Also runs when the client goes away mid-stream
                await _close_events(events)
                elapsed = time.perf_counter() - start_time
                logger.info(
                    f"[{req_id}] Streaming response for {model_name} ended after {elapsed:.3f}s, "
                    f"blocks={encoder.state.next_block_index}"
                )

        return StreamingResponse(
            sse_stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    try:
        message = await aggregate_events(events, message_id, model_name)
    except Exception as exc:
        elapsed = time.perf_counter() - start_time
        logger.error(f"[{req_id}] Generate error after {elapsed:.3f}s: {exc}")
        return _anthropic_error_response(
            str(exc) or "Unknown error",
            error_type="api_error",
            status_code=500,
        )
    finally:
        await _close_events(events)

    elapsed = time.perf_counter() - start_time
    logger.info(
        f"[{req_id}] Completed non-streaming response for {model_name}, "
        f"stop_reason={message['stop_reason']}, took {elapsed:.3f}s"
    )
    return JSONResponse(message)
