"""OpenAI-compatible chat completions endpoint."""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Mapping, Optional

import httpx
from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from ...completions import (
    ChatCompletionStreamAdapter,
    aggregate_upstream_stream,
    build_chat_completion,
    new_completion_id,
)
from ...core import (
    InvalidRequestError,
    ModelNotFoundError,
    NoApiKeysError,
    UpstreamClient,
    UpstreamError,
    iter_response_bytes,
    parse_auth_header,
    select_api_key,
)
from ...settings import ProxySettings
from ...usage_metrics import USAGE_COUNTERS, RequestTracker

logger = logging.getLogger("playground-proxy")

STREAM_HEADERS = {"Cache-Control": "no-cache"}


def _error_detail(message: str, error_type: str, code: str) -> dict[str, Any]:
    return {
        "error": {
            "message": message,
            "type": error_type,
            "code": code,
        }
    }


def _bad_request(message: str, code: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=_error_detail(message, "invalid_request_error", code),
    )


def _optional_number(payload: Mapping[str, Any], key: str, cast) -> Optional[Any]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRequestError(f"'{key}' must be a number", "invalid_parameter")
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"'{key}' must be a number", "invalid_parameter") from None


def _parse_payload(body: bytes) -> Mapping[str, Any]:
    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError as exc:
        raise InvalidRequestError("Invalid JSON payload", "invalid_json") from exc
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("Request body must be a JSON object", "invalid_json_shape")
    return payload


def _validate_request(payload: Mapping[str, Any], default_model: str) -> dict[str, Any]:
    """Extract the fields forwarded upstream, rejecting malformed values."""
    model_name = payload.get("model") or default_model
    if not isinstance(model_name, str):
        raise InvalidRequestError("'model' must be a string", "invalid_parameter")

    messages = payload.get("messages") or []
    if not isinstance(messages, list) or not all(isinstance(m, Mapping) for m in messages):
        raise InvalidRequestError("'messages' must be an array of objects", "invalid_parameter")

    max_tokens = _optional_number(payload, "max_tokens", int)
    if max_tokens is None:
        max_tokens = _optional_number(payload, "maxTokens", int)
    return {
        "model": model_name,
        "messages": messages,
        "stream": bool(payload.get("stream")),
        "temperature": _optional_number(payload, "temperature", float),
        "max_tokens": max_tokens,
    }


def resolve_api_key(request: Request, settings: ProxySettings) -> str:
    request_keys = parse_auth_header(request.headers.get("authorization"))
    try:
        return select_api_key(request_keys, settings.api_keys)
    except NoApiKeysError as exc:
        logger.error("No API keys available for request")
        raise HTTPException(
            status_code=401,
            detail=_error_detail(exc.message, "invalid_request_error", "missing_api_key"),
        ) from exc


async def _relay(
    adapter: ChatCompletionStreamAdapter,
    upstream: httpx.Response,
    tracker: RequestTracker,
) -> AsyncIterator[bytes]:
    failed = False
    try:
        async for frame in adapter.adapt_stream(iter_response_bytes(upstream)):
            yield frame
    except asyncio.CancelledError:
        failed = True
        logger.warning(f"Client disconnected during stream {adapter.completion_id}")
        raise
    except Exception as exc:
        failed = True
        logger.error(f"Error during streaming for model {adapter.model}: {exc}")
        raise
    finally:
        await upstream.aclose()
        tracker.record_usage(adapter.usage)
        tracker.finish(failed=failed)
        logger.debug(
            "Stream %s finished after %d chunks (finish_reason=%s)",
            adapter.completion_id,
            adapter.chunks_emitted,
            adapter.finish_reason,
        )


async def chat_completions(request: Request) -> Response:
    """Chat completions endpoint - OpenAI compatible.

    POST /v1/chat/completions

    The upstream is always called in streaming mode; non-streaming callers
    get the aggregated result as one JSON object.
    """
    settings: ProxySettings = request.app.state.settings
    upstream_client: UpstreamClient = request.app.state.upstream_client

    body = await request.body()
    try:
        fields = _validate_request(_parse_payload(body), settings.defaults.model)
    except InvalidRequestError as exc:
        logger.error(f"Invalid chat request: {exc.message}")
        raise _bad_request(exc.message, exc.code) from exc

    model_name = fields["model"]
    is_stream = fields["stream"]
    api_key = resolve_api_key(request, settings)

    logger.info(f"Processing request for model {model_name}, stream={is_stream}")
    tracker = USAGE_COUNTERS.start_request(stream=is_stream)

    try:
        upstream = await upstream_client.open_chat_stream(
            model_name,
            fields["messages"],
            api_key,
            temperature=fields["temperature"],
            max_tokens=fields["max_tokens"],
        )
    except ModelNotFoundError as exc:
        tracker.finish(failed=True)
        logger.error(exc.message)
        raise HTTPException(
            status_code=404,
            detail=_error_detail(exc.message, "invalid_request_error", "model_not_found"),
        ) from exc
    except UpstreamError as exc:
        tracker.finish(failed=True)
        logger.error(f"Error in chat completion for model {model_name}: {exc.message}")
        raise HTTPException(
            status_code=502,
            detail=_error_detail(exc.message, "upstream_error", "upstream_failed"),
        ) from exc
    except Exception:
        tracker.finish(failed=True)
        raise

    variant = settings.upstream.envelope
    if is_stream:
        adapter = ChatCompletionStreamAdapter(
            new_completion_id(),
            model_name,
            variant=variant,
            disconnect_checker=request.is_disconnected,
        )
        return StreamingResponse(
            _relay(adapter, upstream, tracker),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    try:
        result = await aggregate_upstream_stream(iter_response_bytes(upstream), variant)
    finally:
        await upstream.aclose()

    tracker.record_usage(result.usage)
    tracker.finish(failed=result.finish_reason == "error")
    logger.info(f"Request for model {model_name} completed with finish_reason={result.finish_reason}")
    return JSONResponse(build_chat_completion(result, model_name))
