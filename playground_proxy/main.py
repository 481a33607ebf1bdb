"""Main FastAPI application for the playground proxy."""

import logging
import socket
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import chat_completions, list_models, usage_router
from .config_loader import load_config
from .core import UpstreamClient, build_error_payload
from .logging import setup_logging
from .settings import ProxySettings, load_settings

logger = logging.getLogger("playground-proxy")

CORS_METHODS = ["GET", "POST", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization"]


def _log_bind_address(settings: ProxySettings) -> None:
    logger.info("Configured bind address %s:%s", settings.host, settings.port)
    if settings.host == "0.0.0.0":
        hostname = socket.gethostname()
        logger.info("Reachable on local network at http://%s:%s", hostname, settings.port)


async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render HTTP errors as OpenAI error envelopes."""
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        body = detail
    elif exc.status_code == 404:
        body = build_error_payload(
            f"Path {request.url.path} not found",
            error_type="invalid_request_error",
            code="path_not_found",
        )
    else:
        body = build_error_payload(
            str(detail),
            error_type="invalid_request_error" if exc.status_code < 500 else "server_error",
            code=f"http_{exc.status_code}",
        )
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def create_app(
    settings: Optional[ProxySettings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the proxy application.

    Args:
        settings: Runtime settings; loaded from config and environment when omitted.
        transport: Optional httpx transport for the upstream client (tests
            route it to an in-process fake upstream).

    Returns:
        The configured FastAPI application instance.
    """
    if settings is None:
        settings = load_settings(load_config())
        setup_logging(settings.log_level)

    timeout = httpx.Timeout(settings.upstream.timeout_seconds)
    http_client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Playground proxy server starting up...")
        _log_bind_address(settings)
        logger.info("Upstream: %s (envelope=%s)", settings.upstream.base_url, settings.upstream.envelope.value)
        logger.info("Default model: %s", settings.defaults.model)
        if not settings.api_keys:
            logger.warning("No server API keys configured; requests must send their own")
        logger.info("Playground proxy server ready to handle requests")
        try:
            yield
        finally:
            await app.state.upstream_client.aclose()
            logger.info("Playground proxy server shut down")

    app = FastAPI(title="Playground Proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.upstream_client = UpstreamClient(http_client, settings.upstream, settings.defaults)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)

    # Register routes
    app.post("/v1/chat/completions")(chat_completions)
    app.get("/v1/models")(list_models)
    app.include_router(usage_router)

    logger.info("FastAPI application created")
    return app


__all__ = ["create_app"]
