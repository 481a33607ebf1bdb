"""playground-proxy - OpenAI-compatible front for a chat playground API

A small proxy that exposes ``/v1/chat/completions`` and ``/v1/models`` and
translates the upstream playground's token stream into OpenAI responses.

This module provides:
- Upstream event parsing for the legacy line stream and JSON-SSE
- Aggregate (non-streaming) and relay (streaming) response translation
- API key selection and in-memory usage counters

Example:
    >>> from playground_proxy import create_app
    >>> import uvicorn
    >>> uvicorn.run(create_app(), host="0.0.0.0", port=8000)
"""

from .config_loader import load_config
from .logging import logger, setup_logging
from .main import create_app
from .settings import ProxySettings, load_settings

__all__ = [
    "create_app",
    "load_config",
    "load_settings",
    "logger",
    "ProxySettings",
    "setup_logging",
]
