"""Models listing endpoint - OpenAI compatible."""

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

from fastapi import Request

from ...core import UpstreamClient
from ...settings import ProxySettings
from .chat import resolve_api_key

logger = logging.getLogger("playground-proxy")


def _created_timestamp(value: Any) -> int:
    """Convert the upstream ``createdAt`` (ISO string or epoch ms) to seconds."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value / 1000)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            return int(datetime.fromisoformat(text).timestamp())
        except ValueError:
            logger.debug("Unparseable model createdAt: %s", value)
    return 0


def to_openai_models(models: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """Convert the upstream catalog to the OpenAI model list shape."""
    return {
        "object": "list",
        "data": [
            {
                "id": model.get("name"),
                "object": "model",
                "created": _created_timestamp(model.get("createdAt")),
                "owned_by": model.get("provider"),
                "permission": [],
                "root": model.get("name"),
                "parent": None,
            }
            for model in models
        ],
    }


async def list_models(request: Request) -> dict:
    """List available models in OpenAI API format.

    GET /v1/models
    """
    logger.info("Received models list request")
    settings: ProxySettings = request.app.state.settings
    upstream_client: UpstreamClient = request.app.state.upstream_client

    api_key = resolve_api_key(request, settings)
    models = await upstream_client.fetch_models(api_key)
    return to_openai_models(models)
