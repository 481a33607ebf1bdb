"""HTTP client for the upstream chat playground API."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

import httpx

from .exceptions import ModelNotFoundError, UpstreamError, UpstreamStreamError

if TYPE_CHECKING:
    from ..settings import CompletionDefaults, UpstreamSettings

logger = logging.getLogger("playground-proxy")

UPSTREAM_KEY_PREFIX = "ai-"


def format_httpx_error(exc: Any, url: Optional[str] = None) -> str:
    """Produce a detailed, user-facing description of an httpx error."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)
    try:
        request = exc.request
    except (AttributeError, RuntimeError):
        # httpx raises RuntimeError when no request is attached.
        request = None
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    elif url:
        parts.append(f"url={url}")
    return "; ".join(parts)


def message_text(content: Any) -> str:
    """Flatten OpenAI message content (string or list of parts) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: list[str] = []
        for part in content:
            if isinstance(part, Mapping) and part.get("type") == "text":
                text = part.get("text")
                if isinstance(text, str):
                    texts.append(text)
            elif isinstance(part, str):
                texts.append(part)
        return "".join(texts)
    return str(content)


class UpstreamClient:
    """Issues catalog and chat calls against the upstream provider.

    The underlying ``httpx.AsyncClient`` is owned by the application; each
    chat call hands back an open streaming response that the caller closes.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: "UpstreamSettings",
        defaults: "CompletionDefaults",
    ) -> None:
        self._client = client
        self.settings = settings
        self.defaults = defaults

    async def aclose(self) -> None:
        await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self, api_key: Optional[str] = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.user_agent,
            "Origin": self.settings.origin,
            "Referer": self.settings.referer,
        }
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def fetch_models(self, api_key: str) -> list[dict[str, Any]]:
        """Return the upstream model catalog; failures yield an empty list."""
        url = self._url("/models")
        try:
            response = await self._client.post(
                url, headers=self._headers(api_key), json={"type": "text"}
            )
        except httpx.HTTPError as exc:
            logger.error(f"Error fetching models: {format_httpx_error(exc, url)}")
            return []

        if response.status_code >= 400:
            logger.error(f"Failed to fetch models: {response.status_code}")
            return []

        try:
            models = response.json()
        except ValueError as exc:
            logger.error(f"Error fetching models: invalid JSON ({exc})")
            return []
        if not isinstance(models, list):
            logger.error("Error fetching models: catalog is not a list")
            return []
        return [model for model in models if isinstance(model, Mapping)]

    async def resolve_model(self, model_name: str, api_key: str) -> dict[str, Any]:
        for model in await self.fetch_models(api_key):
            if model.get("name") == model_name:
                return dict(model)
        raise ModelNotFoundError(f'Model "{model_name}" not found')

    def build_chat_body(
        self,
        model: Mapping[str, Any],
        messages: Sequence[Mapping[str, Any]],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        """Build the upstream request body for a resolved catalog entry."""
        model_name = model.get("name", "")
        model_ref = {
            "id": model.get("id", ""),
            "name": model_name,
            "icon": model.get("icon", ""),
            "provider": model.get("provider", ""),
            "contextWindow": self.defaults.context_window,
        }
        base_id = int(time.time() * 1000)
        formatted_messages = []
        for index, message in enumerate(messages):
            text = message_text(message.get("content"))
            formatted_messages.append(
                {
                    "id": str(base_id + index),
                    "role": message.get("role"),
                    "content": text,
                    "parts": [{"type": "text", "text": text}],
                    "model": dict(model_ref),
                }
            )

        return {
            "model": model_name,
            "messages": formatted_messages,
            "config": {
                "temperature": temperature if temperature is not None else self.defaults.temperature,
                "maxTokens": max_tokens if max_tokens is not None else self.defaults.max_tokens,
            },
            "apiKey": f"{UPSTREAM_KEY_PREFIX}{api_key}",
        }

    async def open_chat_stream(
        self,
        model_name: str,
        messages: Sequence[Mapping[str, Any]],
        api_key: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> httpx.Response:
        """Start a chat completion and return the open streaming response.

        Raises:
            ModelNotFoundError: the model is not in the upstream catalog.
            UpstreamError: the upstream refused the call or was unreachable.
        """
        model = await self.resolve_model(model_name, api_key)
        body = self.build_chat_body(model, messages, api_key, temperature, max_tokens)
        url = self._url("/chat/completions")

        logger.debug(f"Sending streaming request to {url} for model {model_name}")
        request = self._client.build_request("POST", url, headers=self._headers(), json=body)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            detail = format_httpx_error(exc, url)
            logger.error(f"Failed to send chat request to {url}: {detail}")
            raise UpstreamError(f"Chat completion failed: {detail}") from exc

        if response.status_code >= 400:
            error_text = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            logger.warning(f"Chat request to {url} returned error status {response.status_code}")
            raise UpstreamError(
                f"Chat completion failed: {response.status_code} - {error_text}",
                status_code=response.status_code,
            )

        logger.info(f"Streaming request to {url} successful, status {response.status_code}")
        return response


async def iter_response_bytes(response: httpx.Response):
    """Yield decoded body bytes, wrapping transport failures."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as exc:
        raise UpstreamStreamError(format_httpx_error(exc)) from exc
