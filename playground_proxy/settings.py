"""Typed runtime settings built from the YAML config and the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .core.keys import parse_key_list
from .parsers import EnvelopeVariant

logger = logging.getLogger("playground-proxy")

DEFAULT_BASE_URL = "https://freeaichatplayground.com/api/v1"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64; rv:137.0) Gecko/20100101 Firefox/137.0"
)
DEFAULT_ORIGIN = "https://freeaichatplayground.com"
DEFAULT_REFERER = "https://freeaichatplayground.com/chat"


@dataclass(frozen=True)
class UpstreamSettings:
    base_url: str = DEFAULT_BASE_URL
    envelope: EnvelopeVariant = EnvelopeVariant.AUTO
    user_agent: str = DEFAULT_USER_AGENT
    origin: str = DEFAULT_ORIGIN
    referer: str = DEFAULT_REFERER
    timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class CompletionDefaults:
    model: str = "Deepseek R1"
    temperature: float = 0.7
    max_tokens: int = 128000
    context_window: int = 63920


@dataclass(frozen=True)
class ProxySettings:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    api_keys: tuple[str, ...] = ()
    defaults: CompletionDefaults = field(default_factory=CompletionDefaults)
    upstream: UpstreamSettings = field(default_factory=UpstreamSettings)


def _get(cfg: Mapping, *keys: str):
    cur: Any = cfg
    for key in keys:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _to_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_str(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _to_keys(value) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    text = str(value)
    # An unresolved ${apikeys} placeholder means no keys were configured.
    if text.startswith("$"):
        return ()
    return parse_key_list(text)


def _to_envelope(value) -> EnvelopeVariant:
    if value is None:
        return EnvelopeVariant.AUTO
    try:
        return EnvelopeVariant.parse(value)
    except ValueError:
        logger.warning("Invalid upstream envelope %r, using auto-detection", value)
        return EnvelopeVariant.AUTO


def load_settings(config: Optional[Mapping[str, Any]] = None) -> ProxySettings:
    """Build settings from a config mapping with environment overrides.

    Environment variables: PORT, PLAYGROUND_PROXY_HOST, apikeys,
    PLAYGROUND_PROXY_UPSTREAM, PLAYGROUND_PROXY_ENVELOPE,
    PLAYGROUND_PROXY_LOG_LEVEL.
    """
    cfg: Mapping[str, Any] = config or {}
    base = ProxySettings()
    base_defaults = base.defaults
    base_upstream = base.upstream

    host = _to_str(_get(cfg, "server", "host")) or base.host
    port = _to_int(_get(cfg, "server", "port")) or base.port
    log_level = _to_str(_get(cfg, "logging", "level")) or base.log_level
    api_keys = _to_keys(cfg.get("api_keys"))

    temperature = _to_float(_get(cfg, "defaults", "temperature"))
    if temperature is None:
        temperature = base_defaults.temperature
    defaults = CompletionDefaults(
        model=_to_str(_get(cfg, "defaults", "model")) or base_defaults.model,
        temperature=temperature,
        max_tokens=_to_int(_get(cfg, "defaults", "max_tokens")) or base_defaults.max_tokens,
        context_window=_to_int(_get(cfg, "defaults", "context_window"))
        or base_defaults.context_window,
    )

    base_url = _to_str(_get(cfg, "upstream", "base_url")) or base_upstream.base_url
    envelope = _to_envelope(_get(cfg, "upstream", "envelope"))
    timeout_seconds = _to_float(_get(cfg, "upstream", "timeout_seconds"))

    # Env overrides
    host = os.getenv("PLAYGROUND_PROXY_HOST", host)
    port_env = os.getenv("PORT")
    if port_env is not None:
        env_port = _to_int(port_env)
        if env_port is None:
            logger.warning("Invalid PORT=%s, using %s", port_env, port)
        else:
            port = env_port
    env_keys = parse_key_list(os.getenv("apikeys"))
    if env_keys:
        api_keys = env_keys
    base_url = os.getenv("PLAYGROUND_PROXY_UPSTREAM", base_url)
    envelope_env = os.getenv("PLAYGROUND_PROXY_ENVELOPE")
    if envelope_env:
        envelope = _to_envelope(envelope_env)
    log_level = os.getenv("PLAYGROUND_PROXY_LOG_LEVEL", log_level)

    upstream = UpstreamSettings(
        base_url=base_url.rstrip("/"),
        envelope=envelope,
        user_agent=_to_str(_get(cfg, "upstream", "user_agent")) or base_upstream.user_agent,
        origin=_to_str(_get(cfg, "upstream", "origin")) or base_upstream.origin,
        referer=_to_str(_get(cfg, "upstream", "referer")) or base_upstream.referer,
        timeout_seconds=timeout_seconds if timeout_seconds and timeout_seconds > 0 else None,
    )

    return ProxySettings(
        host=host,
        port=port,
        log_level=log_level.upper(),
        api_keys=api_keys,
        defaults=defaults,
        upstream=upstream,
    )
