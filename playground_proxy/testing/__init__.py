"""Testing utilities for in-process proxy simulations."""

from .fake_upstream import (
    DEFAULT_MODELS,
    FakeUpstream,
    UpstreamResponse,
    build_legacy_body,
    build_sse_body,
    split_body,
)
from .proxy_harness import ProxyHarness

__all__ = [
    "DEFAULT_MODELS",
    "FakeUpstream",
    "ProxyHarness",
    "UpstreamResponse",
    "build_legacy_body",
    "build_sse_body",
    "split_body",
]
