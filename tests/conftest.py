"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

import pytest

# Add the project root to path for imports without an install
sys.path.insert(0, str(Path(__file__).parent.parent))

from playground_proxy.testing import FakeUpstream
from playground_proxy.usage_metrics import USAGE_COUNTERS

PROXY_ENV_VARS = (
    "PORT",
    "PLAYGROUND_PROXY_HOST",
    "PLAYGROUND_PROXY_UPSTREAM",
    "PLAYGROUND_PROXY_ENVELOPE",
    "PLAYGROUND_PROXY_LOG_LEVEL",
    "PLAYGROUND_PROXY_CONFIG",
    "apikeys",
)


@pytest.fixture(autouse=True)
def clean_proxy_env(monkeypatch) -> Generator[None, None, None]:
    """Keep the developer's environment out of settings-dependent tests."""
    for name in PROXY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def reset_usage_counters() -> Generator[None, None, None]:
    """Reset the process-wide usage counters before and after each test."""
    USAGE_COUNTERS.reset()
    yield
    USAGE_COUNTERS.reset()


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()
