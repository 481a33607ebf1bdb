"""In-memory usage counters for realtime usage reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .parsers import Usage


class RequestTracker:
    """Track a single request lifecycle for in-memory counters."""

    def __init__(self, counters: "UsageCounters", stream: bool = False) -> None:
        self._counters = counters
        self.stream = stream
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def record_usage(self, usage: "Usage | None") -> None:
        if usage is None or self._finished:
            return
        self._counters.add_tokens(usage.prompt_tokens, usage.completion_tokens)

    def finish(self, failed: bool = False) -> None:
        if self._finished:
            return
        self._finished = True
        self._counters.finish_request(failed=failed)


@dataclass
class UsageCounters:
    """Thread-safe counters for request lifecycle tracking."""

    _lock: Lock = field(default_factory=Lock, repr=False)
    _started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    _received: int = 0
    _served: int = 0
    _failed: int = 0
    _ongoing: int = 0
    _streams: int = 0
    _prompt_tokens: int = 0
    _completion_tokens: int = 0

    def start_request(self, stream: bool = False) -> RequestTracker:
        with self._lock:
            self._received += 1
            self._ongoing += 1
            if stream:
                self._streams += 1
        return RequestTracker(self, stream=stream)

    def finish_request(self, failed: bool = False) -> None:
        with self._lock:
            self._served += 1
            if failed:
                self._failed += 1
            if self._ongoing > 0:
                self._ongoing -= 1
            else:
                self._ongoing = 0

    def add_tokens(self, prompt_tokens: int, completion_tokens: int) -> None:
        with self._lock:
            self._prompt_tokens += prompt_tokens
            self._completion_tokens += completion_tokens

    def reset(self) -> None:
        with self._lock:
            self._started_at = datetime.now(timezone.utc).isoformat()
            self._received = 0
            self._served = 0
            self._failed = 0
            self._ongoing = 0
            self._streams = 0
            self._prompt_tokens = 0
            self._completion_tokens = 0

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "started_at": self._started_at,
                "received": self._received,
                "served": self._served,
                "failed": self._failed,
                "ongoing": self._ongoing,
                "streams": self._streams,
                "prompt_tokens": self._prompt_tokens,
                "completion_tokens": self._completion_tokens,
                "total_tokens": self._prompt_tokens + self._completion_tokens,
            }


USAGE_COUNTERS = UsageCounters()


def build_usage_snapshot() -> dict[str, Any]:
    """Build the usage payload with realtime counters."""
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "realtime": USAGE_COUNTERS.snapshot(),
    }
