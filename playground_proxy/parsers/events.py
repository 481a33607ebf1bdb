"""Typed events recognized in the upstream response stream."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        # The legacy stream reports NaN when the provider has no count.
        if not math.isfinite(value):
            return 0
        return max(int(value), 0)
    if isinstance(value, str):
        try:
            return max(int(value.strip()), 0)
        except ValueError:
            return 0
    return 0


@dataclass(frozen=True)
class Usage:
    """Token usage in the public (snake_case) shape."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Usage"]:
        """Build usage from an upstream object.

        Accepts both the legacy camelCase keys (``promptTokens``) and the
        SSE snake_case keys (``prompt_tokens``). Returns ``None`` when the
        payload is not an object.
        """
        if not isinstance(payload, Mapping):
            return None
        prompt = _count(payload.get("promptTokens", payload.get("prompt_tokens")))
        completion = _count(
            payload.get("completionTokens", payload.get("completion_tokens"))
        )
        raw_total = payload.get("totalTokens", payload.get("total_tokens"))
        total = _count(raw_total) if raw_total is not None else 0
        if not total:
            total = prompt + completion
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ContentFragment:
    """A piece of assistant text."""

    text: str


@dataclass(frozen=True)
class Completion:
    """Completion metadata: finish reason and/or usage."""

    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class Unparsable:
    """A unit that could not be decoded; ignored by the translators."""

    raw: str


UpstreamEvent = Union[ContentFragment, Completion, Unparsable]
