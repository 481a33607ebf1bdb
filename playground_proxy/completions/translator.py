"""Aggregate translation: fold the upstream stream into one chat completion.

The upstream always streams, even for callers that asked for a single JSON
answer. This module drains the stream and renders the public
``chat.completion`` object.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Iterable, Optional

import httpx

from ..core.exceptions import UpstreamStreamError
from ..parsers import (
    Completion,
    ContentFragment,
    EnvelopeVariant,
    UpstreamEvent,
    Usage,
    iter_upstream_events,
)

logger = logging.getLogger("playground-proxy")

DEFAULT_FINISH_REASON = "stop"
ERROR_FINISH_REASON = "error"

# Failures of the byte source itself, as opposed to undecodable units.
TRANSPORT_ERRORS = (httpx.HTTPError, UpstreamStreamError, OSError)


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:24]}"


@dataclass(frozen=True)
class LogicalResult:
    """One reconstructed answer."""

    id: str
    content: str
    finish_reason: str = DEFAULT_FINISH_REASON
    usage: Usage = field(default_factory=Usage)


class ResultAccumulator:
    """Folds upstream events in arrival order; later metadata wins."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self.finish_reason = DEFAULT_FINISH_REASON
        self.usage = Usage()
        self.completions_seen = 0

    def add(self, event: UpstreamEvent) -> None:
        if isinstance(event, ContentFragment):
            self._parts.append(event.text)
        elif isinstance(event, Completion):
            self.completions_seen += 1
            if event.finish_reason:
                self.finish_reason = event.finish_reason
            if event.usage is not None:
                self.usage = event.usage

    @property
    def content(self) -> str:
        return "".join(self._parts)

    def build(self, completion_id: Optional[str] = None) -> LogicalResult:
        return LogicalResult(
            id=completion_id or new_completion_id(),
            content=self.content,
            finish_reason=self.finish_reason,
            usage=self.usage,
        )


def fold_events(events: Iterable[UpstreamEvent]) -> LogicalResult:
    """Fold an already-parsed event sequence into a result."""
    accumulator = ResultAccumulator()
    for event in events:
        accumulator.add(event)
    return accumulator.build()


def build_error_result(exc: BaseException) -> LogicalResult:
    return LogicalResult(
        id=new_completion_id(),
        content=f"Error parsing response: {exc}",
        finish_reason=ERROR_FINISH_REASON,
    )


async def aggregate_upstream_stream(
    source: AsyncIterable[bytes],
    variant: EnvelopeVariant | str = EnvelopeVariant.AUTO,
) -> LogicalResult:
    """Drain the upstream body and return the logical result.

    Transport failures are never raised past this point: they produce a
    result with ``finish_reason="error"`` and the failure text as content.
    """
    accumulator = ResultAccumulator()
    try:
        async for event in iter_upstream_events(source, variant):
            accumulator.add(event)
    except TRANSPORT_ERRORS as exc:
        logger.error(f"Error reading upstream stream: {exc} (type: {exc.__class__.__name__})")
        return build_error_result(exc)

    if not accumulator.completions_seen:
        logger.debug("Upstream stream ended without completion metadata")
    return accumulator.build()


def build_chat_completion(
    result: LogicalResult,
    model: str,
    created: Optional[int] = None,
) -> dict[str, Any]:
    """Render a result as a public ``chat.completion`` object."""
    return {
        "id": result.id,
        "object": "chat.completion",
        "created": created if created is not None else int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": result.content,
                },
                "finish_reason": result.finish_reason or DEFAULT_FINISH_REASON,
            }
        ],
        "usage": result.usage.to_dict(),
    }
