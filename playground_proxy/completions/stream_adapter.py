"""Stream adapter relaying upstream events as OpenAI chat completion chunks.

Every recognized upstream event becomes exactly one public chunk, emitted
before the next upstream read::

    data: {"choices":[{"index":0,"delta":{"role":"assistant"},"finish_reason":null}], ...}
    data: {"choices":[{"index":0,"delta":{"content":"Hi"},"finish_reason":null}], ...}
    data: {"choices":[{"index":0,"delta":{},"finish_reason":"stop"}], ...}
    data: [DONE]

The ``[DONE]`` sentinel is sent exactly once on every exit path except a
client disconnect. Upstream events arriving after it are read but not
relayed; only their usage is kept.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Optional

from ..core.sse import SSE_DONE_FRAME, build_error_payload, format_sse_data
from ..parsers import (
    Completion,
    ContentFragment,
    EnvelopeVariant,
    UpstreamEvent,
    iter_upstream_events,
)
from .translator import TRANSPORT_ERRORS, new_completion_id

logger = logging.getLogger("playground-proxy")


@dataclass(frozen=True)
class PublicChunk:
    id: str
    created: int
    model: str
    delta: dict[str, Any] = field(default_factory=dict)
    finish_reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "delta": self.delta,
                    "finish_reason": self.finish_reason,
                }
            ],
        }

    def encode(self) -> bytes:
        return format_sse_data(self.to_dict())


class ChatCompletionStreamAdapter:
    """Converts the upstream byte stream into public SSE frames.

    State is per request: one adapter instance wraps one upstream body.
    """

    def __init__(
        self,
        completion_id: Optional[str],
        model: str,
        *,
        variant: EnvelopeVariant | str = EnvelopeVariant.AUTO,
        disconnect_checker: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> None:
        self.completion_id = completion_id or new_completion_id()
        self.model = model
        self.variant = variant
        self.disconnect_checker = disconnect_checker

        self.chunks_emitted = 0
        self.finish_reason: Optional[str] = None
        self.usage = None
        self.done_sent = False
        self.dropped_fragments = 0

    async def adapt_stream(self, upstream: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        """Yield public frames for ``upstream``.

        Transport failures are reported in-band as an error frame followed
        by the sentinel, then re-raised. Once the sentinel is out the rest of
        the upstream is drained without emitting frames so trailing usage
        still lands in ``self.usage``.
        """
        yield self._emit_chunk(delta={"role": "assistant"})

        source = self._watch_disconnect(upstream)
        events = iter_upstream_events(source, self.variant)
        try:
            async with aclosing(source), aclosing(events):
                async for event in events:
                    for frame in self._process_event(event):
                        yield frame
        except TRANSPORT_ERRORS as exc:
            if self.done_sent:
                logger.warning(
                    f"Upstream stream failed after [DONE] for {self.completion_id}: {exc}"
                )
                return
            logger.error(f"Upstream stream failed while relaying: {exc} (type: {exc.__class__.__name__})")
            yield format_sse_data(
                build_error_payload(
                    f"Upstream stream interrupted: {exc}",
                    error_type="upstream_error",
                    code="stream_interrupted",
                )
            )
            yield self._emit_done()
            raise

        if not self.done_sent:
            yield self._emit_done()

    async def _watch_disconnect(self, upstream: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        iterator = upstream.__aiter__()
        try:
            while True:
                if self.disconnect_checker and await self.disconnect_checker():
                    raise asyncio.CancelledError("client disconnected")
                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                if chunk:
                    yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _process_event(self, event: UpstreamEvent) -> list[bytes]:
        if self.done_sent:
            self._absorb_after_done(event)
            return []
        if isinstance(event, ContentFragment):
            return [self._emit_chunk(delta={"content": event.text})]
        if isinstance(event, Completion):
            if event.usage is not None:
                self.usage = event.usage
            if event.finish_reason:
                self.finish_reason = event.finish_reason
                return [
                    self._emit_chunk(delta={}, finish_reason=event.finish_reason),
                    self._emit_done(),
                ]
        return []

    def _absorb_after_done(self, event: UpstreamEvent) -> None:
        if isinstance(event, ContentFragment):
            self.dropped_fragments += 1
            logger.warning(
                f"Dropping content received after [DONE] for {self.completion_id}: {event.text[:100]!r}"
            )
        elif isinstance(event, Completion) and event.usage is not None:
            self.usage = event.usage

    def _emit_chunk(self, delta: dict[str, Any], finish_reason: Optional[str] = None) -> bytes:
        self.chunks_emitted += 1
        chunk = PublicChunk(
            id=self.completion_id,
            created=int(time.time()),
            model=self.model,
            delta=delta,
            finish_reason=finish_reason,
        )
        return chunk.encode()

    def _emit_done(self) -> bytes:
        self.done_sent = True
        return SSE_DONE_FRAME


async def adapt_upstream_stream(
    model: str,
    upstream: AsyncIterable[bytes],
    *,
    completion_id: Optional[str] = None,
    variant: EnvelopeVariant | str = EnvelopeVariant.AUTO,
) -> AsyncIterator[bytes]:
    """Convenience wrapper around ``ChatCompletionStreamAdapter``."""
    adapter = ChatCompletionStreamAdapter(completion_id, model, variant=variant)
    async for frame in adapter.adapt_stream(upstream):
        yield frame
