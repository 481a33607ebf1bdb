"""Incremental parsers for the upstream chat stream.

The upstream provider has shipped two envelopes for the same event stream.

Legacy token stream (one event per line)::

    0:"Hello"
    0:" world"
    e:{"finishReason":"stop","usage":{"promptTokens":3,"completionTokens":2}}
    d:{"finishReason":"stop","usage":{"promptTokens":3,"completionTokens":2}}

JSON over SSE (one event per blank-line separated block)::

    data: {"choices":[{"delta":{"content":"Hi"}}]}

    data: {"choices":[{"finish_reason":"stop"}]}

Both parsers share the same interface: ``feed(chunk)`` returns the events
completed by that chunk and ``flush()`` returns whatever the unterminated
tail still decodes to once the stream has ended.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Mapping, Optional, Protocol

from .buffer import LineBuffer
from .events import Completion, ContentFragment, Unparsable, UpstreamEvent, Usage

logger = logging.getLogger("playground-proxy")

CONTENT_PREFIX = '0:"'
CONTENT_SUFFIX = '"'
METADATA_PREFIXES = ("e:{", "d:{")
METADATA_OFFSET = 2
DATA_FIELD = "data:"
DONE_MARKER = "[DONE]"
SSE_FIELD_PREFIXES = (b"data:", b"event:", b"id:", b"retry:", b":")


class EnvelopeVariant(str, Enum):
    AUTO = "auto"
    LEGACY = "legacy"
    SSE = "sse"

    @classmethod
    def parse(cls, value: Any) -> "EnvelopeVariant":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        for variant in cls:
            if variant.value == normalized:
                return variant
        raise ValueError(f"Unknown envelope variant: {value!r}")


class UpstreamEventParser(Protocol):
    def feed(self, chunk: bytes) -> list[UpstreamEvent]:
        ...

    def flush(self) -> list[UpstreamEvent]:
        ...


def _recognized(events: Iterable[UpstreamEvent]) -> list[UpstreamEvent]:
    return [event for event in events if not isinstance(event, Unparsable)]


class LegacyTokenStreamParser:
    """Parser for the newline-delimited legacy token stream."""

    def __init__(self) -> None:
        self._lines = LineBuffer()

    def feed(self, chunk: bytes) -> list[UpstreamEvent]:
        events: list[UpstreamEvent] = []
        for line in self._lines.feed(chunk):
            event = self.parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[UpstreamEvent]:
        tail = self._lines.flush()
        if tail is None:
            return []
        event = self.parse_line(tail)
        if event is None or isinstance(event, Unparsable):
            if tail.strip():
                logger.debug("Discarding incomplete trailing line: %s", tail[:100])
            return []
        return [event]

    @staticmethod
    def parse_line(line: str) -> Optional[UpstreamEvent]:
        """Decode a single line; blank lines yield ``None``."""
        if not line.strip():
            return None

        if line.startswith(CONTENT_PREFIX):
            if len(line) <= len(CONTENT_PREFIX) or not line.endswith(CONTENT_SUFFIX):
                logger.debug("Unterminated content line: %s", line[:100])
                return Unparsable(line)
            return ContentFragment(line[len(CONTENT_PREFIX):-len(CONTENT_SUFFIX)])

        if line.startswith(METADATA_PREFIXES):
            try:
                payload = json.loads(line[METADATA_OFFSET:])
            except json.JSONDecodeError:
                logger.debug("Failed to parse metadata line: %s", line[:100])
                return Unparsable(line)
            if not isinstance(payload, Mapping):
                return Unparsable(line)
            finish_reason = payload.get("finishReason")
            if not isinstance(finish_reason, str) or not finish_reason:
                finish_reason = None
            return Completion(
                finish_reason=finish_reason,
                usage=Usage.from_payload(payload.get("usage")),
            )

        return Unparsable(line)


class JsonSseParser:
    """Parser for JSON payloads framed as server-sent events."""

    def __init__(self) -> None:
        self._lines = LineBuffer()
        self._block: list[str] = []

    def feed(self, chunk: bytes) -> list[UpstreamEvent]:
        events: list[UpstreamEvent] = []
        for line in self._lines.feed(chunk):
            if line.strip():
                self._block.append(line)
                continue
            if self._block:
                block, self._block = self._block, []
                events.extend(self.parse_block(block))
        return events

    def flush(self) -> list[UpstreamEvent]:
        tail = self._lines.flush()
        if tail is not None and tail.strip():
            self._block.append(tail)
        if not self._block:
            return []
        block, self._block = self._block, []
        events = _recognized(self.parse_block(block))
        if not events:
            logger.debug("Discarding incomplete trailing block: %s", "\n".join(block)[:100])
        return events

    @staticmethod
    def parse_block(lines: list[str]) -> list[UpstreamEvent]:
        """Decode one blank-line separated block."""
        raw = "\n".join(lines)
        if not lines or not lines[0].lstrip().startswith(DATA_FIELD):
            return [Unparsable(raw)]

        data_lines = [
            line.lstrip()[len(DATA_FIELD):].strip()
            for line in lines
            if line.lstrip().startswith(DATA_FIELD)
        ]
        data = "\n".join(data_lines).strip()
        if data == DONE_MARKER:
            return [Unparsable(data)]

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Failed to parse SSE message: %s", data[:100])
            return [Unparsable(raw)]
        if not isinstance(payload, Mapping):
            return [Unparsable(raw)]

        if isinstance(payload.get("error"), Mapping):
            error = payload["error"]
            logger.warning(
                "Upstream reported an error in stream: %s",
                error.get("message") or error,
            )
            return [Unparsable(raw)]

        return _events_from_payload(payload) or [Unparsable(raw)]


def _first_choice(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        return choices[0]
    return {}


def _text_field(container: Any) -> Optional[str]:
    if not isinstance(container, Mapping):
        return None
    content = container.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def _events_from_payload(payload: Mapping[str, Any]) -> list[UpstreamEvent]:
    choice = _first_choice(payload)
    events: list[UpstreamEvent] = []

    content = _text_field(choice.get("delta")) or _text_field(choice.get("message"))
    if content:
        events.append(ContentFragment(content))

    finish_reason = choice.get("finish_reason")
    if not isinstance(finish_reason, str) or not finish_reason:
        finish_reason = None
    usage = Usage.from_payload(payload.get("usage"))
    if finish_reason or usage:
        events.append(Completion(finish_reason=finish_reason, usage=usage))
    return events


def sniff_variant(head: bytes, *, final: bool = False) -> Optional[EnvelopeVariant]:
    """Decide the envelope from the first bytes of a stream.

    Returns ``None`` while the head is still ambiguous, i.e. empty or a
    strict prefix of an SSE field name with no line break yet. With
    ``final`` set a decision is always made.
    """
    stripped = head.lstrip()
    if stripped.startswith(SSE_FIELD_PREFIXES):
        return EnvelopeVariant.SSE
    if not final:
        if not stripped:
            return None
        first_line = stripped.split(b"\n", 1)[0]
        if first_line == stripped and any(
            prefix.startswith(stripped) for prefix in SSE_FIELD_PREFIXES
        ):
            return None
    return EnvelopeVariant.LEGACY


class AutoDetectParser:
    """Buffers the stream head until the envelope is known, then delegates."""

    def __init__(self) -> None:
        self._head = bytearray()
        self._delegate: Optional[UpstreamEventParser] = None

    @property
    def variant(self) -> Optional[EnvelopeVariant]:
        if isinstance(self._delegate, JsonSseParser):
            return EnvelopeVariant.SSE
        if isinstance(self._delegate, LegacyTokenStreamParser):
            return EnvelopeVariant.LEGACY
        return None

    def feed(self, chunk: bytes) -> list[UpstreamEvent]:
        if self._delegate is not None:
            return self._delegate.feed(chunk)
        self._head.extend(chunk)
        variant = sniff_variant(bytes(self._head))
        if variant is None:
            return []
        return self._start(variant)

    def flush(self) -> list[UpstreamEvent]:
        events: list[UpstreamEvent] = []
        if self._delegate is None:
            if not self._head.strip():
                return []
            events.extend(self._start(sniff_variant(bytes(self._head), final=True)))
        events.extend(self._delegate.flush())
        return events

    def _start(self, variant: EnvelopeVariant) -> list[UpstreamEvent]:
        logger.debug("Detected upstream envelope: %s", variant.value)
        self._delegate = create_parser(variant)
        head = bytes(self._head)
        self._head.clear()
        return self._delegate.feed(head)


def create_parser(variant: EnvelopeVariant | str = EnvelopeVariant.AUTO) -> UpstreamEventParser:
    """Return a fresh parser for one upstream response."""
    variant = EnvelopeVariant.parse(variant)
    if variant is EnvelopeVariant.LEGACY:
        return LegacyTokenStreamParser()
    if variant is EnvelopeVariant.SSE:
        return JsonSseParser()
    return AutoDetectParser()


async def iter_upstream_events(
    source: AsyncIterable[bytes],
    variant: EnvelopeVariant | str = EnvelopeVariant.AUTO,
) -> AsyncIterator[UpstreamEvent]:
    """Lazily yield events as the upstream bytes arrive.

    Unit-level decode failures surface as ``Unparsable`` events; errors
    raised by ``source`` propagate to the caller.
    """
    parser = create_parser(variant)
    async for chunk in source:
        for event in parser.feed(chunk):
            yield event
    for event in parser.flush():
        yield event


def parse_upstream_bytes(
    chunks: bytes | Iterable[bytes],
    variant: EnvelopeVariant | str = EnvelopeVariant.AUTO,
) -> list[UpstreamEvent]:
    """Parse an in-memory body (or list of chunks) in one go."""
    if isinstance(chunks, (bytes, bytearray)):
        chunks = [bytes(chunks)]
    parser = create_parser(variant)
    events: list[UpstreamEvent] = []
    for chunk in chunks:
        events.extend(parser.feed(chunk))
    events.extend(parser.flush())
    return events
