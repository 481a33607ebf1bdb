"""Parsers for the upstream provider's streamed response envelopes."""

from .buffer import LineBuffer
from .events import Completion, ContentFragment, Unparsable, UpstreamEvent, Usage
from .upstream import (
    AutoDetectParser,
    EnvelopeVariant,
    JsonSseParser,
    LegacyTokenStreamParser,
    UpstreamEventParser,
    create_parser,
    iter_upstream_events,
    parse_upstream_bytes,
    sniff_variant,
)

__all__ = [
    "AutoDetectParser",
    "Completion",
    "ContentFragment",
    "EnvelopeVariant",
    "JsonSseParser",
    "LegacyTokenStreamParser",
    "LineBuffer",
    "Unparsable",
    "UpstreamEvent",
    "UpstreamEventParser",
    "Usage",
    "create_parser",
    "iter_upstream_events",
    "parse_upstream_bytes",
    "sniff_variant",
]
