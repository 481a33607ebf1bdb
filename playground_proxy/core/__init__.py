"""Core module initialization."""

from .exceptions import (
    InvalidRequestError,
    ModelNotFoundError,
    NoApiKeysError,
    ProxyError,
    UpstreamError,
    UpstreamStreamError,
)
from .keys import parse_auth_header, parse_key_list, select_api_key
from .sse import SSE_DONE_FRAME, build_error_payload, format_sse_data
from .upstream import UpstreamClient, format_httpx_error, iter_response_bytes, message_text

__all__ = [
    "InvalidRequestError",
    "ModelNotFoundError",
    "NoApiKeysError",
    "ProxyError",
    "SSE_DONE_FRAME",
    "UpstreamClient",
    "UpstreamError",
    "UpstreamStreamError",
    "build_error_payload",
    "format_httpx_error",
    "format_sse_data",
    "iter_response_bytes",
    "message_text",
    "parse_auth_header",
    "parse_key_list",
    "select_api_key",
]
