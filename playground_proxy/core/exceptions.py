"""Core exceptions for the proxy."""

from typing import Optional


class ProxyError(Exception):
    """Base exception for proxy errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UpstreamError(ProxyError):
    """The upstream rejected the call before any stream was handed over."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamStreamError(ProxyError):
    """Reading the upstream body failed mid-stream."""
    pass


class ModelNotFoundError(ProxyError):
    """Raised when the requested model is not in the upstream catalog."""
    pass


class NoApiKeysError(ProxyError):
    """Raised when neither the request nor the config supplies an API key."""
    pass


class InvalidRequestError(ProxyError):
    """Raised when an incoming request is invalid."""

    def __init__(self, message: str, code: str = "invalid_request") -> None:
        super().__init__(message)
        self.code = code
