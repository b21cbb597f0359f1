"""
Custom exceptions for h2session.

This module defines the exception hierarchy used throughout
the library for error handling and debugging.
"""

from typing import List, Optional


class H2SessionError(Exception):
    """Base exception for all h2session errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class TransportError(H2SessionError):
    """Raised when the connection or a request stream fails."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Transport error: {message}", cause)


class StreamResetError(TransportError):
    """Raised when the peer resets a request stream."""

    def __init__(self, stream_id: int, error_code: int) -> None:
        super().__init__(f"stream {stream_id} reset by peer (error code {error_code})")
        self.stream_id = stream_id
        self.error_code = error_code


class ProtocolError(H2SessionError):
    """Raised when the peer does not behave like an HTTP/2 server."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Protocol error: {message}", cause)


class PartialResponseError(H2SessionError):
    """Raised when a stream ends without ever delivering response headers."""

    def __init__(self, message: str = "stream ended before headers arrived") -> None:
        super().__init__(f"Partial response: {message}")


class DecodeError(H2SessionError):
    """
    Raised when a response body cannot be decoded.

    The undecoded bytes stay available on ``content`` so callers
    can retry decoding in a different mode.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        content: Optional[bytes] = None,
    ) -> None:
        super().__init__(f"Decode error: {message}", cause)
        self.content = content


class JarError(H2SessionError):
    """Raised by cookie jars when a cookie cannot be read or stored."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Cookie jar error: {message}", cause)


class CookieRejectionError(H2SessionError):
    """Raised in strict-cookie mode when any response cookie was not stored."""

    def __init__(
        self,
        errors: List[Exception],
        message: str = "Some cookies couldn't be set",
    ) -> None:
        super().__init__(message)
        self.errors = list(errors)
