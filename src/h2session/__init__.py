"""
h2session - HTTP/2 session client

A request/response convenience layer over a single multiplexed HTTP/2
connection: declarative request descriptors, form and multipart bodies,
cookie jars, transparent decompression, and body decoding.
"""

__version__ = "0.1.0"
__author__ = "Developer"
__email__ = "dev@example.com"

# Import main components for easy access
from .client import SessionClient
from .collector import StreamCollector
from .cookies import CookieJar, MemoryCookieJar
from .decoder import build_response, decode_body, resolve_mode
from .exceptions import (
    CookieRejectionError,
    DecodeError,
    H2SessionError,
    JarError,
    PartialResponseError,
    ProtocolError,
    StreamResetError,
    TransportError,
)
from .forms import FormField, MultipartForm, encode_form
from .http2 import ConnectionState, HTTP2Connection, HTTP2Stream
from .http_primitives import (
    BytesBody,
    DecodeDirective,
    DecodeMode,
    Headers,
    RawResponse,
    RequestBody,
    RequestDescriptor,
    Response,
    StreamBody,
    TextBody,
)
from .pipeline import RequestPipeline
from .streams import RequestStream, ResponseStream, read_stream_to_bytes

__all__ = [
    "SessionClient",
    "RequestPipeline",
    "StreamCollector",
    "HTTP2Connection",
    "HTTP2Stream",
    "ConnectionState",
    "RequestDescriptor",
    "DecodeDirective",
    "DecodeMode",
    "Headers",
    "RequestBody",
    "BytesBody",
    "TextBody",
    "StreamBody",
    "RawResponse",
    "Response",
    "resolve_mode",
    "decode_body",
    "build_response",
    "CookieJar",
    "MemoryCookieJar",
    "encode_form",
    "FormField",
    "MultipartForm",
    "RequestStream",
    "ResponseStream",
    "read_stream_to_bytes",
    "H2SessionError",
    "TransportError",
    "StreamResetError",
    "ProtocolError",
    "PartialResponseError",
    "DecodeError",
    "JarError",
    "CookieRejectionError",
]
