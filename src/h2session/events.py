"""
Per-stream events delivered by the HTTP/2 connection.

For one stream the order is always: HeadersReceived, any number of
DataReceived, an optional TrailersReceived, then StreamEnded or
StreamFailed.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .http_primitives import Headers


@dataclass(frozen=True)
class HeadersReceived:
    headers: "Headers"
    stream_ended: bool = False


@dataclass(frozen=True)
class DataReceived:
    data: bytes
    flow_controlled_length: int


@dataclass(frozen=True)
class TrailersReceived:
    headers: "Headers"


@dataclass(frozen=True)
class StreamEnded:
    pass


@dataclass(frozen=True)
class StreamFailed:
    error: Exception


StreamEvent = Union[HeadersReceived, DataReceived, TrailersReceived, StreamEnded, StreamFailed]
