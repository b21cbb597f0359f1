"""
Streaming framework for h2session.

This module provides streaming abstractions for request and response bodies.
Response streams are pull-driven: data is acknowledged to the peer only as
the consumer reads it, so HTTP/2 flow control follows consumption.
"""

from abc import ABC, abstractmethod
from typing import (
    TYPE_CHECKING,
    AsyncIterable,
    AsyncIterator,
    List,
    Optional,
    Union,
)

from .events import DataReceived, StreamEnded, StreamFailed, TrailersReceived
from .exceptions import H2SessionError, TransportError

if TYPE_CHECKING:
    from .decompression import ContentDecoder
    from .http2 import HTTP2Stream
    from .http_primitives import Headers


class StreamInterface(ABC):
    """
    Base interface for all streams.

    All streams must implement this interface to ensure
    consistent behavior across the library.
    """

    @abstractmethod
    def __aiter__(self) -> "StreamInterface":
        """Return self as async iterator."""
        pass

    @abstractmethod
    async def __anext__(self) -> bytes:
        """Get next chunk of data."""
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """Close the stream and cleanup resources."""
        pass

    async def aread(self) -> bytes:
        """Read entire stream and return as bytes."""
        chunks = []
        async for chunk in self:
            chunks.append(chunk)
        return b"".join(chunks)


class RequestStream(StreamInterface):
    """
    Stream for request bodies.

    Normalizes bytes, a list of byte chunks, or an async iterable into
    one async iterator of non-empty chunks.
    """

    def __init__(
        self,
        data: Union[bytes, List[bytes], AsyncIterable[bytes]],
    ) -> None:
        """
        Initialize RequestStream.

        Args:
            data: The data to stream. Can be bytes, list of bytes, or async iterable
        """
        self._data = data
        self._closed = False
        self._iterator: Optional[AsyncIterator[bytes]] = None

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        if isinstance(self._data, bytes):
            if self._data:
                yield self._data
        elif isinstance(self._data, list):
            for chunk in self._data:
                if chunk:
                    yield chunk
        else:
            async for chunk in self._data:
                if isinstance(chunk, str):
                    chunk = chunk.encode("utf-8")
                if chunk:
                    yield chunk

    def __aiter__(self) -> "RequestStream":
        if self._closed:
            raise TransportError("Cannot iterate over closed stream")
        self._iterator = self._iter_chunks()
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise TransportError("Cannot read from closed stream")
        if self._iterator is None:
            raise RuntimeError("Stream not initialized for iteration")
        return await self._iterator.__anext__()

    async def aclose(self) -> None:
        self._closed = True
        self._iterator = None

    @property
    def closed(self) -> bool:
        return self._closed


class ResponseStream(StreamInterface):
    """
    Live response body handed out in passthrough mode.

    Chunks are decompressed on the fly when a content decoder is
    attached. The underlying HTTP/2 stream is closed once this stream
    ends, fails, or is closed by the consumer.
    """

    def __init__(
        self,
        stream: "HTTP2Stream",
        decoder: Optional["ContentDecoder"] = None,
    ) -> None:
        self._stream = stream
        self._decoder = decoder
        self._finished = False
        self._closed = False
        self._bytes_read = 0
        self.trailers: Optional["Headers"] = None

    def __aiter__(self) -> "ResponseStream":
        if self._closed:
            raise TransportError("Cannot iterate over closed stream")
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise TransportError("Cannot read from closed stream")
        try:
            while not self._finished:
                event = await self._stream.next_event()
                if isinstance(event, DataReceived):
                    await self._stream.acknowledge(event.flow_controlled_length)
                    chunk = self._decode(event.data)
                    if chunk:
                        self._bytes_read += len(chunk)
                        return chunk
                elif isinstance(event, TrailersReceived):
                    self.trailers = event.headers
                elif isinstance(event, StreamEnded):
                    self._finished = True
                    tail = self._decoder.flush() if self._decoder else b""
                    self._stream.close()
                    if tail:
                        self._bytes_read += len(tail)
                        return tail
                elif isinstance(event, StreamFailed):
                    raise event.error
        except H2SessionError:
            self._finished = True
            self._stream.close()
            raise
        raise StopAsyncIteration

    def _decode(self, data: bytes) -> bytes:
        if self._decoder is None:
            return data
        return self._decoder.decode(data)

    async def aclose(self) -> None:
        """Stop reading early and release the underlying stream."""
        if not self._closed:
            self._closed = True
            self._finished = True
            self._stream.close()

    @property
    def stream_id(self) -> int:
        return self._stream.stream_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def bytes_read(self) -> int:
        return self._bytes_read


async def read_stream_to_bytes(stream: AsyncIterable[bytes]) -> bytes:
    """
    Read entire stream and return as bytes.

    Args:
        stream: Async iterable of bytes

    Returns:
        All bytes from the stream concatenated
    """
    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
    return b"".join(chunks)
