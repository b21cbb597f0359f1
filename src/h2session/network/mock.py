"""
Mock network implementations for testing.

This module provides mock implementations of NetworkStream and NetworkBackend
that can be used for unit testing without requiring actual network connections.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

from .backend import NetworkBackend
from .stream import NetworkStream


class MockNetworkStream(NetworkStream):
    """
    Mock network stream for testing.

    This implementation simulates a network stream in memory. Reads wait
    until data is added or the remote side is marked closed, like a real
    socket, so an HTTP/2 reader task can sit on it. An optional
    ``on_write`` hook lets a test peer react to every write.
    """

    def __init__(self, data: bytes = b"") -> None:
        """
        Initialize the mock stream.

        Args:
            data: Initial data to be available for reading.
        """
        self._buffer = bytearray(data)
        self._eof = False
        self._closed = False
        self._data_available = asyncio.Event()
        self._extra_info: Dict[str, Any] = {}
        self._write_buffer: List[bytes] = []
        self.on_write: Optional[Callable[[bytes], None]] = None

    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        """
        Read data from the mock stream, waiting until some is available.

        Args:
            max_bytes: Maximum number of bytes to read.

        Returns:
            The data read, or b"" once the remote side is closed.

        Raises:
            RuntimeError: If the stream is closed.
        """
        if self._closed:
            raise RuntimeError("Stream is closed")

        while not self._buffer and not self._eof and not self._closed:
            self._data_available.clear()
            await self._data_available.wait()

        if self._closed:
            raise RuntimeError("Stream is closed")

        if max_bytes is None:
            max_bytes = len(self._buffer)
        result = bytes(self._buffer[:max_bytes])
        del self._buffer[:max_bytes]
        return result

    async def write(self, data: bytes) -> None:
        """
        Write data to the mock stream.

        Args:
            data: The data to write.

        Raises:
            RuntimeError: If the stream is closed.
        """
        if self._closed:
            raise RuntimeError("Stream is closed")

        self._write_buffer.append(data)
        if self.on_write is not None:
            self.on_write(data)

    async def aclose(self) -> None:
        """Close the mock stream."""
        self._closed = True
        self._data_available.set()

    def get_extra_info(self, name: str) -> Optional[Any]:
        return self._extra_info.get(name)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def written_data(self) -> bytes:
        """Get all data that was written to the stream."""
        return b"".join(self._write_buffer)

    def set_extra_info(self, name: str, value: Any) -> None:
        self._extra_info[name] = value

    def add_data(self, data: bytes) -> None:
        """
        Add data to be available for reading.

        Args:
            data: The data to add.
        """
        self._buffer += data
        self._data_available.set()

    def feed_eof(self) -> None:
        """Simulate the remote side closing the connection."""
        self._eof = True
        self._data_available.set()


class MockNetworkBackend(NetworkBackend):
    """
    Mock network backend for testing.

    Connections are created by ``stream_factory`` (a plain
    MockNetworkStream by default) and remembered per (host, port).
    """

    def __init__(
        self,
        stream_factory: Optional[Callable[[], MockNetworkStream]] = None,
        alpn_protocol: Optional[str] = None,
    ) -> None:
        self._stream_factory = stream_factory or MockNetworkStream
        self._alpn_protocol = alpn_protocol
        self._connections: Dict[Tuple[str, int], MockNetworkStream] = {}
        self._connection_count = 0

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None
    ) -> MockNetworkStream:
        stream = self._stream_factory()
        stream.set_extra_info("peername", (host, port))
        stream.set_extra_info("sockname", ("127.0.0.1", 12345))
        stream.set_extra_info("ssl_object", False)
        self._connections[(host, port)] = stream
        self._connection_count += 1
        return stream

    async def connect_tls(
        self,
        stream: NetworkStream,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        alpn_protocols: Optional[List[str]] = None,
    ) -> NetworkStream:
        """
        Mark a mock stream as TLS.

        The negotiated protocol is ``alpn_protocol`` when the backend was
        built with one, otherwise the first offered protocol.
        """
        if not isinstance(stream, MockNetworkStream):
            raise TypeError("MockNetworkBackend can only upgrade mock streams")
        selected = self._alpn_protocol
        if selected is None:
            selected = alpn_protocols[0] if alpn_protocols else "http/1.1"
        stream.set_extra_info("ssl_object", True)
        stream.set_extra_info("selected_alpn_protocol", selected)
        return stream

    def get_connection(self, host: str, port: int) -> Optional[MockNetworkStream]:
        return self._connections.get((host, port))

    @property
    def connection_count(self) -> int:
        return self._connection_count

    def reset(self) -> None:
        """Reset all mock connections."""
        self._connections.clear()
        self._connection_count = 0
