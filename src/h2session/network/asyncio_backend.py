"""
asyncio-based network backend.

Wraps ``asyncio.open_connection`` streams in the NetworkStream interface
and upgrades them in place to TLS with ALPN negotiation.
"""

import asyncio
import logging
from typing import Any, List, Optional

from .backend import NetworkBackend
from .stream import NetworkStream
from .utils import create_ssl_context

logger = logging.getLogger(__name__)


class AsyncioNetworkStream(NetworkStream):
    """Network stream backed by an asyncio StreamReader/StreamWriter pair."""

    DEFAULT_READ_SIZE = 65536

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        if self._closed:
            raise RuntimeError("Stream is closed")
        return await self._reader.read(max_bytes or self.DEFAULT_READ_SIZE)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise RuntimeError("Stream is closed")
        self._writer.write(data)
        await self._writer.drain()

    async def start_tls(
        self,
        host: str,
        alpn_protocols: Optional[List[str]] = None,
    ) -> None:
        """Upgrade this connection to TLS in place."""
        context = create_ssl_context(alpn_protocols=alpn_protocols)
        await self._writer.start_tls(context, server_hostname=host)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing socket: {e}")

    def get_extra_info(self, name: str) -> Optional[Any]:
        ssl_object = self._writer.get_extra_info("ssl_object")
        if name == "ssl_object":
            return ssl_object is not None
        if name == "selected_alpn_protocol":
            return ssl_object.selected_alpn_protocol() if ssl_object is not None else None
        return self._writer.get_extra_info(name)

    @property
    def is_closed(self) -> bool:
        return self._closed


class AsyncioNetworkBackend(NetworkBackend):
    """Network backend using the running asyncio event loop."""

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None
    ) -> AsyncioNetworkStream:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout,
        )
        logger.debug(f"TCP connection established to {host}:{port}")
        return AsyncioNetworkStream(reader, writer)

    async def connect_tls(
        self,
        stream: NetworkStream,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        alpn_protocols: Optional[List[str]] = None,
    ) -> NetworkStream:
        if not isinstance(stream, AsyncioNetworkStream):
            raise TypeError("AsyncioNetworkBackend can only upgrade its own streams")
        await asyncio.wait_for(stream.start_tls(host, alpn_protocols), timeout=timeout)
        logger.debug(
            f"TLS established to {host}:{port} "
            f"(alpn={stream.get_extra_info('selected_alpn_protocol')})"
        )
        return stream
