"""
Session client.

A SessionClient owns one HTTP/2 connection to a single origin and runs
every request through a RequestPipeline on it. Requests share the
connection concurrently; closing the session aborts whatever is still
in flight.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Union

from .cookies import CookieJar
from .exceptions import ProtocolError, TransportError
from .http2 import HTTP2Connection, HTTP2Stream
from .http_primitives import RequestDescriptor
from .network import AsyncioNetworkBackend, NetworkBackend, format_host_header, parse_url
from .pipeline import RequestPipeline

logger = logging.getLogger(__name__)

DescriptorInput = Union[RequestDescriptor, str]


class SessionClient:
    """
    High-level HTTP/2 client bound to one origin.

    Shorthands differ only in the defaults they fill in; anything the
    caller set explicitly on the descriptor wins:

    - ``get`` / ``post``: method
    - ``full_request`` / ``full_get`` / ``full_post``: return the Response
    - ``simple_request`` / ``simple_get`` / ``simple_post``: return the body
    """

    def __init__(
        self,
        connection: HTTP2Connection,
        url: str,
        jar: Optional[CookieJar] = None,
    ) -> None:
        """
        Initialize a session over an already started connection.

        Args:
            connection: Started HTTP2Connection to the session origin
            url: The URL the session was opened for
            jar: Session-wide cookie jar
        """
        self._connection = connection
        self.url = url
        self.jar = jar
        self._in_flight: Dict[int, HTTP2Stream] = {}
        self._pipeline = RequestPipeline(connection, jar=jar, in_flight=self._in_flight)
        self._closed = False

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        jar: Optional[CookieJar] = None,
        backend: Optional[NetworkBackend] = None,
        connect_timeout: Optional[float] = None,
    ) -> "SessionClient":
        """
        Open a session to the origin of ``url``.

        ``https`` negotiates h2 through ALPN; ``http`` speaks h2c with
        prior knowledge.

        Raises:
            TransportError: If the TCP or TLS connection cannot be established
            ProtocolError: If the server does not negotiate h2
        """
        scheme, host, port, _ = parse_url(url)
        backend = backend or AsyncioNetworkBackend()

        try:
            stream = await backend.connect_tcp(host, port, timeout=connect_timeout)
            if scheme == "https":
                stream = await backend.connect_tls(
                    stream, host, port, timeout=connect_timeout, alpn_protocols=["h2"]
                )
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"Failed to connect to {host}:{port}: {e}", cause=e) from e

        if scheme == "https":
            negotiated = stream.get_extra_info("selected_alpn_protocol")
            if negotiated != "h2":
                await stream.aclose()
                raise ProtocolError(f"{host}:{port} did not negotiate h2 (got {negotiated!r})")

        connection = HTTP2Connection(
            stream,
            scheme=scheme,
            authority=format_host_header(host, port, scheme),
        )
        try:
            await connection.start()
        except TransportError:
            await connection.close()
            raise
        logger.debug(f"Session opened to {scheme}://{host}:{port}")
        return cls(connection, url, jar=jar)

    def _descriptor(self, descriptor: DescriptorInput, options: Dict[str, Any]) -> RequestDescriptor:
        if isinstance(descriptor, RequestDescriptor):
            return replace(descriptor, **options) if options else descriptor
        return RequestDescriptor(path=descriptor, **options)

    async def request(self, descriptor: DescriptorInput, **options: Any) -> Any:
        """
        Execute a request.

        Args:
            descriptor: A RequestDescriptor, or a path
            **options: RequestDescriptor fields, applied on top of ``descriptor``

        Returns:
            The decoded body, or the Response when ``full_response`` is set
        """
        if self._closed:
            raise TransportError("Session is closed")
        return await self._pipeline.execute(self._descriptor(descriptor, options))

    async def get(self, descriptor: DescriptorInput, **options: Any) -> Any:
        return await self.request(self._descriptor(descriptor, options).with_defaults(method="GET"))

    async def post(self, descriptor: DescriptorInput, **options: Any) -> Any:
        return await self.request(self._descriptor(descriptor, options).with_defaults(method="POST"))

    async def full_request(self, descriptor: DescriptorInput, **options: Any) -> Any:
        return await self.request(
            self._descriptor(descriptor, options).with_defaults(full_response=True)
        )

    async def full_get(self, descriptor: DescriptorInput, **options: Any) -> Any:
        return await self.request(
            self._descriptor(descriptor, options).with_defaults(method="GET", full_response=True)
        )

    async def full_post(self, descriptor: DescriptorInput, **options: Any) -> Any:
        return await self.request(
            self._descriptor(descriptor, options).with_defaults(method="POST", full_response=True)
        )

    async def simple_request(self, descriptor: DescriptorInput, **options: Any) -> Any:
        return await self.request(
            self._descriptor(descriptor, options).with_defaults(full_response=False)
        )

    async def simple_get(self, descriptor: DescriptorInput, **options: Any) -> Any:
        return await self.request(
            self._descriptor(descriptor, options).with_defaults(method="GET", full_response=False)
        )

    async def simple_post(self, descriptor: DescriptorInput, **options: Any) -> Any:
        return await self.request(
            self._descriptor(descriptor, options).with_defaults(method="POST", full_response=False)
        )

    async def close(self) -> None:
        """
        Abort every in-flight request, then close the connection.

        Pending requests fail with TransportError. Calling close again
        does nothing.
        """
        if self._closed:
            return
        self._closed = True

        streams = list(self._in_flight.values())
        error = TransportError("Session closed")
        for stream in streams:
            stream.abort(error)
        self._in_flight.clear()
        if streams:
            logger.debug(f"Aborted {len(streams)} in-flight streams")

        await self._connection.close()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def metrics(self) -> Dict[str, Any]:
        """Get connection metrics."""
        return self._connection.metrics

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
