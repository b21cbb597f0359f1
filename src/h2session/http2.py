"""
HTTP/2 connection implementation for h2session.

This module implements the HTTP2Connection class that multiplexes
request streams over a single NetworkStream using the ``h2`` state
machine, and the HTTP2Stream handle each request works through.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import h2.config
import h2.connection
import h2.errors
import h2.events
import h2.exceptions
import h2.settings

from .events import (
    DataReceived,
    HeadersReceived,
    StreamEnded,
    StreamEvent,
    StreamFailed,
    TrailersReceived,
)
from .exceptions import StreamResetError, TransportError
from .http_primitives import Headers
from .network.stream import NetworkStream

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """States of an HTTP/2 connection."""
    NEW = "new"           # Connection created, preface not yet sent
    ACTIVE = "active"     # Connection accepting new streams
    CLOSED = "closed"     # Connection closed, cannot be reused


class HTTP2Stream:
    """
    One request/response exchange on an HTTP2Connection.

    Events from the peer are queued in arrival order and consumed with
    ``next_event``. Closing is idempotent; a stream the peer has not
    finished is reset with CANCEL.
    """

    def __init__(self, connection: "HTTP2Connection", stream_id: int) -> None:
        self._connection = connection
        self.stream_id = stream_id
        self._events: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        self._terminal_queued = False
        self._peer_closed = False
        self._local_ended = False
        self._closed = False
        self._close_callbacks: List[Callable[["HTTP2Stream"], None]] = []

    def _put(self, event: StreamEvent) -> None:
        if self._terminal_queued:
            return
        if isinstance(event, (StreamEnded, StreamFailed)):
            self._terminal_queued = True
        self._events.put_nowait(event)

    async def next_event(self) -> StreamEvent:
        """Wait for the next event from the peer."""
        return await self._events.get()

    async def write(self, data: bytes) -> None:
        """Send body data, honouring the peer's flow-control window."""
        await self._connection._send_data(self, data)

    async def end(self) -> None:
        """Half-close the stream from our side."""
        if self._closed:
            raise TransportError(f"stream {self.stream_id} is closed")
        await self._connection._end_stream(self.stream_id)
        self._local_ended = True

    async def acknowledge(self, size: int) -> None:
        """Return ``size`` consumed bytes to the peer's send window."""
        if size:
            await self._connection._acknowledge(self.stream_id, size)

    def abort(self, error: Exception) -> None:
        """Fail the stream with ``error`` and release it immediately."""
        self._put(StreamFailed(error))
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        finished = self._peer_closed and self._local_ended
        self._connection._close_stream(
            self.stream_id,
            reset=not finished,
            unread=self._discard_unread(),
        )
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback(self)

    def _discard_unread(self) -> int:
        """Drop queued DATA and return its flow-controlled size; other events stay queued."""
        unread = 0
        kept = []
        while not self._events.empty():
            event = self._events.get_nowait()
            if isinstance(event, DataReceived):
                unread += event.flow_controlled_length
            else:
                kept.append(event)
        for event in kept:
            self._events.put_nowait(event)
        return unread

    def add_close_callback(self, callback: Callable[["HTTP2Stream"], None]) -> None:
        """Run ``callback`` once when the stream closes (now, if it already has)."""
        if self._closed:
            callback(self)
        else:
            self._close_callbacks.append(callback)

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"<HTTP2Stream id={self.stream_id} closed={self._closed}>"


class HTTP2Connection:
    """
    HTTP/2 connection manager.

    This class manages a single HTTP/2 connection over a NetworkStream.
    A background reader task feeds received bytes into the h2 state
    machine and dispatches the resulting events to the open streams.
    """

    DEFAULT_READ_SIZE = 65536  # 64KB reads

    def __init__(
        self,
        stream: NetworkStream,
        scheme: str = "https",
        authority: str = "",
        read_size: Optional[int] = None,
    ) -> None:
        """
        Initialize HTTP/2 connection.

        Args:
            stream: The NetworkStream to use for communication
            scheme: Value for the ``:scheme`` pseudo-header
            authority: Value for the ``:authority`` pseudo-header
            read_size: Maximum bytes per network read
        """
        self._stream = stream
        self.scheme = scheme
        self.authority = authority
        self._read_size = read_size or self.DEFAULT_READ_SIZE

        config = h2.config.H2Configuration(client_side=True, header_encoding="utf-8")
        self._h2 = h2.connection.H2Connection(config=config)
        self._h2.local_settings = h2.settings.Settings(
            client=True,
            initial_values={h2.settings.SettingCodes.ENABLE_PUSH: 0},
        )

        self._state = ConnectionState.NEW
        self._error: Optional[Exception] = None
        self._streams: Dict[int, HTTP2Stream] = {}
        self._write_lock = asyncio.Lock()
        self._window_updated = asyncio.Event()
        self._read_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        # Metrics
        self._streams_opened = 0
        self._bytes_sent = 0
        self._bytes_received = 0
        self._errors_count = 0

        logger.debug("HTTP/2 connection initialized")

    async def start(self) -> None:
        """Send the connection preface and start reading."""
        if self._state != ConnectionState.NEW:
            raise TransportError("Connection already started")
        self._h2.initiate_connection()
        await self._flush()
        self._state = ConnectionState.ACTIVE
        self._read_task = asyncio.create_task(self._read_loop())
        logger.debug(f"HTTP/2 connection to {self.authority} started")

    async def open_stream(
        self,
        headers: Sequence[Tuple[str, str]],
        end_stream: bool = False,
    ) -> HTTP2Stream:
        """
        Open a request stream by sending its header block.

        Args:
            headers: Pseudo-headers first, then regular headers
            end_stream: True when the request has no body

        Returns:
            The new HTTP2Stream

        Raises:
            TransportError: If the connection is unusable or refuses the stream
        """
        self._ensure_active()
        stream_id = self._h2.get_next_available_stream_id()
        stream = HTTP2Stream(self, stream_id)
        stream._local_ended = end_stream
        self._streams[stream_id] = stream
        try:
            self._h2.send_headers(stream_id, headers, end_stream=end_stream)
        except h2.exceptions.ProtocolError as e:
            self._streams.pop(stream_id, None)
            self._errors_count += 1
            raise TransportError(f"Cannot open stream {stream_id}: {e}", cause=e) from e
        self._streams_opened += 1
        await self._flush()
        logger.debug(f"Opened stream {stream_id}")
        return stream

    async def _send_data(self, stream: HTTP2Stream, data: bytes) -> None:
        while data:
            if stream.closed:
                raise TransportError(f"stream {stream.stream_id} is closed")
            self._ensure_active()
            try:
                window = self._h2.local_flow_control_window(stream.stream_id)
            except h2.exceptions.ProtocolError as e:
                raise TransportError(f"Cannot write to stream {stream.stream_id}", cause=e) from e

            if window <= 0:
                self._window_updated.clear()
                await self._window_updated.wait()
                continue

            size = min(len(data), window, self._h2.max_outbound_frame_size)
            chunk, data = data[:size], data[size:]
            try:
                self._h2.send_data(stream.stream_id, chunk)
            except h2.exceptions.ProtocolError as e:
                raise TransportError(f"Cannot write to stream {stream.stream_id}", cause=e) from e
            await self._flush()

    async def _end_stream(self, stream_id: int) -> None:
        self._ensure_active()
        try:
            self._h2.end_stream(stream_id)
        except h2.exceptions.ProtocolError as e:
            raise TransportError(f"Cannot end stream {stream_id}", cause=e) from e
        await self._flush()

    async def _acknowledge(self, stream_id: int, size: int) -> None:
        if self._state != ConnectionState.ACTIVE:
            return
        self._h2.acknowledge_received_data(size, stream_id)
        await self._flush()

    def _close_stream(self, stream_id: int, reset: bool, unread: int = 0) -> None:
        self._streams.pop(stream_id, None)
        # Wake senders blocked on flow control so they notice the close
        self._window_updated.set()
        if self._state != ConnectionState.ACTIVE:
            return

        pending = False
        if unread:
            # Data nobody will read still counts against the connection window
            self._h2.acknowledge_received_data(unread, stream_id)
            logger.debug(f"Released {unread} unread bytes of stream {stream_id}")
            pending = True
        if reset:
            try:
                self._h2.reset_stream(stream_id, error_code=h2.errors.ErrorCodes.CANCEL)
            except h2.exceptions.StreamClosedError:
                pass
            else:
                logger.debug(f"Reset stream {stream_id}")
                pending = True
        if pending:
            self._flush_soon()

    def _flush_soon(self) -> None:
        task = asyncio.get_running_loop().create_task(self._flush_quietly())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _flush_quietly(self) -> None:
        try:
            await self._flush()
        except TransportError as e:
            logger.debug(f"Deferred flush failed: {e}")

    async def _flush(self) -> None:
        async with self._write_lock:
            data = self._h2.data_to_send()
            if not data or self._stream.is_closed:
                return
            try:
                await self._stream.write(data)
            except (OSError, RuntimeError) as e:
                self._errors_count += 1
                error = TransportError(f"Write failed: {e}", cause=e)
                self._fail(error)
                raise error from e
            self._bytes_sent += len(data)

    async def _read_loop(self) -> None:
        try:
            while True:
                data = await self._stream.read(self._read_size)
                if not data:
                    self._fail(TransportError("Connection closed by peer"))
                    return
                self._bytes_received += len(data)

                try:
                    events = self._h2.receive_data(data)
                except h2.exceptions.ProtocolError as e:
                    self._errors_count += 1
                    self._fail(TransportError(f"Peer violated HTTP/2: {e}", cause=e))
                    return

                for event in events:
                    self._handle_event(event)
                await self._flush()
        except TransportError as e:
            logger.debug(f"Reader stopped: {e}")
        except (OSError, RuntimeError) as e:
            if self._state != ConnectionState.CLOSED:
                self._errors_count += 1
                self._fail(TransportError(f"Read failed: {e}", cause=e))

    def _handle_event(self, event: h2.events.Event) -> None:
        if isinstance(event, (h2.events.WindowUpdated, h2.events.RemoteSettingsChanged)):
            self._window_updated.set()
            return

        if isinstance(event, h2.events.ConnectionTerminated):
            self._fail(TransportError(
                f"Connection terminated by peer (error code {int(event.error_code)})"
            ))
            return

        stream_id = getattr(event, "stream_id", None)
        if not stream_id:
            return
        stream = self._streams.get(stream_id)
        if stream is None:
            if isinstance(event, h2.events.DataReceived):
                # Keep the connection window open for streams we abandoned
                self._h2.acknowledge_received_data(event.flow_controlled_length, stream_id)
            return

        if isinstance(event, h2.events.ResponseReceived):
            stream._put(HeadersReceived(
                Headers(event.headers),
                stream_ended=event.stream_ended is not None,
            ))
        elif isinstance(event, h2.events.InformationalResponseReceived):
            logger.debug(f"Stream {stream_id}: informational response ignored")
        elif isinstance(event, h2.events.DataReceived):
            stream._put(DataReceived(event.data, event.flow_controlled_length))
        elif isinstance(event, h2.events.TrailersReceived):
            stream._put(TrailersReceived(Headers(event.headers)))
        elif isinstance(event, h2.events.StreamEnded):
            stream._peer_closed = True
            stream._put(StreamEnded())
        elif isinstance(event, h2.events.StreamReset):
            stream._peer_closed = True
            self._window_updated.set()
            stream._put(StreamFailed(StreamResetError(stream_id, int(event.error_code))))

    def _fail(self, error: Exception) -> None:
        """Mark the connection dead and fail every open stream with ``error``."""
        if self._state == ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED
        self._error = error
        self._window_updated.set()
        streams = list(self._streams.values())
        if streams:
            logger.debug(f"Failing {len(streams)} open streams: {error}")
        for stream in streams:
            stream.abort(error)

    def _ensure_active(self) -> None:
        if self._state == ConnectionState.ACTIVE:
            return
        if self._error is not None:
            raise TransportError("Connection is closed", cause=self._error)
        raise TransportError(f"Connection is {self._state.value}")

    async def close(self) -> None:
        """
        Close the connection and cleanup resources.

        Open streams fail with TransportError before GOAWAY is sent.
        """
        if self._state == ConnectionState.CLOSED and self._stream.is_closed:
            return

        was_active = self._state == ConnectionState.ACTIVE
        self._fail(TransportError("Connection closed"))

        if was_active and not self._stream.is_closed:
            try:
                self._h2.close_connection()
                await self._flush()
            except (h2.exceptions.ProtocolError, TransportError) as e:
                logger.warning(f"Error sending GOAWAY: {e}")

        if self._read_task is not None:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass

        await self._stream.aclose()
        logger.debug(f"Connection closed after {self._streams_opened} streams")

    @property
    def is_closed(self) -> bool:
        """Check if connection is closed."""
        return self._state == ConnectionState.CLOSED

    @property
    def is_active(self) -> bool:
        """Check if connection accepts new streams."""
        return self._state == ConnectionState.ACTIVE

    @property
    def open_streams(self) -> int:
        return len(self._streams)

    @property
    def metrics(self) -> Dict[str, Any]:
        """
        Get connection metrics.

        Returns:
            Dictionary with connection metrics
        """
        return {
            "streams_opened": self._streams_opened,
            "open_streams": len(self._streams),
            "bytes_sent": self._bytes_sent,
            "bytes_received": self._bytes_received,
            "errors_count": self._errors_count,
            "state": self._state.value,
        }
