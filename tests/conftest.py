"""
Pytest configuration for h2session tests.

This file contains shared fixtures and configuration for all tests,
including an in-memory HTTP/2 server peer built on ``h2`` that sits on
the far side of a MockNetworkStream.
"""

import gzip
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

import h2.config
import h2.connection
import h2.events
import h2.exceptions
import pytest
import pytest_asyncio

from h2session.client import SessionClient
from h2session.cookies import MemoryCookieJar
from h2session.http2 import HTTP2Connection
from h2session.network.mock import MockNetworkStream


@dataclass
class ReceivedRequest:
    """A request as seen by the test server."""

    stream_id: int
    headers: List[Tuple[str, str]]
    body: bytearray = field(default_factory=bytearray)

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key == name:
                return value
        return None

    def header_list(self, name: str) -> List[str]:
        return [value for key, value in self.headers if key == name]

    @property
    def method(self) -> Optional[str]:
        return self.header(":method")

    @property
    def path(self) -> Optional[str]:
        return self.header(":path")


@dataclass
class Reply:
    """What the test server answers on a route."""

    status: int = 200
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    trailers: Optional[List[Tuple[str, str]]] = None
    end_stream: bool = True
    hold: bool = False


Handler = Union[Reply, Callable[[ReceivedRequest], Reply]]


class H2TestServer:
    """
    In-memory HTTP/2 server.

    Every write the client makes to ``stream`` is fed into a server-side
    h2 state machine; whatever the server has to send is queued back as
    readable data on the same stream. Routes match on the path without
    its query string.
    """

    def __init__(self, stream: MockNetworkStream) -> None:
        config = h2.config.H2Configuration(client_side=False, header_encoding="utf-8")
        self.conn = h2.connection.H2Connection(config=config)
        self.stream = stream
        self.routes: Dict[str, Handler] = {}
        self.requests: Dict[int, ReceivedRequest] = {}
        self.completed: List[ReceivedRequest] = []
        self.reset_streams: List[int] = []
        self.terminated = False
        self.errors: List[Exception] = []

        self.conn.initiate_connection()
        self._flush()
        stream.on_write = self.receive

    def route(self, path: str, handler: Handler) -> None:
        self.routes[path] = handler

    def receive(self, data: bytes) -> None:
        if self.terminated:
            return
        try:
            events = self.conn.receive_data(data)
        except h2.exceptions.ProtocolError as e:
            self.errors.append(e)
            self._flush()
            return

        for event in events:
            if isinstance(event, h2.events.RequestReceived):
                self.requests[event.stream_id] = ReceivedRequest(event.stream_id, list(event.headers))
            elif isinstance(event, h2.events.DataReceived):
                self.requests[event.stream_id].body += event.data
                self.conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
            elif isinstance(event, h2.events.StreamEnded):
                self._respond(event.stream_id)
            elif isinstance(event, h2.events.StreamReset):
                self.reset_streams.append(event.stream_id)
            elif isinstance(event, h2.events.ConnectionTerminated):
                self.terminated = True
        self._flush()

    def _respond(self, stream_id: int) -> None:
        request = self.requests[stream_id]
        self.completed.append(request)
        handler = self.routes.get((request.path or "").split("?")[0])
        if handler is None:
            reply = Reply(status=404)
        elif callable(handler):
            reply = handler(request)
        else:
            reply = handler
        if reply.hold:
            return

        headers = [(":status", str(reply.status))] + list(reply.headers)
        ends_with_headers = reply.end_stream and not reply.body and not reply.trailers
        self.conn.send_headers(stream_id, headers, end_stream=ends_with_headers)
        if reply.body:
            self.send_data(stream_id, reply.body, end_stream=reply.end_stream and not reply.trailers)
        if reply.trailers:
            self.conn.send_headers(stream_id, reply.trailers, end_stream=True)

    def send_data(self, stream_id: int, data: bytes, end_stream: bool = False) -> None:
        """Send body data in frame-sized chunks (bodies must fit the window)."""
        size = self.conn.max_outbound_frame_size
        chunks = [data[i:i + size] for i in range(0, len(data), size)] or [b""]
        for index, chunk in enumerate(chunks):
            last = index == len(chunks) - 1
            self.conn.send_data(stream_id, chunk, end_stream=end_stream and last)
        self._flush()

    def end(self, stream_id: int) -> None:
        self.conn.end_stream(stream_id)
        self._flush()

    def reset(self, stream_id: int, error_code: int = 2) -> None:
        self.conn.reset_stream(stream_id, error_code=error_code)
        self._flush()

    def goaway(self) -> None:
        self.conn.close_connection()
        self._flush()

    def _flush(self) -> None:
        data = self.conn.data_to_send()
        if data:
            self.stream.add_data(data)

    @property
    def last_request(self) -> ReceivedRequest:
        return self.completed[-1]


class FakeHTTP2Stream:
    """Scripted stand-in for HTTP2Stream that replays a fixed event list."""

    def __init__(self, events, stream_id: int = 1) -> None:
        self.stream_id = stream_id
        self._events = list(events)
        self.acknowledged: List[int] = []
        self.written: List[bytes] = []
        self.ended = False
        self.close_count = 0

    async def next_event(self):
        if not self._events:
            raise AssertionError("no scripted events left")
        return self._events.pop(0)

    async def acknowledge(self, size: int) -> None:
        self.acknowledged.append(size)

    async def write(self, data: bytes) -> None:
        self.written.append(data)

    async def end(self) -> None:
        self.ended = True

    def close(self) -> None:
        self.close_count += 1

    @property
    def closed(self) -> bool:
        return self.close_count > 0


def json_reply(body: bytes, status: int = 200) -> Reply:
    return Reply(status=status, headers=[("content-type", "application/json")], body=body)


def gzip_reply(body: bytes, content_type: str = "text/plain") -> Reply:
    return Reply(
        headers=[("content-type", content_type), ("content-encoding", "gzip")],
        body=gzip.compress(body),
    )


@pytest.fixture
def network_stream():
    """Create a mock network stream."""
    return MockNetworkStream()


@pytest.fixture
def server(network_stream):
    """Create an in-memory HTTP/2 server on the mock stream."""
    return H2TestServer(network_stream)


@pytest_asyncio.fixture
async def connection(network_stream, server):
    """Create a started HTTP/2 connection to the test server."""
    conn = HTTP2Connection(network_stream, scheme="https", authority="example.com")
    await conn.start()
    yield conn
    await conn.close()


@pytest.fixture
def fake_stream():
    """Create a scripted HTTP/2 stream from a list of events."""
    def _create(events, stream_id: int = 1) -> FakeHTTP2Stream:
        return FakeHTTP2Stream(events, stream_id)
    return _create


@pytest.fixture
def jar():
    """Create an empty in-memory cookie jar."""
    return MemoryCookieJar()


@pytest_asyncio.fixture
async def session(connection, jar):
    """Create a session client with a session-wide cookie jar."""
    client = SessionClient(connection, "https://example.com", jar=jar)
    yield client
    await client.close()


@pytest.fixture
def sample_stream_data():
    """Sample stream data for testing."""
    return [
        b"Hello",
        b", ",
        b"World",
        b"!",
    ]


@pytest.fixture
def async_data_generator():
    """Create an async data generator for testing."""
    async def generator(data: List[bytes]):
        for chunk in data:
            yield chunk

    return generator
