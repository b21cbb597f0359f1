"""
Tests for the HTTP/2 connection and stream implementation.
"""

import asyncio

import pytest

from h2session.events import DataReceived, HeadersReceived, StreamEnded, StreamFailed, TrailersReceived
from h2session.exceptions import StreamResetError, TransportError
from h2session.http2 import ConnectionState, HTTP2Connection
from h2session.network.mock import MockNetworkStream

from conftest import Reply


def request_headers(path: str = "/", method: str = "GET"):
    return [
        (":method", method),
        (":scheme", "https"),
        (":authority", "example.com"),
        (":path", path),
    ]


REQUEST_HEADERS = request_headers()


async def drain(stream):
    """Collect events up to and including the terminal one."""
    events = []
    while True:
        event = await stream.next_event()
        events.append(event)
        if isinstance(event, (StreamEnded, StreamFailed)):
            return events


class TestHTTP2ConnectionLifecycle:
    """Test connection setup and teardown."""

    def test_initialization(self):
        conn = HTTP2Connection(MockNetworkStream(), scheme="http", authority="localhost:8080")
        assert conn._state == ConnectionState.NEW
        assert conn.scheme == "http"
        assert conn.authority == "localhost:8080"
        assert not conn.is_active
        assert conn.metrics["streams_opened"] == 0

    @pytest.mark.asyncio
    async def test_start_sends_preface(self, connection, network_stream):
        assert connection.is_active
        assert network_stream.written_data.startswith(b"PRI * HTTP/2.0\r\n\r\nSM\r\n\r\n")

    @pytest.mark.asyncio
    async def test_start_twice(self, connection):
        with pytest.raises(TransportError):
            await connection.start()

    @pytest.mark.asyncio
    async def test_open_stream_before_start(self):
        conn = HTTP2Connection(MockNetworkStream())
        with pytest.raises(TransportError):
            await conn.open_stream(REQUEST_HEADERS, end_stream=True)

    @pytest.mark.asyncio
    async def test_close(self, connection, network_stream, server):
        await connection.close()

        assert connection.is_closed
        assert network_stream.is_closed
        assert server.terminated
        await connection.close()

    @pytest.mark.asyncio
    async def test_open_stream_after_close(self, connection):
        await connection.close()
        with pytest.raises(TransportError):
            await connection.open_stream(REQUEST_HEADERS, end_stream=True)


class TestHTTP2Exchange:
    """Test request/response exchanges on streams."""

    @pytest.mark.asyncio
    async def test_simple_get(self, connection, server):
        server.route("/", Reply(headers=[("content-type", "text/plain")], body=b"hello"))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        events = await drain(stream)

        assert isinstance(events[0], HeadersReceived)
        assert events[0].headers[":status"] == "200"
        assert events[0].headers["content-type"] == "text/plain"
        body = b"".join(event.data for event in events if isinstance(event, DataReceived))
        assert body == b"hello"
        assert isinstance(events[-1], StreamEnded)
        assert server.last_request.method == "GET"

    @pytest.mark.asyncio
    async def test_headers_only_response(self, connection, server):
        server.route("/empty", Reply(status=204))

        stream = await connection.open_stream(request_headers("/empty"), end_stream=True)
        events = await drain(stream)

        assert events[0].stream_ended is True
        assert isinstance(events[-1], StreamEnded)

    @pytest.mark.asyncio
    async def test_request_body(self, connection, server):
        server.route("/upload", Reply(status=201))

        stream = await connection.open_stream(request_headers("/upload", "POST"))
        await stream.write(b"part one, ")
        await stream.write(b"part two")
        await stream.end()
        await drain(stream)

        assert bytes(server.last_request.body) == b"part one, part two"

    @pytest.mark.asyncio
    async def test_large_body_respects_flow_control(self, connection, server):
        """Test a body larger than the initial window and the frame size."""
        server.route("/upload", Reply(status=200))
        payload = bytes(range(256)) * 400  # 100KB

        stream = await connection.open_stream(request_headers("/upload", "POST"))
        await asyncio.wait_for(stream.write(payload), timeout=5.0)
        await stream.end()
        await drain(stream)

        assert bytes(server.last_request.body) == payload

    @pytest.mark.asyncio
    async def test_trailers(self, connection, server):
        server.route("/", Reply(body=b"x", trailers=[("x-checksum", "abc")]))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        events = await drain(stream)

        trailers = [event for event in events if isinstance(event, TrailersReceived)]
        assert trailers[0].headers["x-checksum"] == "abc"

    @pytest.mark.asyncio
    async def test_concurrent_streams(self, connection, server):
        server.route("/a", Reply(body=b"A"))
        server.route("/b", Reply(body=b"B"))

        first = await connection.open_stream(request_headers("/a"), end_stream=True)
        second = await connection.open_stream(request_headers("/b"), end_stream=True)
        first_events, second_events = await asyncio.gather(drain(first), drain(second))

        assert first.stream_id != second.stream_id
        assert first_events[1].data == b"A"
        assert second_events[1].data == b"B"
        assert connection.metrics["streams_opened"] == 2

    @pytest.mark.asyncio
    async def test_acknowledge(self, connection, server):
        server.route("/", Reply(body=b"z" * 1000))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        events = await drain(stream)
        for event in events:
            if isinstance(event, DataReceived):
                await stream.acknowledge(event.flow_controlled_length)

        assert connection.metrics["bytes_received"] > 1000


class TestHTTP2Failures:
    """Test failure propagation to streams."""

    @pytest.mark.asyncio
    async def test_peer_reset(self, connection, server):
        server.route("/", Reply(hold=True))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        await asyncio.sleep(0.01)
        server.reset(stream.stream_id, error_code=2)
        events = await drain(stream)

        assert isinstance(events[-1], StreamFailed)
        assert isinstance(events[-1].error, StreamResetError)
        assert events[-1].error.error_code == 2

    @pytest.mark.asyncio
    async def test_connection_lost(self, connection, server, network_stream):
        server.route("/", Reply(hold=True))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        network_stream.feed_eof()
        events = await drain(stream)

        assert isinstance(events[-1].error, TransportError)
        assert connection.is_closed

    @pytest.mark.asyncio
    async def test_goaway(self, connection, server):
        server.route("/", Reply(hold=True))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        await asyncio.sleep(0.01)
        server.goaway()
        events = await drain(stream)

        assert isinstance(events[-1].error, TransportError)
        assert connection.is_closed

    @pytest.mark.asyncio
    async def test_close_fails_open_streams(self, connection, server):
        server.route("/", Reply(hold=True))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        await connection.close()
        events = await drain(stream)

        assert isinstance(events[-1].error, TransportError)
        assert stream.closed

    @pytest.mark.asyncio
    async def test_close_stream_resets_unfinished(self, connection, server):
        server.route("/", Reply(hold=True))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        closed = []
        stream.add_close_callback(closed.append)
        stream.close()
        stream.close()
        await asyncio.sleep(0.01)

        assert closed == [stream]
        assert connection.open_streams == 0
        assert stream.stream_id in server.reset_streams

    @pytest.mark.asyncio
    async def test_abort(self, connection, server):
        server.route("/", Reply(hold=True))

        stream = await connection.open_stream(REQUEST_HEADERS, end_stream=True)
        error = TransportError("aborted")
        stream.abort(error)

        event = await stream.next_event()
        assert isinstance(event, StreamFailed)
        assert event.error is error
        assert stream.closed

    @pytest.mark.asyncio
    async def test_write_to_closed_stream(self, connection, server):
        stream = await connection.open_stream(request_headers("/upload", "POST"))
        stream.close()

        with pytest.raises(TransportError):
            await stream.write(b"data")
        with pytest.raises(TransportError):
            await stream.end()
