"""
Tests for SessionClient.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from h2session.client import SessionClient
from h2session.exceptions import ProtocolError, TransportError
from h2session.http_primitives import DecodeDirective, RequestDescriptor, Response
from h2session.network.mock import MockNetworkBackend, MockNetworkStream

from conftest import H2TestServer, Reply, json_reply


class ServerBackend(MockNetworkBackend):
    """Mock backend whose every connection is answered by an H2TestServer."""

    def __init__(self, alpn_protocol=None):
        self.servers = []
        super().__init__(stream_factory=self._create_stream, alpn_protocol=alpn_protocol)

    def _create_stream(self):
        stream = MockNetworkStream()
        self.servers.append(H2TestServer(stream))
        return stream

    @property
    def server(self):
        return self.servers[-1]


class TestConnect:
    """Test session establishment."""

    @pytest.mark.asyncio
    async def test_connect_https(self):
        backend = ServerBackend()

        client = await SessionClient.connect("https://example.com/base", backend=backend)
        backend.server.route("/hello", Reply(headers=[("content-type", "text/plain")], body=b"hi"))
        try:
            assert await client.simple_get("/hello") == "hi"
            stream = backend.get_connection("example.com", 443)
            assert stream.get_extra_info("selected_alpn_protocol") == "h2"
            assert backend.server.last_request.header(":scheme") == "https"
            assert backend.server.last_request.header(":authority") == "example.com"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_connect_h2c_prior_knowledge(self):
        backend = ServerBackend()

        async with await SessionClient.connect("http://localhost:8080", backend=backend) as client:
            backend.server.route("/", Reply())
            await client.get("/")
            stream = backend.get_connection("localhost", 8080)
            assert stream.get_extra_info("ssl_object") is False
            assert backend.server.last_request.header(":scheme") == "http"
            assert backend.server.last_request.header(":authority") == "localhost:8080"

        assert client.is_closed

    @pytest.mark.asyncio
    async def test_connect_requires_h2(self):
        backend = ServerBackend(alpn_protocol="http/1.1")

        with pytest.raises(ProtocolError):
            await SessionClient.connect("https://example.com", backend=backend)

        assert backend.get_connection("example.com", 443).is_closed

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        backend = AsyncMock()
        backend.connect_tcp.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(TransportError) as exc_info:
            await SessionClient.connect("https://example.com", backend=backend, connect_timeout=1.0)

        assert isinstance(exc_info.value.cause, ConnectionRefusedError)
        backend.connect_tcp.assert_awaited_once_with("example.com", 443, timeout=1.0)

    @pytest.mark.asyncio
    async def test_connect_passes_jar(self, jar):
        backend = ServerBackend()
        client = await SessionClient.connect("https://example.com", jar=jar, backend=backend)
        try:
            backend.server.route("/", Reply(headers=[("set-cookie", "a=1")]))
            await client.get("/")
            assert jar.get("a") == "1"
        finally:
            await client.close()


class TestShorthands:
    """Test the request shorthands and their defaults."""

    @pytest.mark.asyncio
    async def test_simple_get_and_full_get(self, session, server):
        server.route("/data", json_reply(b'{"a":1}'))

        body = await session.simple_get("/data")
        response = await session.full_get("/data")

        assert body == {"a": 1}
        assert isinstance(response, Response)
        assert response.status_code == 200
        assert response.body == {"a": 1}
        assert response.header("content-type") == "application/json"

    @pytest.mark.asyncio
    async def test_get_and_post_methods(self, session, server):
        server.route("/", Reply())

        await session.get("/")
        assert server.last_request.method == "GET"

        await session.post("/", body=b"x")
        assert server.last_request.method == "POST"

    @pytest.mark.asyncio
    async def test_caller_method_wins(self, session, server):
        server.route("/", Reply())

        await session.post(RequestDescriptor("/", method="PUT", body=b"x"))
        assert server.last_request.method == "PUT"

    @pytest.mark.asyncio
    async def test_caller_full_response_wins(self, session, server):
        server.route("/", Reply(headers=[("content-type", "text/plain")], body=b"body"))

        result = await session.full_request("/", decode=DecodeDirective(full_response=False))
        assert result == "body"

        result = await session.simple_request("/", decode=DecodeDirective(full_response=True))
        assert isinstance(result, Response)

    @pytest.mark.asyncio
    async def test_full_post_form(self, session, server):
        server.route("/form", Reply(status=201))

        response = await session.full_post("/form", form={"a": 1, "b": "x"})

        assert response.status_code == 201
        assert bytes(server.last_request.body) == b"a=1&b=x"

    @pytest.mark.asyncio
    async def test_simple_post(self, session, server):
        server.route("/echo", lambda request: Reply(
            headers=[("content-type", "text/plain")],
            body=bytes(request.body),
        ))

        assert await session.simple_post("/echo", body="ping") == "ping"

    @pytest.mark.asyncio
    async def test_request_with_descriptor_and_options(self, session, server):
        server.route("/items", Reply())
        descriptor = RequestDescriptor("/items", query={"page": 1})

        await session.request(descriptor, query={"page": 2})

        assert server.last_request.path == "/items?page=2"
        assert descriptor.query == {"page": 1}

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, session, server):
        server.route("/slow", Reply(hold=True))
        server.route("/a", Reply(headers=[("content-type", "text/plain")], body=b"A"))
        server.route("/b", Reply(headers=[("content-type", "text/plain")], body=b"B"))

        slow = asyncio.create_task(session.get("/slow"))
        results = await asyncio.gather(session.get("/a"), session.get("/b"))

        assert results == ["A", "B"]
        assert not slow.done()
        assert session.in_flight == 1

        await session.close()
        with pytest.raises(TransportError):
            await slow


class TestClose:
    """Test session shutdown."""

    @pytest.mark.asyncio
    async def test_close_rejects_pending_requests(self, session, server):
        server.route("/hang", Reply(hold=True))

        pending = [asyncio.create_task(session.get("/hang")) for _ in range(3)]
        await asyncio.sleep(0.01)
        assert session.in_flight == 3

        await session.close()

        results = await asyncio.gather(*pending, return_exceptions=True)
        assert all(isinstance(result, TransportError) for result in results)
        assert session.in_flight == 0
        assert server.terminated

    @pytest.mark.asyncio
    async def test_close_aborts_passthrough_streams(self, session, server):
        from h2session.http_primitives import DecodeMode

        server.route("/events", Reply(body=b"first", end_stream=False))
        stream = await session.get("/events", decode=DecodeDirective(mode=DecodeMode.STREAM))
        assert await stream.__anext__() == b"first"

        await session.close()

        with pytest.raises(TransportError):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_request_after_close(self, session):
        await session.close()

        with pytest.raises(TransportError):
            await session.get("/")

    @pytest.mark.asyncio
    async def test_close_twice(self, session, network_stream):
        await session.close()
        await session.close()

        assert session.is_closed
        assert network_stream.is_closed
        assert session.metrics["state"] == "closed"
