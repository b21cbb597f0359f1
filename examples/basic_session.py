"""
Basic HTTP/2 session example using h2session.

This example demonstrates how to open a session, make GET and POST
requests, send forms, and keep cookies across requests.
"""

import asyncio
import logging

from h2session import (
    DecodeDirective,
    MemoryCookieJar,
    MultipartForm,
    RequestDescriptor,
    SessionClient,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def simple_requests(client: SessionClient):
    """Demonstrate body-only and full-response requests."""
    logger.info("Making simple GET request...")
    data = await client.simple_get("/httpbin/get", query={"hello": "world"})
    logger.info(f"Query echoed back: {data['args']}")

    response = await client.full_get("/httpbin/status/204")
    logger.info(f"Response status: {response.status_code}")


async def form_requests(client: SessionClient):
    """Demonstrate url-encoded and multipart form bodies."""
    logger.info("Posting a form...")
    data = await client.post("/httpbin/post", form={"name": "h2session", "tags": ["http2", "async"]})
    logger.info(f"Form fields received: {data['form']}")

    form = MultipartForm({"description": "a small file"})
    form.append("file", b"file contents", filename="notes.txt", content_type="text/plain")
    data = await client.post("/httpbin/post", form_data=form)
    logger.info(f"Files received: {list(data['files'])}")


async def cookie_requests(client: SessionClient, jar: MemoryCookieJar):
    """Demonstrate cookies set by the server being replayed."""
    await client.get("/httpbin/cookies/set", query={"flavour": "oatmeal"})
    logger.info(f"Jar now holds: {jar.names()}")

    response = await client.request(RequestDescriptor(
        "/httpbin/cookies",
        decode=DecodeDirective(full_response=True),
    ))
    logger.info(f"Server saw cookies: {response.body['cookies']}")


async def main():
    """Run all examples."""
    jar = MemoryCookieJar()
    async with await SessionClient.connect("https://nghttp2.org", jar=jar) as client:
        await simple_requests(client)
        await form_requests(client)
        await cookie_requests(client, jar)
        logger.info(f"Connection metrics: {client.metrics}")


if __name__ == "__main__":
    asyncio.run(main())
