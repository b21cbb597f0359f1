"""
Streaming example for h2session.

This example demonstrates passthrough response streams, streamed
request bodies, and several requests multiplexed on one connection.
"""

import asyncio
import logging

from h2session import DecodeDirective, DecodeMode, SessionClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PASSTHROUGH = DecodeDirective(mode=DecodeMode.STREAM)


async def stream_response(client: SessionClient):
    """Read a response body chunk by chunk as it arrives."""
    stream = await client.get("/httpbin/stream/5", decode=PASSTHROUGH)
    total = 0
    async for chunk in stream:
        total += len(chunk)
        logger.info(f"Received chunk of {len(chunk)} bytes")
    logger.info(f"Stream finished after {total} bytes")


async def stream_request(client: SessionClient):
    """Upload a body produced by an async generator."""
    async def generate_lines():
        for number in range(5):
            yield f"line {number}\n".encode()
            await asyncio.sleep(0.01)

    data = await client.post("/httpbin/post", body=generate_lines())
    logger.info(f"Server received {len(data['data'])} characters")


async def multiplexed_requests(client: SessionClient):
    """Issue several requests concurrently on the same connection."""
    paths = [f"/httpbin/get?n={n}" for n in range(5)]
    results = await asyncio.gather(*(client.simple_get(path) for path in paths))
    logger.info(f"Completed {len(results)} concurrent requests")


async def main():
    async with await SessionClient.connect("https://nghttp2.org") as client:
        await stream_response(client)
        await stream_request(client)
        await multiplexed_requests(client)


if __name__ == "__main__":
    asyncio.run(main())
