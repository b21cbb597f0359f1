"""
Stream collection.

Drives one request stream from its first event to a RawResponse:
either the whole (decompressed) body buffered into bytes, or, in
passthrough mode, a live ResponseStream handed back as soon as the
headers arrive.
"""

import logging
from typing import List, Optional

from .decompression import ContentDecoder, decoder_for_headers
from .events import DataReceived, HeadersReceived, StreamEnded, StreamFailed, TrailersReceived
from .exceptions import H2SessionError, PartialResponseError
from .http2 import HTTP2Stream
from .http_primitives import DecodeDirective, DecodeMode, Headers, RawResponse
from .streams import ResponseStream

logger = logging.getLogger(__name__)


class StreamCollector:
    """Turns the event sequence of one HTTP2Stream into a RawResponse."""

    async def collect(self, stream: HTTP2Stream, directive: DecodeDirective) -> RawResponse:
        """
        Collect a response from ``stream``.

        Args:
            stream: An open stream whose request has been fully sent
            directive: Decides between buffering and passthrough

        Returns:
            The RawResponse; its payload is bytes, or a ResponseStream in
            passthrough mode

        Raises:
            PartialResponseError: If the stream ends before any headers
            TransportError: If the stream fails; no partial body is returned
        """
        headers: Optional[Headers] = None
        decoder: Optional[ContentDecoder] = None
        ended_with_headers = False
        trailers = Headers()
        chunks: List[bytes] = []

        try:
            while True:
                event = await stream.next_event()

                if isinstance(event, HeadersReceived):
                    headers = event.headers
                    ended_with_headers = event.stream_ended
                    decoder = decoder_for_headers(headers)
                    if directive.mode is DecodeMode.STREAM:
                        logger.debug(f"Stream {stream.stream_id}: handing over live body")
                        return RawResponse(
                            stream_id=stream.stream_id,
                            headers=headers,
                            payload=ResponseStream(stream, decoder),
                            ended_with_headers=ended_with_headers,
                        )

                elif isinstance(event, DataReceived):
                    await stream.acknowledge(event.flow_controlled_length)
                    chunks.append(decoder.decode(event.data) if decoder else event.data)

                elif isinstance(event, TrailersReceived):
                    trailers = event.headers

                elif isinstance(event, StreamEnded):
                    if decoder is not None:
                        chunks.append(decoder.flush())
                    stream.close()
                    if headers is None:
                        raise PartialResponseError()
                    return RawResponse(
                        stream_id=stream.stream_id,
                        headers=headers,
                        payload=b"".join(chunks),
                        ended_with_headers=ended_with_headers,
                        trailers=trailers,
                    )

                elif isinstance(event, StreamFailed):
                    raise event.error
        except H2SessionError:
            stream.close()
            raise
