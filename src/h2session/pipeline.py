"""
Request pipeline.

Turns one RequestDescriptor into a request on the session connection
and its response into a body value or a full Response:

    query merge -> headers -> cookies -> body -> open stream -> write
    -> collect -> decode -> store cookies -> result
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlencode

from .collector import StreamCollector
from .cookies import CookieJar
from .decoder import build_response
from .exceptions import CookieRejectionError
from .forms import MultipartForm, encode_form
from .http2 import HTTP2Connection, HTTP2Stream
from .http_primitives import BytesBody, Headers, RequestBody, RequestDescriptor, Response, stringify_value

logger = logging.getLogger(__name__)

# Connection-specific headers are illegal in HTTP/2; host is carried by :authority
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-connection",
    "transfer-encoding",
    "upgrade",
    "host",
})


def build_path(path: str, query: Optional[Mapping[str, Any]] = None) -> str:
    """
    Merge explicit query parameters into ``path``.

    Parameters already embedded in the path are kept (repeats included)
    unless an explicit parameter of the same name replaces them. A path
    whose query ends up empty loses its "?".
    """
    base, separator, embedded = path.partition("?")
    if not separator and not query:
        return path

    merged: Dict[str, List[str]] = {}
    for key, value in parse_qsl(embedded, keep_blank_values=True):
        merged.setdefault(key, []).append(value)
    for key, value in (query or {}).items():
        merged[key] = [stringify_value(value)]

    base = base or "/"
    pairs = [(key, value) for key, values in merged.items() for value in values]
    if not pairs:
        return base
    return f"{base}?{urlencode(pairs, quote_via=quote)}"


class RequestPipeline:
    """
    Executes request descriptors on one HTTP2Connection.

    Every opened stream is registered in ``in_flight`` until it closes,
    which lets the owning session abort whatever is still running.
    """

    def __init__(
        self,
        connection: HTTP2Connection,
        jar: Optional[CookieJar] = None,
        in_flight: Optional[Dict[int, HTTP2Stream]] = None,
        collector: Optional[StreamCollector] = None,
    ) -> None:
        self._connection = connection
        self._jar = jar
        self.in_flight: Dict[int, HTTP2Stream] = in_flight if in_flight is not None else {}
        self._collector = collector or StreamCollector()

    def effective_url(self, path: str) -> str:
        return f"{self._connection.scheme}://{self._connection.authority}{path}"

    async def execute(self, descriptor: RequestDescriptor) -> Any:
        """
        Run one request to completion.

        Returns:
            The decoded body, or the Response when ``full_response`` is set

        Raises:
            TransportError: If the connection or the stream fails
            PartialResponseError: If the stream ends before any headers
            DecodeError: If a JSON body is malformed
            CookieRejectionError: If strict cookies could not be stored
        """
        start_time = time.time()
        path = build_path(descriptor.path, descriptor.query)
        url = self.effective_url(path)
        headers = descriptor.headers.copy()

        jar = descriptor.jar if descriptor.jar is not None else self._jar
        if jar is not None and "cookie" not in headers:
            cookie_string = await jar.get_cookie_string(url)
            if cookie_string:
                headers["cookie"] = cookie_string

        body, method = self._prepare_body(descriptor, headers)
        method = method or "GET"

        stream = await self._connection.open_stream(
            self._build_header_block(method, path, headers),
            end_stream=body is None,
        )
        self._track(stream)

        try:
            if body is not None:
                await body.write_to(stream)
                await stream.end()
            raw = await self._collector.collect(stream, descriptor.decode)
            response = build_response(raw, descriptor.decode)
            await self._store_cookies(response, descriptor, url)
        except BaseException:
            stream.close()
            raise

        duration = time.time() - start_time
        logger.debug(
            f"{method} {path} -> {response.status_code} "
            f"on stream {stream.stream_id} in {duration:.3f}s"
        )

        if descriptor.decode.full_response:
            return response
        return response.body

    def _prepare_body(
        self,
        descriptor: RequestDescriptor,
        headers: Headers,
    ) -> Tuple[Optional[RequestBody], Optional[str]]:
        """Pick the request body (body, then form, then form_data) and default the method."""
        if descriptor.body is not None:
            return descriptor.body, descriptor.method

        if descriptor.form is not None:
            payload, form_headers = encode_form(descriptor.form)
            for key, value in form_headers.items():
                headers.setdefault(key, value)
            return BytesBody(payload), descriptor.method or "POST"

        if descriptor.form_data is not None:
            form = descriptor.form_data
            if not isinstance(form, MultipartForm):
                form = MultipartForm(form)
            payload, form_headers = form.encode()
            # The boundary in content-type must match the payload
            for key, value in form_headers.items():
                headers[key] = value
            return BytesBody(payload), descriptor.method or "POST"

        return None, descriptor.method

    def _build_header_block(self, method: str, path: str, headers: Headers) -> List[Tuple[str, str]]:
        block = [
            (":method", method),
            (":scheme", self._connection.scheme),
            (":authority", self._connection.authority),
            (":path", path),
        ]
        for key, value in headers.multi_items():
            if key in HOP_BY_HOP_HEADERS or key.startswith(":"):
                logger.debug(f"Dropping header {key!r}")
                continue
            block.append((key, value))
        return block

    def _track(self, stream: HTTP2Stream) -> None:
        self.in_flight[stream.stream_id] = stream
        stream.add_close_callback(lambda closed: self.in_flight.pop(closed.stream_id, None))

    async def _store_cookies(
        self,
        response: Response,
        descriptor: RequestDescriptor,
        url: str,
    ) -> None:
        jars = [jar for jar in (descriptor.jar, self._jar) if jar is not None]
        set_cookies = response.header_list("set-cookie")
        if not jars or not set_cookies:
            return

        errors: List[BaseException] = []
        for jar in jars:
            results = await asyncio.gather(
                *(jar.set_cookie(cookie, url) for cookie in set_cookies),
                return_exceptions=True,
            )
            errors.extend(result for result in results if isinstance(result, Exception))

        if not errors:
            return
        if descriptor.strict_cookies:
            raise CookieRejectionError(errors)
        for error in errors:
            logger.warning(f"Cookie from {url} not stored: {error}")
