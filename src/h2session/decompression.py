"""
Transport decompression for response bodies.

Each decoder consumes compressed chunks incrementally through
``decode`` and releases any buffered tail through ``flush``, so the
same objects serve the buffered collector and live response streams.
"""

import logging
import zlib
from typing import Dict, List, Optional, Type

import brotli

from .exceptions import DecodeError
from .http_primitives import Headers

logger = logging.getLogger(__name__)


class ContentDecoder:
    def decode(self, data: bytes) -> bytes:
        raise NotImplementedError()  # pragma: no cover

    def flush(self) -> bytes:
        raise NotImplementedError()  # pragma: no cover


class IdentityDecoder(ContentDecoder):
    def decode(self, data: bytes) -> bytes:
        return data

    def flush(self) -> bytes:
        return b""


class DeflateDecoder(ContentDecoder):
    """
    Handle 'deflate' decoding.

    Servers disagree on whether 'deflate' means a zlib stream or raw
    deflate data, so a failing zlib header falls back to raw deflate.
    """

    def __init__(self) -> None:
        self._first_attempt = True
        self._decompressor = zlib.decompressobj()

    def decode(self, data: bytes) -> bytes:
        was_first_attempt = self._first_attempt
        self._first_attempt = False
        try:
            return self._decompressor.decompress(data)
        except zlib.error as exc:
            if was_first_attempt:
                self._decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
                return self.decode(data)
            raise DecodeError("invalid deflate data", cause=exc) from exc

    def flush(self) -> bytes:
        try:
            return self._decompressor.flush()
        except zlib.error as exc:  # pragma: no cover
            raise DecodeError("invalid deflate data", cause=exc) from exc


class GZipDecoder(ContentDecoder):
    def __init__(self) -> None:
        self._decompressor = zlib.decompressobj(zlib.MAX_WBITS | 16)

    def decode(self, data: bytes) -> bytes:
        try:
            return self._decompressor.decompress(data)
        except zlib.error as exc:
            raise DecodeError("invalid gzip data", cause=exc) from exc

    def flush(self) -> bytes:
        try:
            return self._decompressor.flush()
        except zlib.error as exc:  # pragma: no cover
            raise DecodeError("invalid gzip data", cause=exc) from exc


class UnzipDecoder(GZipDecoder):
    """Generic fallback that auto-detects a gzip or zlib header."""

    def __init__(self) -> None:
        self._decompressor = zlib.decompressobj(zlib.MAX_WBITS | 32)


class BrotliDecoder(ContentDecoder):
    def __init__(self) -> None:
        self._decompressor = brotli.Decompressor()
        self._seen_data = False

    def decode(self, data: bytes) -> bytes:
        if not data:
            return b""
        self._seen_data = True
        try:
            return self._decompressor.process(data)
        except brotli.error as exc:
            raise DecodeError("invalid brotli data", cause=exc) from exc

    def flush(self) -> bytes:
        if not self._seen_data:
            return b""
        if not self._decompressor.is_finished():
            raise DecodeError("truncated brotli data")
        return b""


class MultiDecoder(ContentDecoder):
    """Undo several content-codings, last applied first."""

    def __init__(self, children: List[ContentDecoder]) -> None:
        self._children = list(reversed(children))

    def decode(self, data: bytes) -> bytes:
        for child in self._children:
            data = child.decode(data)
        return data

    def flush(self) -> bytes:
        data = b""
        for child in self._children:
            data = child.decode(data) + child.flush()
        return data


SUPPORTED_DECODERS: Dict[str, Type[ContentDecoder]] = {
    "identity": IdentityDecoder,
    "gzip": GZipDecoder,
    "x-gzip": GZipDecoder,
    "deflate": DeflateDecoder,
    "br": BrotliDecoder,
    "compress": UnzipDecoder,
}


def get_decoder(content_encoding: str) -> Optional[ContentDecoder]:
    """
    Build a decoder for a ``content-encoding`` header value.

    Returns None when any listed coding is unknown, in which case the
    body must be passed through untouched.
    """
    codings = [
        value.strip().lower()
        for value in content_encoding.split(",")
        if value.strip()
    ]
    if not codings:
        return None

    children = []
    for coding in codings:
        decoder_cls = SUPPORTED_DECODERS.get(coding)
        if decoder_cls is None:
            logger.debug(f"Unsupported content-encoding {coding!r}, passing body through")
            return None
        children.append(decoder_cls())

    if len(children) == 1:
        return children[0]
    return MultiDecoder(children)


def decoder_for_headers(headers: Headers) -> Optional[ContentDecoder]:
    """
    Pick the decoder for a response and strip ``content-encoding``.

    The header is only removed when a decoder was found, so downstream
    code never decodes twice and never mistakes encoded bytes for plain.
    """
    encodings = headers.get_list("content-encoding")
    if not encodings:
        return None
    decoder = get_decoder(", ".join(encodings))
    if decoder is not None:
        del headers["content-encoding"]
    return decoder
