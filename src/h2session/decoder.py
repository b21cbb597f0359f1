"""
Response body decoding.

Maps a collected response to a body value according to the decode
directive, or the response content-type when no mode was requested.
Decompression has already happened by the time bytes arrive here.
"""

import json
import re
from typing import Any, Optional

from .exceptions import DecodeError
from .http_primitives import DecodeDirective, DecodeMode, Headers, RawResponse, Response

MEDIA_TYPE_PATTERN = re.compile(r"[A-Za-z0-9\-_*]+/[A-Za-z0-9\-_*]+")


def mode_for_content_type(content_type: Optional[str]) -> DecodeMode:
    """Infer a decode mode from a content-type value (never STREAM)."""
    match = MEDIA_TYPE_PATTERN.search(content_type or "")
    if match is None:
        return DecodeMode.BYTES
    main_type, sub_type = match.group(0).lower().split("/")
    if main_type == "text":
        return DecodeMode.TEXT
    if main_type == "application" and sub_type == "json":
        return DecodeMode.JSON
    return DecodeMode.BYTES


def resolve_mode(headers: Headers, directive: DecodeDirective) -> DecodeMode:
    if directive.mode is not None:
        return directive.mode
    return mode_for_content_type(headers.get("content-type"))


def decode_body(raw: RawResponse, directive: DecodeDirective) -> Any:
    """
    Decode the raw payload according to the directive.

    Returns the payload untouched in BYTES and STREAM mode.

    Raises:
        DecodeError: If a JSON payload is malformed
    """
    mode = resolve_mode(raw.headers, directive)
    payload = raw.payload
    if mode is DecodeMode.STREAM or not isinstance(payload, bytes):
        return payload

    if mode is DecodeMode.TEXT:
        return payload.decode("utf-8", errors="replace")
    if mode is DecodeMode.JSON:
        try:
            return json.loads(payload.decode("utf-8", errors="replace"))
        except ValueError as e:
            raise DecodeError("malformed JSON payload", cause=e, content=payload) from e
    return payload


def build_response(raw: RawResponse, directive: DecodeDirective) -> Response:
    """
    Wrap a raw response and decode its body.

    A transform runs after mode decoding, on the populated Response,
    and its return value replaces ``body``. Live streams are handed
    over as-is, without a transform.
    """
    response = Response(raw, directive)
    if directive.mode is DecodeMode.STREAM:
        return response

    response.body = decode_body(raw, directive)
    if directive.transform is not None:
        response.body = directive.transform(response)
    return response
