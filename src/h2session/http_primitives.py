"""
HTTP primitives for h2session.

This module defines the core data structures for requests and responses:
a case-insensitive multi-value header mapping, the request descriptor
callers build, the decode directive, the request body variants, and the
raw and decoded response types.
"""

import enum
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterable,
    Callable,
    Iterable,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
    Union,
)

from .streams import RequestStream

if TYPE_CHECKING:
    from .cookies import CookieJar
    from .forms import MultipartForm
    from .http2 import HTTP2Stream
    from .streams import ResponseStream


def stringify_value(value: Any) -> str:
    """
    Coerce a query, form, or header value to its wire text.

    Strings pass through, structured values (and booleans/None) become
    compact JSON, integral floats drop their ".0", everything else uses
    ``str()``.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("latin-1")
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"))
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


HeaderInput = Union[
    "Headers",
    Mapping[str, Any],
    Iterable[Tuple[str, Any]],
]


class Headers(MutableMapping[str, str]):
    """
    Ordered, case-insensitive, multi-value HTTP headers.

    Keys are folded to lower case on the way in, so a caller-supplied
    ``Content-Type`` and a default ``content-type`` are the same header.
    ``__getitem__`` returns the first value; ``get_list`` returns all of
    them (e.g. multiple ``set-cookie``). List values expand into one
    entry per item.
    """

    def __init__(self, headers: Optional[HeaderInput] = None) -> None:
        self._list: List[Tuple[str, str]] = []
        if headers is None:
            return
        if isinstance(headers, Headers):
            self._list = list(headers._list)
        elif isinstance(headers, Mapping):
            for key, value in headers.items():
                self.add(key, value)
        else:
            for key, value in headers:
                self.add(key, value)

    @staticmethod
    def _normalize_key(key: Union[str, bytes]) -> str:
        if isinstance(key, bytes):
            key = key.decode("latin-1")
        return key.lower()

    def add(self, key: Union[str, bytes], value: Any) -> None:
        """Append a value without touching existing entries for ``key``."""
        name = self._normalize_key(key)
        if isinstance(value, (list, tuple)):
            for item in value:
                self._list.append((name, stringify_value(item)))
        else:
            self._list.append((name, stringify_value(value)))

    def get_list(self, key: str) -> List[str]:
        """Return every value recorded for ``key``, in arrival order."""
        name = self._normalize_key(key)
        return [value for item_key, value in self._list if item_key == name]

    def multi_items(self) -> List[Tuple[str, str]]:
        """Return all (key, value) pairs, including repeated keys."""
        return list(self._list)

    def copy(self) -> "Headers":
        return Headers(self)

    def __getitem__(self, key: str) -> str:
        name = self._normalize_key(key)
        for item_key, value in self._list:
            if item_key == name:
                return value
        raise KeyError(key)

    def __setitem__(self, key: str, value: Any) -> None:
        name = self._normalize_key(key)
        self._list = [item for item in self._list if item[0] != name]
        self.add(name, value)

    def __delitem__(self, key: str) -> None:
        name = self._normalize_key(key)
        remaining = [item for item in self._list if item[0] != name]
        if len(remaining) == len(self._list):
            raise KeyError(key)
        self._list = remaining

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (str, bytes)):
            return False
        name = self._normalize_key(key)
        return any(item_key == name for item_key, _ in self._list)

    def __iter__(self) -> Iterator[str]:
        seen = set()
        for key, _ in self._list:
            if key not in seen:
                seen.add(key)
                yield key

    def __len__(self) -> int:
        return len(set(key for key, _ in self._list))

    def __repr__(self) -> str:
        return f"Headers({self._list!r})"


class DecodeMode(enum.Enum):
    """How a response body is turned into a value."""

    BYTES = "bytes"
    TEXT = "text"
    JSON = "json"
    STREAM = "stream"


@dataclass(frozen=True)
class DecodeDirective:
    """
    Per-request decoding instructions.

    ``mode`` is inferred from the response content-type when left as
    None; STREAM is only ever selected explicitly. ``transform`` runs on
    the fully decoded Response and its result replaces ``body``.
    ``full_response`` None means "not set", which behaves like False.
    """

    mode: Optional[DecodeMode] = None
    transform: Optional[Callable[["Response"], Any]] = None
    full_response: Optional[bool] = None

    def with_defaults(self, **defaults: Any) -> "DecodeDirective":
        """Fill unset fields from ``defaults``; fields already set are kept."""
        missing = {
            name: value
            for name, value in defaults.items()
            if getattr(self, name) is None
        }
        return replace(self, **missing) if missing else self


class RequestBody(ABC):
    """A request payload that knows how to write itself to a stream."""

    @abstractmethod
    async def write_to(self, stream: "HTTP2Stream") -> None:
        """Write the complete payload to ``stream`` (without ending it)."""

    @property
    def content_length(self) -> Optional[int]:
        return None

    @staticmethod
    def of(value: Union["RequestBody", bytes, str, AsyncIterable[bytes]]) -> "RequestBody":
        """Wrap a plain bytes/str/async-iterable value in its body variant."""
        if isinstance(value, RequestBody):
            return value
        if isinstance(value, (bytes, bytearray, memoryview)):
            return BytesBody(bytes(value))
        if isinstance(value, str):
            return TextBody(value)
        if hasattr(value, "__aiter__"):
            return StreamBody(value)
        raise TypeError(f"Unsupported body type: {type(value).__name__}")


@dataclass(frozen=True)
class BytesBody(RequestBody):
    """A fully buffered binary body, written in a single call."""

    data: bytes

    async def write_to(self, stream: "HTTP2Stream") -> None:
        await stream.write(self.data)

    @property
    def content_length(self) -> Optional[int]:
        return len(self.data)


@dataclass(frozen=True)
class TextBody(RequestBody):
    """A text body, encoded once and written in a single call."""

    text: str
    encoding: str = "utf-8"

    async def write_to(self, stream: "HTTP2Stream") -> None:
        await stream.write(self.text.encode(self.encoding))

    @property
    def content_length(self) -> Optional[int]:
        return len(self.text.encode(self.encoding))


@dataclass(frozen=True)
class StreamBody(RequestBody):
    """A live body piped chunk by chunk into the request stream."""

    source: Union[AsyncIterable[bytes], List[bytes]]

    async def write_to(self, stream: "HTTP2Stream") -> None:
        async for chunk in RequestStream(self.source):
            await stream.write(chunk)


@dataclass(frozen=True)
class RequestDescriptor:
    """
    Declarative description of one request.

    The descriptor owns a private copy of its headers, so a mapping the
    caller reuses across calls is never mutated. ``body`` wins over
    ``form``, which wins over ``form_data``.
    """

    path: str
    method: Optional[str] = None
    query: Optional[Mapping[str, Any]] = None
    headers: Headers = field(default_factory=Headers)
    body: Optional[RequestBody] = None
    form: Optional[Mapping[str, Any]] = None
    form_data: Optional[Union["MultipartForm", Mapping[str, Any]]] = None
    decode: DecodeDirective = field(default_factory=DecodeDirective)
    jar: Optional["CookieJar"] = None
    strict_cookies: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", Headers(self.headers))
        if self.body is not None:
            object.__setattr__(self, "body", RequestBody.of(self.body))
        if self.decode is None:
            object.__setattr__(self, "decode", DecodeDirective())

    def with_defaults(
        self,
        method: Optional[str] = None,
        full_response: Optional[bool] = None,
    ) -> "RequestDescriptor":
        """Return a clone with unset method/full_response filled in."""
        return replace(
            self,
            method=self.method if self.method is not None else method,
            decode=self.decode.with_defaults(full_response=full_response),
        )


@dataclass
class RawResponse:
    """
    Response data as collected from the stream, before decoding.

    ``payload`` is either the complete (already decompressed) body or
    the live ResponseStream in passthrough mode.
    """

    stream_id: int
    headers: Headers
    payload: Union[bytes, "ResponseStream"]
    ended_with_headers: bool = False
    trailers: Headers = field(default_factory=Headers)

    @property
    def status_code(self) -> Optional[int]:
        status = self.headers.get(":status")
        return int(status) if status is not None else None


class Response:
    """
    A decoded response.

    ``body`` holds the decoded value (bytes, str, parsed JSON, a live
    stream, or whatever a transform returned). The raw payload stays
    reachable through ``content`` and ``raw_length``.
    """

    def __init__(self, raw: RawResponse, directive: DecodeDirective) -> None:
        self._raw = raw
        self._directive = directive
        self.headers = raw.headers
        self.trailers = raw.trailers
        self.status_code = raw.status_code
        self.body: Any = raw.payload

    @property
    def content(self) -> Union[bytes, "ResponseStream"]:
        """The payload before content decoding."""
        return self._raw.payload

    @property
    def raw_length(self) -> Optional[int]:
        """Byte length of the buffered payload, None for live streams."""
        if isinstance(self._raw.payload, bytes):
            return len(self._raw.payload)
        return None

    def header(self, key: str) -> Union[str, List[str], None]:
        """Return the header value, a list when repeated, or None."""
        values = self.headers.get_list(key)
        if not values:
            return None
        if len(values) == 1:
            return values[0]
        return values

    def header_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first value for ``key`` or ``default`` when absent."""
        values = self.headers.get_list(key)
        if not values or not values[0]:
            return default
        return values[0]

    def header_list(self, key: str) -> List[str]:
        return self.headers.get_list(key)

    def __repr__(self) -> str:
        return f"<Response [{self.status_code}]>"
