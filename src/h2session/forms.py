"""
Request body builders for url-encoded and multipart forms.

Each builder turns a field mapping into ``(payload, headers)``; the
headers describe the payload (type, boundary, length).
"""

import binascii
import os
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote, urlencode

from .http_primitives import Headers, stringify_value

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
MULTIPART_CONTENT_TYPE = "multipart/form-data"


def encode_query(params: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]) -> str:
    """Serialize parameters with every value coerced to text; spaces become %20."""
    items = params.items() if isinstance(params, Mapping) else params
    return urlencode(
        [(key, stringify_value(value)) for key, value in items],
        quote_via=quote,
    )


def encode_form(fields: Mapping[str, Any]) -> Tuple[bytes, Headers]:
    """Build an application/x-www-form-urlencoded body."""
    payload = encode_query(fields).encode("ascii")
    headers = Headers({
        "content-type": FORM_CONTENT_TYPE,
        "content-length": str(len(payload)),
    })
    return payload, headers


@dataclass(frozen=True)
class FormField:
    """A multipart field value with optional file metadata."""

    value: Union[str, bytes]
    filename: Optional[str] = None
    content_type: Optional[str] = None


def _quote_param(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


class MultipartForm:
    """
    multipart/form-data body builder.

    Fields keep their insertion order. Plain values are coerced to
    text; files are given as bytes in a FormField with a filename.
    """

    def __init__(
        self,
        fields: Optional[Mapping[str, Any]] = None,
        boundary: Optional[str] = None,
    ) -> None:
        self.boundary = boundary or binascii.hexlify(os.urandom(16)).decode("ascii")
        self._fields: List[Tuple[str, FormField]] = []
        for name, value in (fields or {}).items():
            self.append(name, value)

    def append(
        self,
        name: str,
        value: Any,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> None:
        if not isinstance(value, FormField):
            if not isinstance(value, (str, bytes)):
                value = stringify_value(value)
            value = FormField(value, filename=filename, content_type=content_type)
        self._fields.append((name, value))

    def _encode_field(self, name: str, field: FormField) -> bytes:
        disposition = f'form-data; name="{_quote_param(name)}"'
        if field.filename is not None:
            disposition += f'; filename="{_quote_param(field.filename)}"'
        lines = [f"--{self.boundary}", f"Content-Disposition: {disposition}"]
        content_type = field.content_type
        if content_type is None and field.filename is not None:
            content_type = "application/octet-stream"
        if content_type is not None:
            lines.append(f"Content-Type: {content_type}")
        head = ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")
        data = field.value.encode("utf-8") if isinstance(field.value, str) else field.value
        return head + data + b"\r\n"

    def encode(self) -> Tuple[bytes, Headers]:
        """Return the complete payload and the headers describing it."""
        payload = b"".join(self._encode_field(name, field) for name, field in self._fields)
        payload += f"--{self.boundary}--\r\n".encode("ascii")
        headers = Headers({
            "content-type": f"{MULTIPART_CONTENT_TYPE}; boundary={self.boundary}",
            "content-length": str(len(payload)),
        })
        return payload, headers

    def __len__(self) -> int:
        return len(self._fields)
