"""
Cookie jar integration.

A session talks to its jar through two async calls: one yields the
Cookie header for a URL, the other stores a single Set-Cookie value.
MemoryCookieJar implements both on top of ``http.cookiejar``.
"""

import logging
import urllib.request
from email.message import Message
from http.cookiejar import CookieJar as _StdlibCookieJar
from http.cookiejar import CookiePolicy, DefaultCookiePolicy
from typing import Iterator, List, Optional, Protocol, runtime_checkable

from .exceptions import JarError

logger = logging.getLogger(__name__)


@runtime_checkable
class CookieJar(Protocol):
    """The two operations a session needs from a cookie store."""

    async def get_cookie_string(self, url: str) -> str:
        """Return the Cookie header value for ``url`` ("" when none apply)."""
        ...

    async def set_cookie(self, cookie: str, url: str) -> None:
        """Store one Set-Cookie value received from ``url``."""
        ...


class _SetCookieResponse:
    """Minimal response object ``http.cookiejar`` can extract cookies from."""

    def __init__(self, set_cookie: str) -> None:
        self._set_cookie = set_cookie

    def info(self) -> Message:
        info = Message()
        info["Set-Cookie"] = self._set_cookie
        return info


class MemoryCookieJar:
    """
    In-memory cookie jar.

    Cookies the policy refuses (foreign domain, bad path, ...) raise
    JarError instead of being dropped silently, so strict requests can
    surface them.
    """

    def __init__(self, policy: Optional[CookiePolicy] = None) -> None:
        self._policy = policy or DefaultCookiePolicy()
        self.jar = _StdlibCookieJar(self._policy)

    async def get_cookie_string(self, url: str) -> str:
        request = urllib.request.Request(url)
        self.jar.add_cookie_header(request)
        return request.get_header("Cookie", "")

    async def set_cookie(self, cookie: str, url: str) -> None:
        request = urllib.request.Request(url)
        parsed = self.jar.make_cookies(_SetCookieResponse(cookie), request)
        if not parsed:
            raise JarError(f"Cannot parse cookie {cookie!r}")
        for item in parsed:
            if not self._policy.set_ok(item, request):
                raise JarError(f"Cookie {item.name!r} rejected for {url}")
            self.jar.set_cookie(item)
            logger.debug(f"Stored cookie {item.name} for {item.domain}{item.path}")

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for item in self.jar:
            if item.name == name:
                return item.value
        return default

    def names(self) -> List[str]:
        return [item.name for item in self.jar]

    def clear(self) -> None:
        self.jar.clear()

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self.jar)
