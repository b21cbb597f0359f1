"""
Network utilities for h2session.

This module provides utility functions for TLS context setup,
URL parsing, and authority formatting.
"""

import ssl
from typing import List, Optional, Tuple
from urllib.parse import urlparse


def create_ssl_context(
    alpn_protocols: Optional[List[str]] = None,
    verify_mode: int = ssl.CERT_REQUIRED,
    check_hostname: bool = True,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
) -> ssl.SSLContext:
    """
    Create an SSL context suitable for HTTP/2.

    Args:
        alpn_protocols: Optional list of ALPN protocols to negotiate
        verify_mode: SSL verification mode
        check_hostname: Whether to verify hostname
        cert_file: Path to certificate file (for client auth)
        key_file: Path to private key file (for client auth)

    Returns:
        Configured SSL context

    Raises:
        ssl.SSLError: If SSL context creation fails
    """
    context = ssl.create_default_context()
    context.check_hostname = check_hostname
    context.verify_mode = verify_mode

    if alpn_protocols:
        context.set_alpn_protocols(alpn_protocols)

    # HTTP/2 forbids TLS compression and renegotiation
    context.options |= ssl.OP_NO_COMPRESSION
    context.options |= ssl.OP_NO_RENEGOTIATION

    # RFC 7540 9.2: TLS 1.2 or later
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.maximum_version = ssl.TLSVersion.TLSv1_3

    context.set_ciphers('ECDHE+AESGCM:ECDHE+CHACHA20:DHE+AESGCM:DHE+CHACHA20')

    if cert_file and key_file:
        context.load_cert_chain(cert_file, key_file)

    return context


def parse_url(url: str) -> Tuple[str, str, int, str]:
    """
    Parse URL into components.

    Args:
        url: URL string to parse

    Returns:
        Tuple of (scheme, host, port, path)

    Raises:
        ValueError: If URL is malformed
    """
    parsed = urlparse(url)

    scheme = parsed.scheme or "https"
    if scheme not in ("http", "https"):
        raise ValueError(f"Unsupported URL scheme: {scheme}")

    host = parsed.hostname or ""
    if not host:
        raise ValueError("No hostname found in URL")

    port = parsed.port
    if port is None:
        port = 443 if scheme == "https" else 80

    path = parsed.path or "/"
    if parsed.query:
        path += "?" + parsed.query

    return scheme, host, port, path


def format_host_header(host: str, port: int, scheme: str) -> str:
    """
    Format the authority for requests (the HTTP/2 ``:authority``).

    Args:
        host: Hostname
        port: Port number
        scheme: URL scheme

    Returns:
        Formatted authority string
    """
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    if (scheme == "https" and port == 443) or (scheme == "http" and port == 80):
        return host
    return f"{host}:{port}"
