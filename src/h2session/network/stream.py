"""
Network stream interface for h2session.

This module defines the NetworkStream interface that all network stream
implementations must follow for consistent behavior across the library.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class NetworkStream(ABC):
    """
    Interface for network streams with async I/O operations.

    An HTTP/2 connection owns exactly one NetworkStream and multiplexes
    every request over it.
    """

    @abstractmethod
    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        """
        Read data from the stream.

        Waits until at least one byte is available. An empty result
        means the peer closed the connection.

        Args:
            max_bytes: Maximum number of bytes to read.

        Returns:
            The data read from the stream.

        Raises:
            RuntimeError: If the stream is closed.
            OSError: If a network error occurs.
        """
        pass

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write data to the stream.

        Args:
            data: The data to write to the stream.

        Raises:
            RuntimeError: If the stream is closed.
            OSError: If a network error occurs.
        """
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """Close the stream and cleanup resources."""
        pass

    @abstractmethod
    def get_extra_info(self, name: str) -> Optional[Any]:
        """
        Get extra information about the stream.

        Args:
            name: The name of the information to retrieve. Common values include:
                 - "peername": The remote endpoint address
                 - "sockname": The local endpoint address
                 - "ssl_object": Whether the stream is SSL/TLS encrypted
                 - "selected_alpn_protocol": The protocol agreed during TLS

        Returns:
            The requested information or None if not available.
        """
        pass

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Check if the stream is closed."""
        pass
