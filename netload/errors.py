"""Exception types raised by netload."""

from __future__ import annotations

from typing import Optional


class NetloadError(Exception):
    """Base class for every error raised by netload."""


class ConfigurationError(NetloadError, ValueError):
    """Bad or missing construction arguments."""


class NetworkError(NetloadError):
    """A request failed before a complete response was received."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class DnsError(NetworkError):
    """Hostname resolution failed."""


class ConnectError(NetworkError):
    """TCP connect or TLS handshake failed."""


class TransportError(NetworkError):
    """The exchange failed after the connection was established."""


class ReachabilityTimeoutError(NetloadError, TimeoutError):
    """Deadline elapsed before the reachability request settled."""


class BodyReuseError(NetloadError, TypeError):
    """The response body was already consumed."""
