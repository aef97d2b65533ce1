"""Custom exceptions for the relay engine.

This module defines the exceptions raised throughout the SOCKS relay. They split
into two groups:
- Listener-level failures (invalid port, bind failure, accept loop crash) that
  are fatal to the whole server and are reported to the owner
- Connection-level failures (malformed handshake, failed dial, DNS failure)
  that are contained inside a single connection

Example:
    try:
        server.start()
    except BindError as e:
        console.print(f"[red]Could not listen: {e}")
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hotspot_socks_relay.core.lib.socks5_codec import Reply


class ProxyError(Exception):
    """Base exception for relay errors."""


class ConfigurationError(ProxyError):
    """Raised when the server is configured with unusable values."""


class InvalidPortError(ConfigurationError):
    """Raised when the listening port is outside the 16-bit range."""

    def __init__(self, port: object) -> None:
        super().__init__(f"Invalid port number: {port!r}")
        self.port = port


class BindError(ProxyError):
    """Raised when the listening socket cannot be bound."""


class ListenerError(ProxyError):
    """Raised when the accept loop fails after the server started."""


class ProtocolError(ProxyError):
    """Raised on malformed SOCKS5 handshake or request bytes."""


class IncompleteMessageError(ProtocolError):
    """Raised when a buffer ends before a complete message."""


class DialError(ProxyError):
    """Raised when the destination could not be reached."""

    def __init__(self, message: str, reply: "Reply") -> None:
        super().__init__(message)
        self.reply = reply


class DNSResolutionError(ProxyError):
    """Raised when DNS resolution fails."""
