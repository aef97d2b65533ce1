"""Public entry point for the SOCKS relay engine.

This module exposes the pieces an owner needs to embed the relay:
- SocksServer to start and stop the listener
- ConnectionStats and ConnectionState to interpret connection snapshots
- ProxyStats to aggregate snapshots for display
- The exceptions start() can raise

Example:
    from hotspot_socks_relay.core.proxy import ProxyStats, SocksServer

    stats = ProxyStats()
    server = SocksServer(port=1080, on_connection_update=stats.record)
    server.start()

Attributes:
    __all__ (list): List of public components exposed by this module
"""

from .exceptions import BindError, ConfigurationError, InvalidPortError, ListenerError, ProxyError
from .lib import ConnectionState, ConnectionStats, ProxyStats, SocksServer

__all__ = [
    "BindError",
    "ConfigurationError",
    "ConnectionState",
    "ConnectionStats",
    "InvalidPortError",
    "ListenerError",
    "ProxyError",
    "ProxyStats",
    "SocksServer",
]
