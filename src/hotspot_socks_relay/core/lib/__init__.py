"""Core relay library components."""

from .dns_handler import DNSResolver
from .proxy_server import SocksServer, validate_port
from .proxy_stats import ConnectionState, ConnectionStats, ProxyStats
from .socks_handler import SocksConnection, map_dial_error

__all__ = [
    "ConnectionState",
    "ConnectionStats",
    "DNSResolver",
    "map_dial_error",
    "ProxyStats",
    "SocksConnection",
    "SocksServer",
    "validate_port",
]
