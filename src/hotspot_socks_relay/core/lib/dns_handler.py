"""Destination name resolution using the system resolver and dnspython."""

import socket
from typing import TYPE_CHECKING, cast

import dns.exception
import dns.resolver
from loguru import logger

from hotspot_socks_relay.core.exceptions import DNSResolutionError

if TYPE_CHECKING:
    from dns.resolver import Resolver
    from loguru import Logger

# DNS resolver constants
DEFAULT_TIMEOUT = 1.0  # seconds
DEFAULT_LIFETIME = 3.0  # seconds
DEFAULT_NAMESERVERS = [
    "1.1.1.1",  # Cloudflare
    "8.8.8.8",  # Google
    "9.9.9.9",  # Quad9
]
RECORD_TYPES = ("A", "AAAA")


class DNSResolver:
    """Resolve destination names, falling back to public nameservers."""

    def __init__(self, nameservers: list[str] | None = None, log: "Logger | None" = None) -> None:
        """Initialize the DNS resolver.

        Args:
            nameservers: Nameservers used when system resolution fails
            log: Logger to report resolution failures to
        """
        self._log = (log or logger).bind(component="dns")
        self.resolver = cast("Resolver", dns.resolver.Resolver(configure=False))
        self.resolver.timeout = DEFAULT_TIMEOUT
        self.resolver.lifetime = DEFAULT_LIFETIME
        self.resolver.nameservers = list(nameservers or DEFAULT_NAMESERVERS)

    def _try_system_dns(self, domain: str) -> list[str]:
        """Try resolving using the system resolver."""
        try:
            infos = socket.getaddrinfo(domain, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
        except (socket.gaierror, UnicodeError) as e:
            self._log.debug(f"System DNS resolution failed for {domain}: {e}")
            return []
        addresses: list[str] = []
        for *_, sockaddr in infos:
            if sockaddr[0] not in addresses:
                addresses.append(sockaddr[0])
        return addresses

    def _try_configured_resolver(self, domain: str) -> list[str]:
        """Try resolving using the dnspython resolver."""
        addresses: list[str] = []
        for record_type in RECORD_TYPES:
            try:
                answer = self.resolver.resolve(domain, record_type)
            except dns.exception.DNSException as e:
                self._log.debug(f"Resolver {record_type} lookup failed for {domain}: {e}")
                continue
            addresses.extend(str(rdata) for rdata in answer)
        return addresses

    def resolve(self, domain: str) -> list[str]:
        """Resolve a domain name to its addresses.

        Args:
            domain: Domain name to resolve

        Returns:
            list[str]: Resolved addresses, in preference order

        Raises:
            DNSResolutionError: If every resolution method fails
        """
        if addresses := self._try_system_dns(domain):
            return addresses

        if addresses := self._try_configured_resolver(domain):
            return addresses

        error_msg = f"Could not resolve {domain} using any available method"
        self._log.info(error_msg)
        raise DNSResolutionError(error_msg)
