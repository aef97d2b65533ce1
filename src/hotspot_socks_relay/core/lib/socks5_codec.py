"""SOCKS5 wire codec according to RFC 1928.

This module contains pure parse/build functions for the messages the relay
exchanges with clients:
- Method-selection request and response (greeting)
- Connect request
- Connect response (used for success and every failure reply)

Parsers take a byte buffer and return the parsed message together with the
number of bytes it occupied, so callers can keep whatever follows it. A buffer
that ends early raises IncompleteMessageError; any other malformation raises
ProtocolError. Nothing here performs I/O or keeps state.

Example:
    request, consumed = parse_connect_request(buffer)
    reply = build_connect_response(Reply.SUCCEEDED)
"""

import ipaddress
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from hotspot_socks_relay.core.exceptions import IncompleteMessageError, ProtocolError

SOCKS_VERSION: Final = 5
RESERVED: Final = 0

# Bound address reported on every reply
UNSPECIFIED_ADDR: Final = "0.0.0.0"
UNSPECIFIED_PORT: Final = 0

_HEADER = struct.Struct("!BBBB")
_PORT = struct.Struct("!H")


class AuthMethod(IntEnum):
    """Authentication method codes."""

    NO_AUTH = 0x00
    GSSAPI = 0x01
    USERNAME_PASSWORD = 0x02
    NO_ACCEPTABLE = 0xFF


class Command(IntEnum):
    """Request command codes."""

    CONNECT = 0x01
    BIND = 0x02
    UDP_ASSOCIATE = 0x03


class AddressType(IntEnum):
    """Address type tags."""

    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04


class Reply(IntEnum):
    """Connect response reply codes."""

    SUCCEEDED = 0x00
    GENERAL_FAILURE = 0x01
    CONNECTION_NOT_ALLOWED = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08


@dataclass(frozen=True)
class MethodSelection:
    """Client greeting.

    Attributes:
        methods: Known method codes proposed by the client, in order. Unknown
            codes are dropped while parsing.
    """

    methods: tuple[AuthMethod, ...]

    @property
    def offers_no_auth(self) -> bool:
        return AuthMethod.NO_AUTH in self.methods


@dataclass(frozen=True)
class ConnectRequest:
    """Parsed client request."""

    command: Command
    address_type: AddressType
    host: str
    port: int


@dataclass(frozen=True)
class ConnectResponse:
    """Parsed server reply."""

    reply: Reply
    address_type: AddressType
    bind_address: str
    bind_port: int


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        msg = f"Truncated {what}: need {size} bytes, have {len(data)}"
        raise IncompleteMessageError(msg)


def _check_version(version: int) -> None:
    if version != SOCKS_VERSION:
        msg = f"Unsupported SOCKS version: {version:#04x}"
        raise ProtocolError(msg)


def parse_method_selection(data: bytes) -> tuple[MethodSelection, int]:
    """Parse a method-selection request.

    Args:
        data: Bytes received from the client so far

    Returns:
        tuple[MethodSelection, int]: Parsed greeting and bytes consumed

    Raises:
        IncompleteMessageError: If the greeting is not complete yet
        ProtocolError: If the version byte is wrong
    """
    _require(data, 2, "greeting")
    _check_version(data[0])
    count = data[1]
    end = 2 + count
    _require(data, end, "greeting methods")

    methods = []
    for code in data[2:end]:
        try:
            methods.append(AuthMethod(code))
        except ValueError:
            continue
    return MethodSelection(tuple(methods)), end


def build_method_selection(methods: list[int]) -> bytes:
    """Build a client greeting offering ``methods``."""
    if len(methods) > 0xFF:
        msg = f"Too many methods: {len(methods)}"
        raise ProtocolError(msg)
    return bytes([SOCKS_VERSION, len(methods), *methods])


def build_method_selection_response(method: AuthMethod) -> bytes:
    """Build the server's method choice."""
    return bytes([SOCKS_VERSION, method])


def _parse_address(data: bytes, offset: int, address_type: int) -> tuple[AddressType, str, int]:
    """Decode the address field starting at ``offset``.

    Returns the address type, the textual address and the offset after it.
    """
    try:
        atyp = AddressType(address_type)
    except ValueError:
        msg = f"Unknown address type: {address_type:#04x}"
        raise ProtocolError(msg) from None

    if atyp is AddressType.IPV4:
        end = offset + 4
        _require(data, end, "IPv4 address")
        return atyp, str(ipaddress.IPv4Address(bytes(data[offset:end]))), end

    if atyp is AddressType.IPV6:
        end = offset + 16
        _require(data, end, "IPv6 address")
        groups = struct.unpack("!8H", data[offset:end])
        return atyp, ":".join(f"{group:x}" for group in groups), end

    _require(data, offset + 1, "domain length")
    length = data[offset]
    start = offset + 1
    end = start + length
    _require(data, end, "domain name")
    try:
        domain = data[start:end].decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"Domain name is not valid UTF-8: {e}"
        raise ProtocolError(msg) from e
    return atyp, domain, end


def _encode_address(address_type: AddressType, address: str) -> bytes:
    address_type = AddressType(address_type)
    try:
        if address_type is AddressType.IPV4:
            return ipaddress.IPv4Address(address).packed
        if address_type is AddressType.IPV6:
            return ipaddress.IPv6Address(address).packed
    except ValueError as e:
        msg = f"Cannot encode {address!r} as {address_type.name}: {e}"
        raise ProtocolError(msg) from e

    encoded = address.encode("utf-8")
    if len(encoded) > 0xFF:
        msg = f"Domain name too long: {len(encoded)} bytes"
        raise ProtocolError(msg)
    return bytes([len(encoded)]) + encoded


def parse_connect_request(data: bytes) -> tuple[ConnectRequest, int]:
    """Parse a connect request.

    Args:
        data: Bytes received from the client after the greeting

    Returns:
        tuple[ConnectRequest, int]: Parsed request and bytes consumed

    Raises:
        IncompleteMessageError: If the request is not complete yet
        ProtocolError: On a wrong version, unknown command or address type
    """
    _require(data, _HEADER.size, "request header")
    version, command, _, address_type = _HEADER.unpack_from(data)
    _check_version(version)
    try:
        cmd = Command(command)
    except ValueError:
        msg = f"Unknown command: {command:#04x}"
        raise ProtocolError(msg) from None

    atyp, host, offset = _parse_address(data, _HEADER.size, address_type)
    end = offset + _PORT.size
    _require(data, end, "request port")
    (port,) = _PORT.unpack_from(data, offset)
    return ConnectRequest(cmd, atyp, host, port), end


def build_connect_request(command: Command, address_type: AddressType, host: str, port: int) -> bytes:
    """Build a client connect request."""
    header = _HEADER.pack(SOCKS_VERSION, command, RESERVED, address_type)
    return header + _encode_address(address_type, host) + _PORT.pack(port)


def build_connect_response(
    reply: Reply,
    address_type: AddressType = AddressType.IPV4,
    bind_address: str = UNSPECIFIED_ADDR,
    bind_port: int = UNSPECIFIED_PORT,
) -> bytes:
    """Build a connect response.

    Args:
        reply: Outcome reported to the client
        address_type: Type of the bound address field
        bind_address: Bound address, in the textual form of ``address_type``
        bind_port: Bound port

    Returns:
        bytes: Encoded response

    Raises:
        ProtocolError: If ``bind_address`` does not fit ``address_type``
    """
    header = _HEADER.pack(SOCKS_VERSION, reply, RESERVED, address_type)
    return header + _encode_address(address_type, bind_address) + _PORT.pack(bind_port)


def parse_connect_response(data: bytes) -> tuple[ConnectResponse, int]:
    """Parse a connect response, as a client would."""
    _require(data, _HEADER.size, "response header")
    version, reply, _, address_type = _HEADER.unpack_from(data)
    _check_version(version)
    try:
        rep = Reply(reply)
    except ValueError:
        msg = f"Unknown reply code: {reply:#04x}"
        raise ProtocolError(msg) from None

    atyp, address, offset = _parse_address(data, _HEADER.size, address_type)
    end = offset + _PORT.size
    _require(data, end, "response port")
    (port,) = _PORT.unpack_from(data, offset)
    return ConnectResponse(rep, atyp, address, port), end
