"""SOCKS5 connection handler implementation for the relay.

This module implements the per-connection side of RFC 1928:
- Method negotiation (only "no authentication" is ever selected)
- CONNECT requests to IPv4, IPv6 and domain destinations
- Rejection of BIND and UDP ASSOCIATE
- Mapping of dial failures to reply codes
- Bi-directional relaying with per-direction byte counters

Every connection runs on its own worker thread, which walks the handshake and
then pumps target-to-client bytes; a second thread pumps client-to-target
bytes. The lifecycle only moves forward:

    AWAITING_GREETING -> AWAITING_REQUEST -> CONNECTING -> RELAYING -> CLOSED

and any state may jump straight to CLOSED. State, counters and snapshot
emission share one lock, so the owner sees each connection's snapshots in
order and nothing after the single CLOSED snapshot.

Example:
    connection = SocksConnection(client_socket, client_address, on_update=print)
    connection.start()
    ...
    connection.cancel()
"""

import contextlib
import errno
import socket
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from loguru import logger

from hotspot_socks_relay.core.exceptions import DialError, IncompleteMessageError, ProtocolError, ProxyError

from .dns_handler import DNSResolver
from .proxy_stats import ConnectionState, ConnectionStats
from .socks5_codec import (
    AddressType,
    AuthMethod,
    Command,
    ConnectRequest,
    MethodSelection,
    Reply,
    build_connect_response,
    build_method_selection_response,
    parse_connect_request,
    parse_method_selection,
)

if TYPE_CHECKING:
    from loguru import Logger

BUFFER_SIZE: Final = 65536

StatsCallback = Callable[[ConnectionStats], None]

_ERRNO_REPLIES: Final = {
    errno.ECONNREFUSED: Reply.CONNECTION_REFUSED,
    errno.ENETUNREACH: Reply.NETWORK_UNREACHABLE,
    errno.EHOSTUNREACH: Reply.HOST_UNREACHABLE,
    errno.ETIMEDOUT: Reply.TTL_EXPIRED,
}


def map_dial_error(exc: BaseException) -> Reply:
    """Map a failed dial to the reply code reported to the client.

    Args:
        exc: Exception raised while resolving or connecting

    Returns:
        Reply: Matching reply code, GENERAL_FAILURE when nothing fits
    """
    if isinstance(exc, DialError):
        return exc.reply
    if isinstance(exc, TimeoutError):
        return Reply.TTL_EXPIRED
    if isinstance(exc, OSError) and not isinstance(exc, socket.gaierror):
        return _ERRNO_REPLIES.get(exc.errno, Reply.GENERAL_FAILURE)
    return Reply.GENERAL_FAILURE


def _close_socket(sock: socket.socket) -> None:
    # shutdown() wakes a recv() blocked on another thread; close() alone does not
    with contextlib.suppress(OSError):
        sock.shutdown(socket.SHUT_RDWR)
    with contextlib.suppress(OSError):
        sock.close()


class SocksConnection:
    """Handle one accepted SOCKS5 client from handshake to teardown."""

    def __init__(
        self,
        client: socket.socket,
        client_address: tuple[str, int] | None,
        on_update: StatsCallback,
        log: "Logger | None" = None,
        resolver: DNSResolver | None = None,
    ) -> None:
        """Initialize the handler for an accepted client socket.

        Args:
            client: Accepted client socket (blocking)
            client_address: Peer address of the client
            on_update: Called with a snapshot on every change
            log: Logger to bind connection context to
            resolver: Resolver for domain destinations
        """
        self._stats = ConnectionStats.new(client_address)
        self.id = self._stats.id
        self._client = client
        self._target: socket.socket | None = None
        self._on_update = on_update
        self._resolver = resolver
        self._log = (log or logger).bind(connection=self.id.hex[:8])
        self._lock = threading.RLock()
        self._closing = False
        self._pending = b""

    @property
    def state(self) -> ConnectionState:
        return self._stats.state

    def snapshot(self) -> ConnectionStats:
        with self._lock:
            return self._stats

    def start(self) -> threading.Thread:
        """Run the connection on a new daemon thread."""
        thread = threading.Thread(target=self.run, name=f"socks-{self.id.hex[:8]}", daemon=True)
        thread.start()
        return thread

    def cancel(self) -> None:
        """Close both legs and report the connection as closed.

        Safe to call from any thread and any number of times.
        """
        self._close_legs()
        self._finish()

    def run(self) -> None:
        """Drive the connection until it is closed."""
        with self._lock:
            if self._stats.is_closed:
                return
            self._emit()
        self._log.debug(f"Connection from {self._stats.client_address}")

        upstream: threading.Thread | None = None
        try:
            if not self._negotiate():
                return
            request = self._read_request()
            if request is None:
                return
            target = self._connect(request)
            if target is None:
                return
            upstream = threading.Thread(
                target=self._pump,
                args=(self._client, target, True, self._pending),
                name=f"socks-{self.id.hex[:8]}-up",
                daemon=True,
            )
            self._pending = b""
            upstream.start()
            self._pump(target, self._client, False)
        except OSError as e:
            self._log.debug(f"Client leg failed: {e}")
        except Exception:
            self._log.exception("Unexpected connection failure")
        finally:
            self._close_legs()
            if upstream is not None:
                upstream.join()
            self._finish()

    # Handshake

    def _negotiate(self) -> bool:
        try:
            greeting: MethodSelection = self._receive(parse_method_selection)
        except ProtocolError as e:
            self._log.info(f"Invalid greeting: {e}")
            return False

        if not greeting.offers_no_auth:
            self._log.info("Client offered no acceptable authentication method")
            self._send(build_method_selection_response(AuthMethod.NO_ACCEPTABLE))
            return False

        self._send(build_method_selection_response(AuthMethod.NO_AUTH))
        return self._transition(ConnectionState.AWAITING_REQUEST)

    def _read_request(self) -> ConnectRequest | None:
        try:
            request: ConnectRequest = self._receive(parse_connect_request)
        except ProtocolError as e:
            self._log.info(f"Invalid request: {e}")
            self._send_reply(Reply.GENERAL_FAILURE)
            return None

        with self._lock:
            self._stats = self._stats.evolve(destination_host=request.host, destination_port=request.port)
            self._emit()

        if request.command is not Command.CONNECT:
            self._log.warning(f"Unsupported command {request.command.name} for {request.host}:{request.port}")
            self._send_reply(Reply.COMMAND_NOT_SUPPORTED)
            return None

        self._log.info(f"CONNECT request to {request.host}:{request.port}")
        return request

    def _connect(self, request: ConnectRequest) -> socket.socket | None:
        if not self._transition(ConnectionState.CONNECTING):
            return None

        try:
            target = self._dial(request)
        except (OSError, ProxyError) as e:
            reply = map_dial_error(e)
            self._log.info(f"Connection to {request.host}:{request.port} failed ({reply.name}): {e}")
            self._send_reply(reply)
            return None

        with self._lock:
            if self._closing:
                _close_socket(target)
                return None
            self._target = target

        self._log.debug(f"Connected to {request.host}:{request.port}")
        # The outbound socket's real address is not reported
        self._send(build_connect_response(Reply.SUCCEEDED))
        if not self._transition(ConnectionState.RELAYING):
            return None
        return target

    def _dial(self, request: ConnectRequest) -> socket.socket:
        if request.address_type is AddressType.DOMAIN:
            if self._resolver is None:
                self._resolver = DNSResolver(log=self._log)
            addresses = self._resolver.resolve(request.host)
        else:
            addresses = [request.host]

        last_error: OSError | None = None
        for address in addresses:
            self._check_open()
            try:
                return socket.create_connection((address, request.port))
            except OSError as e:
                self._log.debug(f"Connect to {address}:{request.port} failed: {e}")
                last_error = e
        if last_error is None:
            msg = f"No addresses for {request.host}"
            raise DialError(msg, Reply.HOST_UNREACHABLE)
        raise last_error

    def _receive(self, parser):
        """Read from the client until ``parser`` accepts the buffered bytes."""
        while True:
            try:
                message, consumed = parser(self._pending)
            except IncompleteMessageError:
                data = self._recv_client()
                if not data:
                    raise
                self._pending += data
                continue
            self._pending = self._pending[consumed:]
            return message

    # I/O helpers

    def _check_open(self) -> None:
        if self._closing:
            msg = "Connection cancelled"
            raise ConnectionAbortedError(msg)

    def _recv_client(self) -> bytes:
        self._check_open()
        return self._client.recv(BUFFER_SIZE)

    def _send(self, data: bytes) -> None:
        self._check_open()
        self._client.sendall(data)

    def _send_reply(self, reply: Reply) -> None:
        """Send a failure reply, ignoring a client that already went away."""
        try:
            self._send(build_connect_response(reply))
        except OSError as e:
            self._log.debug(f"Could not send {reply.name} reply: {e}")

    # Relay

    def _pump(self, source: socket.socket, sink: socket.socket, upstream: bool, initial: bytes = b"") -> None:
        direction = "client->target" if upstream else "target->client"
        data = initial
        try:
            while True:
                if data:
                    if self._closing:
                        break
                    sink.sendall(data)
                    self._record_transfer(len(data), upstream=upstream)
                if self._closing:
                    break
                data = source.recv(BUFFER_SIZE)
                if not data:
                    self._log.debug(f"Relay {direction} reached end of stream")
                    break
        except OSError as e:
            if not self._closing:
                self._log.debug(f"Relay {direction} failed: {e}")
        finally:
            self._close_legs()

    # State

    def _emit(self) -> None:
        # Caller holds self._lock
        try:
            self._on_update(self._stats)
        except Exception:
            self._log.exception("Connection update callback failed")

    def _transition(self, state: ConnectionState) -> bool:
        with self._lock:
            if self._stats.is_closed or self._closing:
                return False
            if state <= self._stats.state:
                msg = f"Illegal transition {self._stats.state.name} -> {state.name}"
                raise RuntimeError(msg)
            self._stats = self._stats.evolve(state=state)
            self._emit()
            return True

    def _record_transfer(self, size: int, *, upstream: bool) -> None:
        with self._lock:
            if self._stats.is_closed:
                return
            if upstream:
                self._stats = self._stats.evolve(bytes_in=self._stats.bytes_in + size)
            else:
                self._stats = self._stats.evolve(bytes_out=self._stats.bytes_out + size)
            self._emit()

    def _close_legs(self) -> None:
        with self._lock:
            if self._closing:
                return
            self._closing = True
            legs = [self._client, self._target]
        for leg in legs:
            if leg is not None:
                _close_socket(leg)

    def _finish(self) -> None:
        with self._lock:
            if self._stats.is_closed:
                return
            self._stats = self._stats.evolve(state=ConnectionState.CLOSED)
            self._emit()
            stats = self._stats
        self._log.debug(f"Closed after {stats.bytes_in} bytes in, {stats.bytes_out} bytes out")
