"""SOCKS relay server: listening socket, accept loop and connection table.

This module implements the listener side of the relay:
- Binding all interfaces so other devices on the hotspot can connect
- An accept loop running on its own daemon thread
- A table of live connections keyed by connection id
- Lifecycle and error events forwarded to the owner
- Idempotent start/stop with full teardown of every connection

The connection table is the only state shared between threads: the accept
loop inserts into it and every connection removes itself when it reports
its CLOSED snapshot. Both paths go through the server lock.

Example:
    server = SocksServer(
        port=1080,
        on_state_change=lambda running: print("running" if running else "stopped"),
        on_connection_update=stats.record,
    )
    server.start()
    ...
    server.stop()
"""

import socketserver
import threading
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from loguru import logger

from hotspot_socks_relay.core.exceptions import BindError, InvalidPortError, ListenerError, ProxyError

from .dns_handler import DNSResolver
from .proxy_stats import ConnectionStats
from .socks_handler import SocksConnection

if TYPE_CHECKING:
    from loguru import Logger

# Constants
BIND_ALL: Final = "0.0.0.0"
DEFAULT_PORT: Final = 1080
MAX_PORT: Final = 0xFFFF

StateCallback = Callable[[bool], None]
ErrorCallback = Callable[[Exception], None]
UpdateCallback = Callable[[ConnectionStats], None]


class SocksListener(socketserver.TCPServer):
    """Listening socket whose accepted clients are handed to the owning server."""

    allow_reuse_address = True
    request_queue_size = 100

    def __init__(self, server_address: tuple[str, int], owner: "SocksServer") -> None:
        self.owner = owner
        self.failed = False
        super().__init__(server_address, socketserver.BaseRequestHandler)

    def get_request(self):
        """Accept a client, reporting accept failures to the owner.

        socketserver swallows an OSError raised here and keeps polling, so the
        first failure is handed to the owner, which shuts the loop down.
        """
        try:
            return super().get_request()
        except OSError as e:
            if not self.failed:
                self.failed = True
                self.owner._accept_failed(self, e)
            raise

    def process_request(self, request, client_address) -> None:
        """Start a connection handler for an accepted socket."""
        self.owner._accept(request, client_address)

    def handle_error(self, request, client_address) -> None:
        self.owner._log.exception(f"Could not set up connection from {client_address}")


def validate_port(port: object) -> int:
    """Check that ``port`` is a usable 16-bit port number.

    Port 0 lets the operating system pick a free port.

    Raises:
        InvalidPortError: If the port is not an integer in 0-65535
    """
    if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= MAX_PORT:
        raise InvalidPortError(port)
    return port


class SocksServer:
    """SOCKS5 relay server owned by a UI or CLI."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        on_state_change: StateCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_connection_update: UpdateCallback | None = None,
        log: "Logger | None" = None,
        resolver: DNSResolver | None = None,
    ) -> None:
        """Initialize a stopped server.

        Args:
            port: Port to listen on, on all interfaces
            on_state_change: Called with True once listening, False once stopped
            on_error: Called with listener-level failures
            on_connection_update: Called with every connection snapshot
            log: Logger to bind server context to
            resolver: Resolver shared by all connections for domain targets
        """
        self.port = port
        self.on_state_change = on_state_change
        self.on_error = on_error
        self.on_connection_update = on_connection_update
        self._log = (log or logger).bind(component="server")
        self._resolver = resolver or DNSResolver(log=self._log)
        self._lock = threading.Lock()
        self._listener: SocksListener | None = None
        self._connections: dict[uuid.UUID, SocksConnection] = {}

    @property
    def is_running(self) -> bool:
        return self._listener is not None

    @property
    def address(self) -> tuple[str, int] | None:
        """Bound address while running, with the real port when 0 was requested."""
        listener = self._listener
        if listener is None:
            return None
        return listener.server_address[:2]

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def connections(self) -> list[ConnectionStats]:
        """Snapshots of every live connection."""
        with self._lock:
            connections = list(self._connections.values())
        return [connection.snapshot() for connection in connections]

    def start(self) -> None:
        """Bind the listening socket and start accepting.

        Does nothing if the server is already running.

        Raises:
            InvalidPortError: If the configured port is out of range
            BindError: If the port is in use or binding is not permitted
        """
        error: ProxyError | None = None
        with self._lock:
            if self._listener is not None:
                return
            try:
                listener = self._bind(validate_port(self.port))
            except ProxyError as e:
                error = e
            else:
                self._listener = listener
                threading.Thread(target=self._serve, args=(listener,), name="socks-accept", daemon=True).start()

        if error is not None:
            self._log.error(f"Could not start SOCKS server: {error}")
            self._notify_error(error)
            raise error

        host, port = listener.server_address[:2]
        self._log.info(f"SOCKS server listening on {host}:{port}")
        self._notify_state(running=True)

    def stop(self) -> None:
        """Stop accepting, close every connection and release the socket.

        Does nothing if the server is not running.
        """
        with self._lock:
            listener, self._listener = self._listener, None
        if listener is None:
            return

        listener.shutdown()
        listener.server_close()
        self._cancel_all()
        self._log.info("SOCKS server stopped")
        self._notify_state(running=False)

    def _bind(self, port: int) -> SocksListener:
        try:
            return SocksListener((BIND_ALL, port), self)
        except OSError as e:
            msg = f"Could not bind {BIND_ALL}:{port}: {e.strerror or e}"
            raise BindError(msg) from e

    def _serve(self, listener: SocksListener) -> None:
        try:
            listener.serve_forever()
        except Exception as e:
            self._log.exception("Accept loop failed")
            self._fail(listener, ListenerError(f"Accept loop failed: {e}"))

    def _accept_failed(self, listener: SocksListener, exc: OSError) -> None:
        # Runs on the accept thread, where shutdown() would deadlock
        self._log.error(f"Accepting connections failed: {exc}")
        error = ListenerError(f"Accept failed: {exc.strerror or exc}")
        threading.Thread(target=self._fail, args=(listener, error), name="socks-accept-failed", daemon=True).start()

    def _fail(self, listener: SocksListener, error: ListenerError) -> None:
        with self._lock:
            if self._listener is not listener:
                return
            self._listener = None
        listener.shutdown()
        listener.server_close()
        self._cancel_all()
        self._notify_error(error)
        self._notify_state(running=False)

    def _cancel_all(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        if connections:
            self._log.info(f"Closing {len(connections)} active connections")
        for connection in connections:
            connection.cancel()

    def _accept(self, request, client_address) -> None:
        connection = SocksConnection(
            request,
            client_address,
            self._on_connection_update,
            log=self._log,
            resolver=self._resolver,
        )
        with self._lock:
            self._connections[connection.id] = connection
        self._log.debug(f"Accepted {client_address[0]}:{client_address[1]} as {connection.id.hex[:8]}")
        try:
            connection.start()
        except Exception:
            # Closed snapshot removes the table entry
            connection.cancel()
            raise

    def _on_connection_update(self, stats: ConnectionStats) -> None:
        # Runs on the connection's thread while it holds its own lock
        if stats.is_closed:
            with self._lock:
                self._connections.pop(stats.id, None)
        if self.on_connection_update is not None:
            self.on_connection_update(stats)

    def _notify_state(self, *, running: bool) -> None:
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(running)
        except Exception:
            self._log.exception("State change callback failed")

    def _notify_error(self, error: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            self._log.exception("Error callback failed")
