"""Common test fixtures and utilities."""

import socket
import socketserver
import threading
import time
from collections.abc import Callable, Generator

import pytest

from hotspot_socks_relay.core.lib.proxy_server import SocksServer
from hotspot_socks_relay.core.lib.proxy_stats import ConnectionState, ConnectionStats
from hotspot_socks_relay.core.lib.socks5_codec import (
    AddressType,
    Command,
    build_connect_request,
    build_method_selection,
)

TIMEOUT = 5.0


def recv_exact(sock: socket.socket, n: int) -> bytes:
    """Read exactly ``n`` bytes or fail on EOF."""
    data = b""
    while len(data) < n:
        chunk = sock.recv(n - len(data))
        if not chunk:
            raise ConnectionError(f"unexpected EOF after {len(data)} bytes")
        data += chunk
    return data


def recv_until_closed(sock: socket.socket) -> bytes:
    """Read everything until the peer closes."""
    data = b""
    while True:
        try:
            chunk = sock.recv(4096)
        except ConnectionResetError:
            return data
        if not chunk:
            return data
        data += chunk


class EventRecorder:
    """Collect server events from any thread."""

    def __init__(self) -> None:
        self.states: list[bool] = []
        self.errors: list[Exception] = []
        self.snapshots: list[ConnectionStats] = []
        self._cond = threading.Condition()

    def on_state_change(self, running: bool) -> None:
        with self._cond:
            self.states.append(running)
            self._cond.notify_all()

    def on_error(self, error: Exception) -> None:
        with self._cond:
            self.errors.append(error)
            self._cond.notify_all()

    def on_update(self, snapshot: ConnectionStats) -> None:
        with self._cond:
            self.snapshots.append(snapshot)
            self._cond.notify_all()

    def wait_for(self, predicate: Callable[[], bool], timeout: float = TIMEOUT) -> None:
        with self._cond:
            assert self._cond.wait_for(predicate, timeout=timeout), "timed out waiting for event"

    def for_connection(self, connection_id) -> list[ConnectionStats]:
        with self._cond:
            return [s for s in self.snapshots if s.id == connection_id]

    def ids_in_state(self, state: ConnectionState) -> list:
        with self._cond:
            ids = []
            for snapshot in self.snapshots:
                if snapshot.state is state and snapshot.id not in ids:
                    ids.append(snapshot.id)
            return ids

    def closed(self, connection_id) -> bool:
        return any(s.is_closed for s in self.for_connection(connection_id))

    def final(self, connection_id) -> ConnectionStats:
        self.wait_for(lambda: any(s.id == connection_id and s.is_closed for s in self.snapshots))
        return self.for_connection(connection_id)[-1]


class _RecordingEchoHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        while True:
            try:
                data = self.request.recv(4096)
            except OSError:
                return
            if not data:
                return
            self.server.received.append(data)
            self.request.sendall(data)


class EchoServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self) -> None:
        self.received: list[bytes] = []
        super().__init__(("127.0.0.1", 0), _RecordingEchoHandler)


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def echo_server() -> Generator[EchoServer, None, None]:
    server = EchoServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def refused_port() -> int:
    """A loopback port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def relay(recorder: EventRecorder) -> Generator[SocksServer, None, None]:
    server = SocksServer(
        port=0,
        on_state_change=recorder.on_state_change,
        on_error=recorder.on_error,
        on_connection_update=recorder.on_update,
    )
    server.start()
    yield server
    server.stop()


def open_client(server: SocksServer) -> socket.socket:
    sock = socket.create_connection(("127.0.0.1", server.address[1]), timeout=TIMEOUT)
    return sock


def socks_connect(
    server: SocksServer,
    host: str,
    port: int,
    address_type: AddressType = AddressType.IPV4,
) -> tuple[socket.socket, bytes]:
    """Negotiate and send CONNECT; return the socket and the raw 10-byte reply."""
    sock = open_client(server)
    sock.sendall(build_method_selection([0x00]))
    assert recv_exact(sock, 2) == b"\x05\x00"
    sock.sendall(build_connect_request(Command.CONNECT, address_type, host, port))
    return sock, recv_exact(sock, 10)


def wait_until(predicate: Callable[[], bool], timeout: float = TIMEOUT) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "timed out"
        time.sleep(0.01)
