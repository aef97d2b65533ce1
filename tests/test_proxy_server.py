"""End-to-end tests for the relay server on loopback."""

import errno
import socket
import socketserver
import time

import pytest
from conftest import TIMEOUT, EventRecorder, open_client, recv_exact, recv_until_closed, socks_connect, wait_until

from hotspot_socks_relay.core.exceptions import BindError, InvalidPortError, ListenerError
from hotspot_socks_relay.core.lib.proxy_server import BIND_ALL, SocksServer, validate_port
from hotspot_socks_relay.core.lib.proxy_stats import ConnectionState
from hotspot_socks_relay.core.lib.socks5_codec import AddressType
from hotspot_socks_relay.core.lib.socks_handler import SocksConnection

SUCCESS_REPLY = b"\x05\x00\x00\x01\x00\x00\x00\x00\x00\x00"


def test_listens_on_all_interfaces(relay):
    host, port = relay.address
    assert host == BIND_ALL
    assert port > 0
    assert relay.is_running


def test_connect_relays_both_directions(relay, recorder, echo_server):
    client, reply = socks_connect(relay, "127.0.0.1", echo_server.server_address[1])
    assert reply == SUCCESS_REPLY

    client.sendall(b"hello ")
    assert recv_exact(client, 6) == b"hello "
    client.sendall(b"through the relay")
    assert recv_exact(client, 17) == b"through the relay"
    assert b"".join(echo_server.received) == b"hello through the relay"

    (connection_id,) = recorder.ids_in_state(ConnectionState.RELAYING)
    client.close()

    final = recorder.final(connection_id)
    assert final.state is ConnectionState.CLOSED
    assert final.bytes_in == 23
    assert final.bytes_out == 23
    assert final.destination == f"127.0.0.1:{echo_server.server_address[1]}"

    seen = [s.state for s in recorder.for_connection(connection_id)]
    assert seen == sorted(seen)
    assert seen[0] is ConnectionState.AWAITING_GREETING
    wait_until(lambda: relay.connection_count == 0)


def test_counters_never_decrease(relay, recorder, echo_server):
    client, _ = socks_connect(relay, "127.0.0.1", echo_server.server_address[1])
    for chunk in (b"a", b"bb", b"ccc"):
        client.sendall(chunk)
        recv_exact(client, len(chunk))
    (connection_id,) = recorder.ids_in_state(ConnectionState.RELAYING)
    client.close()
    recorder.final(connection_id)

    snapshots = recorder.for_connection(connection_id)
    for earlier, later in zip(snapshots, snapshots[1:]):
        assert later.bytes_in >= earlier.bytes_in
        assert later.bytes_out >= earlier.bytes_out


def test_ipv6_destination(recorder, echo_server):
    if not socket.has_ipv6:
        pytest.skip("IPv6 not available")
    try:
        target = socket.create_server(("::1", 0), family=socket.AF_INET6)
    except OSError:
        pytest.skip("IPv6 loopback not available")
    server = SocksServer(port=0, on_connection_update=recorder.on_update)
    server.start()
    try:
        with target:
            client, reply = socks_connect(server, "::1", target.getsockname()[1], AddressType.IPV6)
            assert reply == SUCCESS_REPLY
            accepted, _ = target.accept()
            client.sendall(b"v6")
            assert recv_exact(accepted, 2) == b"v6"
            accepted.close()
            client.close()
    finally:
        server.stop()


def test_refused_destination(relay, recorder, refused_port):
    client, reply = socks_connect(relay, "127.0.0.1", refused_port)
    assert reply[:2] == b"\x05\x05"
    assert recv_until_closed(client) == b""

    (connection_id,) = recorder.ids_in_state(ConnectionState.CONNECTING)
    recorder.final(connection_id)
    assert ConnectionState.RELAYING not in [s.state for s in recorder.for_connection(connection_id)]


def test_stop_closes_relaying_connections(relay, recorder, echo_server):
    clients = []
    for _ in range(3):
        client, reply = socks_connect(relay, "127.0.0.1", echo_server.server_address[1])
        assert reply == SUCCESS_REPLY
        clients.append(client)
    recorder.wait_for(lambda: len(recorder.ids_in_state(ConnectionState.RELAYING)) == 3)
    ids = recorder.ids_in_state(ConnectionState.RELAYING)

    started = time.monotonic()
    relay.stop()
    assert time.monotonic() - started < TIMEOUT

    for connection_id in ids:
        assert recorder.closed(connection_id)
    counts = {connection_id: len(recorder.for_connection(connection_id)) for connection_id in ids}

    for client in clients:
        assert recv_until_closed(client) == b""
        client.close()

    time.sleep(0.2)
    for connection_id in ids:
        snapshots = recorder.for_connection(connection_id)
        assert len(snapshots) == counts[connection_id]
        assert [s.is_closed for s in snapshots].count(True) == 1
    assert relay.connection_count == 0
    assert recorder.states == [True, False]


def test_start_and_stop_are_idempotent(recorder):
    server = SocksServer(port=0, on_state_change=recorder.on_state_change)
    server.start()
    address = server.address
    server.start()
    assert server.address == address
    assert recorder.states == [True]

    server.stop()
    server.stop()
    assert recorder.states == [True, False]
    assert server.address is None
    assert not server.is_running


def test_restart_after_stop(recorder, echo_server):
    server = SocksServer(port=0, on_state_change=recorder.on_state_change)
    server.start()
    server.stop()
    server.start()
    try:
        client, reply = socks_connect(server, "127.0.0.1", echo_server.server_address[1])
        assert reply == SUCCESS_REPLY
        client.close()
    finally:
        server.stop()
    assert recorder.states == [True, False, True, False]


def test_stopped_server_refuses_clients(relay):
    port = relay.address[1]
    relay.stop()
    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=TIMEOUT)


@pytest.mark.parametrize("port", [-1, 65536, 100000, "1080", 1080.0, True])
def test_invalid_port(recorder, port):
    server = SocksServer(port=port, on_state_change=recorder.on_state_change, on_error=recorder.on_error)
    with pytest.raises(InvalidPortError):
        server.start()
    assert not server.is_running
    assert recorder.states == []
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], InvalidPortError)


def test_validate_port_accepts_range():
    assert validate_port(0) == 0
    assert validate_port(65535) == 65535


def test_port_in_use(recorder):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind((BIND_ALL, 0))
        blocker.listen()
        port = blocker.getsockname()[1]

        server = SocksServer(port=port, on_state_change=recorder.on_state_change, on_error=recorder.on_error)
        with pytest.raises(BindError):
            server.start()
    assert not server.is_running
    assert recorder.states == []
    assert isinstance(recorder.errors[0], BindError)


def test_bad_client_does_not_affect_others(relay, recorder, echo_server):
    bad = open_client(relay)
    bad.sendall(b"\x04garbage")
    assert recv_until_closed(bad) == b""
    bad.close()

    client, reply = socks_connect(relay, "127.0.0.1", echo_server.server_address[1])
    assert reply == SUCCESS_REPLY
    client.sendall(b"ok")
    assert recv_exact(client, 2) == b"ok"
    client.close()
    assert relay.is_running
    assert recorder.errors == []


def test_callback_failure_is_contained(echo_server):
    def explode(_snapshot):
        raise RuntimeError("owner bug")

    server = SocksServer(port=0, on_connection_update=explode)
    server.start()
    try:
        client, reply = socks_connect(server, "127.0.0.1", echo_server.server_address[1])
        assert reply == SUCCESS_REPLY
        client.sendall(b"still works")
        assert recv_exact(client, 11) == b"still works"
        client.close()
    finally:
        server.stop()


def test_connections_lists_live_snapshots(relay, echo_server):
    client, _ = socks_connect(relay, "127.0.0.1", echo_server.server_address[1])
    wait_until(lambda: any(s.state is ConnectionState.RELAYING for s in relay.connections()))
    (snapshot,) = relay.connections()
    assert snapshot.destination_port == echo_server.server_address[1]
    assert snapshot.client_address[0] == "127.0.0.1"
    client.close()
    wait_until(lambda: relay.connections() == [])


def test_accept_failure_stops_server(relay, recorder, echo_server, monkeypatch):
    client, reply = socks_connect(relay, "127.0.0.1", echo_server.server_address[1])
    assert reply == SUCCESS_REPLY
    (connection_id,) = recorder.ids_in_state(ConnectionState.RELAYING)

    def exhausted(self):
        raise OSError(errno.EMFILE, "Too many open files")

    monkeypatch.setattr(socketserver.TCPServer, "get_request", exhausted)
    open_client(relay).close()

    recorder.wait_for(lambda: recorder.states == [True, False])
    assert [type(e) for e in recorder.errors] == [ListenerError]
    assert recorder.closed(connection_id)
    assert not relay.is_running
    assert relay.connection_count == 0
    assert recv_until_closed(client) == b""
    client.close()


def test_failed_handler_start_is_reported_closed(relay, recorder, monkeypatch):
    def no_threads(self):
        raise RuntimeError("can't start new thread")

    monkeypatch.setattr(SocksConnection, "start", no_threads)
    client = open_client(relay)

    recorder.wait_for(lambda: any(s.is_closed for s in recorder.snapshots))
    (snapshot,) = recorder.snapshots
    assert snapshot.state is ConnectionState.CLOSED
    assert relay.connection_count == 0
    assert relay.is_running
    assert recv_until_closed(client) == b""
    client.close()
