"""Connection statistics for the SOCKS relay.

This module provides two things:
- The per-connection snapshot (ConnectionStats) that every connection
  handler emits on destination resolution, state transitions and relay
  transfers
- An owner-side aggregator (ProxyStats) that folds those snapshots into a
  live connection table, transfer totals and bandwidth history

Snapshots are immutable values, so they can be handed across threads without
copying. The aggregator is thread-safe; snapshots arrive from every
connection's worker thread.

Example:
    stats = ProxyStats()
    server = SocksServer(port=1080, on_connection_update=stats.record)

    # Later, from the UI thread
    print(stats.active_connections, stats.get_bandwidth())
"""

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import IntEnum

BANDWIDTH_WINDOW = 5  # Seconds


class ConnectionState(IntEnum):
    """Lifecycle of a relayed connection, in transition order."""

    AWAITING_GREETING = 1
    AWAITING_REQUEST = 2
    CONNECTING = 3
    RELAYING = 4
    CLOSED = 5


@dataclass(frozen=True)
class ConnectionStats:
    """Point-in-time snapshot of one connection.

    Attributes:
        id: Unique connection identifier
        start_time: When the connection was accepted (UTC)
        client_address: Peer address of the client leg
        state: Lifecycle state at the time of the snapshot
        destination_host: Requested host, once the request is parsed
        destination_port: Requested port, once the request is parsed
        bytes_in: Bytes relayed from the client to the target
        bytes_out: Bytes relayed from the target to the client
    """

    id: uuid.UUID
    start_time: datetime
    client_address: tuple[str, int] | None = None
    state: ConnectionState = ConnectionState.AWAITING_GREETING
    destination_host: str | None = None
    destination_port: int | None = None
    bytes_in: int = 0
    bytes_out: int = 0

    @classmethod
    def new(cls, client_address: tuple[str, int] | None = None) -> "ConnectionStats":
        return cls(id=uuid.uuid4(), start_time=datetime.now(tz=UTC), client_address=client_address)

    @property
    def destination(self) -> str | None:
        if self.destination_host is None:
            return None
        return f"{self.destination_host}:{self.destination_port}"

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def evolve(self, **changes) -> "ConnectionStats":
        return replace(self, **changes)


class ProxyStats:
    """Thread-safe aggregator of connection snapshots.

    Maintains the owner's view of the relay:
    - Table of open connections keyed by id
    - Total bytes relayed in each direction, including closed connections
    - Bandwidth history for the last 60 transfers

    Connections are dropped from the table when their Closed snapshot arrives.
    """

    def __init__(self) -> None:
        """Initialize an empty aggregator."""
        self.total_bytes_in = 0
        self.total_bytes_out = 0
        self.total_connections = 0
        self.bandwidth_history = deque(maxlen=60)
        self.start_time = datetime.now(tz=UTC)
        self._connections: dict[uuid.UUID, ConnectionStats] = {}
        self._lock = threading.Lock()

    def record(self, snapshot: ConnectionStats) -> None:
        """Fold a snapshot into the aggregate.

        Args:
            snapshot: Latest snapshot emitted by a connection
        """
        with self._lock:
            previous = self._connections.get(snapshot.id)
            if previous is None:
                self.total_connections += 1
                previous = ConnectionStats(id=snapshot.id, start_time=snapshot.start_time)

            delta_in = max(snapshot.bytes_in - previous.bytes_in, 0)
            delta_out = max(snapshot.bytes_out - previous.bytes_out, 0)
            self.total_bytes_in += delta_in
            self.total_bytes_out += delta_out
            if delta_in or delta_out:
                self.bandwidth_history.append((delta_in + delta_out, time.time()))

            if snapshot.is_closed:
                self._connections.pop(snapshot.id, None)
            else:
                self._connections[snapshot.id] = snapshot

    def get_bandwidth(self) -> float:
        """Calculate current bandwidth usage in bytes per second.

        Returns:
            float: Average bandwidth over the last few seconds in bytes/second
        """
        with self._lock:
            cutoff = time.time() - BANDWIDTH_WINDOW
            recent = [bytes_ for bytes_, ts in self.bandwidth_history if ts > cutoff]
            if not recent:
                return 0
            return sum(recent) / BANDWIDTH_WINDOW

    @property
    def active_connections(self) -> int:
        with self._lock:
            return len(self._connections)

    def connections(self) -> list[ConnectionStats]:
        """Open connections, oldest first."""
        with self._lock:
            return sorted(self._connections.values(), key=lambda s: s.start_time)
