"""Per-connection table for the live display."""

from datetime import UTC, datetime

from rich.table import Table

from hotspot_socks_relay.core.lib.proxy_stats import ConnectionState, ProxyStats
from hotspot_socks_relay.core.utils.prompt.prompt import PromptHandler
from hotspot_socks_relay.core.utils.utils import format_bytes, format_duration

MAX_ROWS = 15

STATE_STYLES = {
    ConnectionState.AWAITING_GREETING: "dim",
    ConnectionState.AWAITING_REQUEST: "dim",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.RELAYING: "green",
    ConnectionState.CLOSED: "red",
}


class SocksUI(PromptHandler):
    """Render the open connections tracked by a ProxyStats."""

    def __init__(self, stats: ProxyStats) -> None:
        """Initialize the table renderer.

        Args:
            stats: Aggregator holding the connections to show
        """
        super().__init__()
        self.stats = stats

    def generate_table(self) -> Table:
        """Generate the connections table, newest connections last."""
        table = Table(box=None, padding=(0, 1), expand=True)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Client", no_wrap=True)
        table.add_column("Destination", no_wrap=True)
        table.add_column("State", no_wrap=True)
        table.add_column("In", justify="right", style="green")
        table.add_column("Out", justify="right", style="green")
        table.add_column("Age", justify="right")

        now = datetime.now(tz=UTC)
        connections = self.stats.connections()
        for snapshot in connections[-MAX_ROWS:]:
            client = f"{snapshot.client_address[0]}:{snapshot.client_address[1]}" if snapshot.client_address else "-"
            table.add_row(
                snapshot.id.hex[:8],
                client,
                snapshot.destination or "-",
                f"[{STATE_STYLES[snapshot.state]}]{snapshot.state.name.lower()}",
                format_bytes(snapshot.bytes_in),
                format_bytes(snapshot.bytes_out),
                format_duration(now - snapshot.start_time),
            )

        hidden = len(connections) - MAX_ROWS
        if hidden > 0:
            table.add_row("", f"[dim]... {hidden} more", "", "", "", "", "")
        return table
