"""Relay dashboard for the terminal."""

import threading
import time
from datetime import UTC, datetime

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from hotspot_socks_relay.core.lib.proxy_stats import ProxyStats
from hotspot_socks_relay.core.utils.utils import format_bytes, format_duration

from .prompt import PromptHandler
from .socks_ui import SocksUI

BANDWIDTH_THRESHOLD = 100  # bytes


class ProxyUI(PromptHandler):
    """Live panel showing the relay address, traffic and open connections."""

    def __init__(self, address: str, stats: ProxyStats) -> None:
        """Initialize the dashboard.

        Args:
            address: ``host:port`` other devices should use
            stats: Aggregator fed by the server's connection updates
        """
        super().__init__()
        self.address = address
        self.stats = stats
        self.running = False
        self.error: str | None = None
        self._connections = SocksUI(stats)
        self._last_bandwidth = 0.0
        self._start_time = time.monotonic()
        self._refresh_rate = 0.5
        self._stopped = threading.Event()

    def set_running(self, running: bool) -> None:
        """Server state callback."""
        self.running = running

    def set_error(self, error: Exception) -> None:
        """Server error callback."""
        self.error = str(error)

    def stop(self) -> None:
        self._stopped.set()

    def _generate_summary(self) -> Table:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", no_wrap=True)

        bandwidth = self.stats.get_bandwidth()
        if abs(bandwidth - self._last_bandwidth) > BANDWIDTH_THRESHOLD or not bandwidth:
            self._last_bandwidth = bandwidth
        spinner = self._spinner.render(time.monotonic() - self._start_time)

        table.add_row("Status", "[green]running" if self.running else "[red]stopped")
        table.add_row("Uptime", format_duration(datetime.now(tz=UTC) - self.stats.start_time))
        table.add_row("Bandwidth", Text.assemble(spinner, f" {format_bytes(self._last_bandwidth)}/s"))
        table.add_row("Active Connections", str(self.stats.active_connections))
        table.add_row("Total Connections", str(self.stats.total_connections))
        table.add_row(
            "Data Transferred",
            f"{format_bytes(self.stats.total_bytes_in)} in / {format_bytes(self.stats.total_bytes_out)} out",
        )
        if self.error:
            table.add_row("Last Error", f"[red]{self.error}")
        return table

    def generate_display(self) -> Panel:
        """Generate the main display panel."""
        title = Text(f"SOCKS5 Relay: {self.address}", style="bold cyan")
        return Panel(
            Group(self._generate_summary(), Text(""), self._connections.generate_table()),
            title=title,
            subtitle="Press Ctrl+C to exit",
            border_style="blue",
            padding=(1, 2),
        )

    def run(self) -> None:
        """Redraw the panel until stop() is called or Ctrl+C is pressed."""
        with self.create_live_display(self.generate_display(), refresh_per_second=4) as live:
            while not self._stopped.wait(self._refresh_rate):
                live.update(self.generate_display(), refresh=True)
