"""Command-line interface for the SOCKS relay.

This module provides the main command-line interface, handling:
- Command-line argument parsing
- Logging setup
- Server start-up errors
- Interface listing

The CLI is built using Typer and provides:
- ``proxy`` to run the relay on a port
- ``interfaces`` to show which addresses other devices can use

Example:
    # Run from command line:
    $ hotspot-socks-relay proxy --port 1080 --no-ui
"""

import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from hotspot_socks_relay import __version__
from hotspot_socks_relay.cmd.socks import run_socks_proxy
from hotspot_socks_relay.core.exceptions import ProxyError
from hotspot_socks_relay.core.lib.proxy_server import DEFAULT_PORT
from hotspot_socks_relay.core.network import list_interfaces
from hotspot_socks_relay.core.utils.log_config import configure_logging

console = Console()
app = typer.Typer(help="SOCKS5 relay for devices on your hotspot")


@app.callback(invoke_without_command=True)
def version_callback():
    """Show version information."""
    console.print(f"[cyan]Hotspot SOCKS Relay v{__version__}[/cyan]")


@app.command(name="proxy")
def start_proxy(
    port: int = typer.Option(DEFAULT_PORT, "--port", "-p", help="Port to listen on"),
    debug: bool = typer.Option(
        default=False,
        help="Enable debug logging",
    ),
    copy: bool = typer.Option(True, "--copy/--no-copy", help="Copy the relay address to the clipboard"),
    ui: bool = typer.Option(True, "--ui/--no-ui", help="Show the live connection dashboard"),
):
    """Start the SOCKS5 relay."""
    log_file = configure_logging(debug=debug, console=not ui)
    logger.info(f"Starting SOCKS relay on port {port}")

    try:
        run_socks_proxy(port, copy_address=copy, show_ui=ui)
    except ProxyError as e:
        logger.error(f"Relay failed to start: {e}")
        console.print(f"[red]Error: {e}")
        console.print(f"[dim]Log file: {log_file}")
        sys.exit(1)


@app.command(name="interfaces")
def show_interfaces():
    """Show the addresses other devices can use to reach the relay."""
    interfaces = list_interfaces()
    if not interfaces:
        console.print("[red]No suitable network interface found")
        raise typer.Exit(1)

    table = Table(title="Network Interfaces")
    table.add_column("Interface", style="cyan")
    table.add_column("IP Address", style="green")
    table.add_column("Kind")

    for iface in interfaces:
        kind = "hotspot" if iface.is_hotspot else "wireless" if iface.is_wireless else "wired/other"
        table.add_row(iface.name, iface.ip, kind)
    console.print(table)


if __name__ == "__main__":
    app()
