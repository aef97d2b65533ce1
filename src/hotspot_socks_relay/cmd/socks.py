"""SOCKS relay command implementation.

This module owns a SocksServer for the command line:
- Starting the server on the requested port
- Feeding connection snapshots into the live dashboard
- Copying the address other devices should use to the clipboard
- Stopping the server on Ctrl+C or when the listener fails

Example:
    # Relay on port 1080 with the dashboard
    run_socks_proxy(1080)
"""

import threading

import pyperclip
from loguru import logger
from rich.console import Console

from hotspot_socks_relay.core.network import scan_interfaces
from hotspot_socks_relay.core.proxy import ProxyStats, SocksServer
from hotspot_socks_relay.core.utils.prompt import ProxyUI

console = Console()


def display_address(port: int) -> str:
    """Address other devices on the hotspot should configure."""
    interface = scan_interfaces()
    if interface is None:
        logger.warning("No suitable network interface found")
        return f"0.0.0.0:{port}"
    logger.debug(f"Advertising interface {interface.name} ({interface.ip})")
    return f"{interface.ip}:{port}"


def copy_to_clipboard(address: str) -> None:
    try:
        pyperclip.copy(address)
        console.print(f"[bold green]Relay address {address} copied to clipboard")
    except pyperclip.PyperclipException as e:
        console.print(f"[yellow]Could not copy to clipboard: {e}")


def run_socks_proxy(port: int, *, copy_address: bool = True, show_ui: bool = True) -> None:
    """Run the relay until interrupted.

    Args:
        port: Port to listen on (0 picks a free port)
        copy_address: Copy ``ip:port`` to the clipboard once listening
        show_ui: Draw the live dashboard instead of plain log output

    Raises:
        ProxyError: If the server cannot start
    """
    stats = ProxyStats()
    stopped = threading.Event()
    ui: ProxyUI | None = None

    def on_state_change(running: bool) -> None:
        if ui is not None:
            ui.set_running(running)
        if not running:
            stopped.set()
            if ui is not None:
                ui.stop()

    def on_error(error: Exception) -> None:
        if ui is not None:
            ui.set_error(error)
        console.print(f"[red]Relay error: {error}")

    server = SocksServer(
        port=port,
        on_state_change=on_state_change,
        on_error=on_error,
        on_connection_update=stats.record,
    )
    server.start()

    try:
        address = display_address(server.address[1])
        if copy_address:
            copy_to_clipboard(address)

        if show_ui:
            ui = ProxyUI(address, stats)
            ui.set_running(server.is_running)
            ui.run()
        else:
            console.print(f"[green]SOCKS5 relay listening on {address} (Ctrl+C to stop)")
            stopped.wait()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        console.print("\n[yellow]Shutting down relay...")
    finally:
        server.stop()
        console.print(
            f"[cyan]Relayed {stats.total_connections} connections, "
            f"{stats.total_bytes_in} bytes in / {stats.total_bytes_out} bytes out"
        )
