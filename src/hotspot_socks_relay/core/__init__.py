"""Core relay implementation.

This package contains the components of the SOCKS5 relay:
- Wire codec and per-connection protocol state machine
- Threaded listener with a shared connection table
- Connection snapshots and their aggregation
- Destination name resolution
- Network interface discovery and terminal UI used by the CLI
- Exception handling

The engine in ``core.lib`` knows nothing about the terminal; the CLI in
``hotspot_socks_relay.cmd`` owns it through the callbacks of SocksServer.
"""
