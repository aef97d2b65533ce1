"""Allow ``python -m hotspot_socks_relay``."""

from hotspot_socks_relay.cmd.cli import app

app()
