"""Prompt and UI utilities."""

from hotspot_socks_relay.core.utils.prompt.prompt import PromptHandler, console
from hotspot_socks_relay.core.utils.prompt.proxy_ui import ProxyUI
from hotspot_socks_relay.core.utils.prompt.socks_ui import SocksUI

__all__ = ["console", "PromptHandler", "ProxyUI", "SocksUI"]
