"""Utility functions and helpers."""

from hotspot_socks_relay.core.utils.log_config import configure_logging
from hotspot_socks_relay.core.utils.prompt import PromptHandler, ProxyUI
from hotspot_socks_relay.core.utils.utils import format_bytes, format_duration

__all__ = ["configure_logging", "format_bytes", "format_duration", "PromptHandler", "ProxyUI"]
