"""Relay-side composition of the tunnel protocol and session authority."""

from .handler import TunnelInfo, TunnelMessageHandler, TunnelResponse

__all__ = [
    "TunnelInfo",
    "TunnelMessageHandler",
    "TunnelResponse",
]
