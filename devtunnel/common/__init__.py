"""Common utilities and configuration for DevTunnel."""

from .auth import SessionAuthority
from .config import DevTunnelConfig
from .constants import DEFAULT_CHUNK_SIZE, MAX_CHUNK_SIZE, ErrorCode
from .store import KeyValueStore, MemoryStore

__all__ = [
    "DevTunnelConfig",
    "SessionAuthority",
    "KeyValueStore",
    "MemoryStore",
    "ErrorCode",
    "DEFAULT_CHUNK_SIZE",
    "MAX_CHUNK_SIZE",
]
