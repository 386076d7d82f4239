"""Utility functions for DevTunnel."""

import secrets
import time
import uuid
from datetime import datetime, timezone

from .constants import HOP_BY_HOP_HEADERS, STRIPPED_REQUEST_HEADERS, TOKEN_BYTES


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """
    Generate a cryptographically random hex token.

    Args:
        nbytes: Number of random bytes (the token has twice as many hex chars)

    Returns:
        Hex encoded token
    """
    return secrets.token_hex(nbytes)


def generate_request_id() -> str:
    """Generate a unique request correlation id."""
    return str(uuid.uuid4())


def generate_tunnel_id() -> str:
    """Generate a tunnel identifier."""
    return f"tun_{uuid.uuid4().hex[:16]}"


def generate_subdomain() -> str:
    """Generate a random subdomain for tunnels registered without one."""
    return secrets.token_hex(4)


def mask_key(key: str, visible: int = 12) -> str:
    """Return a loggable preview of a credential."""
    if not key:
        return ""
    return key[:visible] + "..."


def build_public_url(scheme: str, subdomain: str, domain: str, port: int) -> str:
    """
    Build the public URL for a tunnel subdomain.

    The port is omitted for the well-known HTTP(S) ports.
    """
    port_part = "" if port in (80, 443) else f":{port}"
    return f"{scheme}://{subdomain}.{domain}{port_part}"


def filter_response_headers(headers: dict[str, str] | None) -> dict[str, str]:
    """Drop hop-by-hop headers from a reconstructed response."""
    return {
        key: value
        for key, value in (headers or {}).items()
        if key.lower() not in HOP_BY_HOP_HEADERS
    }


def sanitize_request_headers(headers: dict[str, str] | None) -> dict[str, str]:
    """Drop headers that must not be forwarded to the local service."""
    return {
        key: value
        for key, value in (headers or {}).items()
        if key.lower() not in STRIPPED_REQUEST_HEADERS
    }
