"""
DevTunnel - HTTP tunneling over a single persistent connection.

Provides the wire protocol that frames, correlates and streams HTTP exchanges
between the relay and a tunnel client, and the credential/session authority
that gates tunnel registration.
"""

__version__ = "0.1.0"
__author__ = "DevTunnel Team"

# Lazily expose `main` so importing the package does not pull in the CLI
import importlib


def __getattr__(name):
    if name == "main":
        return importlib.import_module(".cli", __name__).main
    raise AttributeError(f"module {__name__} has no attribute {name}")


__all__ = ["main"]
