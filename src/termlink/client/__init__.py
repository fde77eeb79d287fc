"""Client side of termlink: remote attach and local runs.

Public API:
    connect -- Attach a terminal to a session server
    RemoteClient -- The attached connection
    run_local -- Run a command in-process with the same rendering
"""

from termlink.client.local import run_local
from termlink.client.remote import RemoteClient, connect

__all__ = ["RemoteClient", "connect", "run_local"]
