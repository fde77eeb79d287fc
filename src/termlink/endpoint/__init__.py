"""Session server for termlink.

Accepts WebSocket connections, gives each one a Session that runs CLI
invocations through a CommandExecutor, and relays their output back to
the client terminal.
"""

from termlink.endpoint.executor import (
    CommandContext,
    CommandExecutor,
    CommandRegistry,
    InputChannel,
)
from termlink.endpoint.manager import SessionManager
from termlink.endpoint.server import Listener, ListenerHandle, create_app
from termlink.endpoint.session import Session

__all__ = [
    "CommandContext",
    "CommandExecutor",
    "CommandRegistry",
    "InputChannel",
    "Listener",
    "ListenerHandle",
    "Session",
    "SessionManager",
    "create_app",
]
