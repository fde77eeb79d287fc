"""Terminal collaborators for termlink.

Public API:
    Terminal -- Abstract base class (input + stdout + stderr)
    StreamTerminal -- In-memory terminal fed programmatically
    StdioTerminal -- The process's real terminal, in raw mode
"""

from termlink.terminal.base import Terminal
from termlink.terminal.stream import StreamTerminal

__all__ = ["Terminal", "StreamTerminal", "StdioTerminal"]


def __getattr__(name: str) -> type:
    """Lazy import for the POSIX-only stdio terminal."""
    if name == "StdioTerminal":
        from termlink.terminal.stdio import StdioTerminal
        return StdioTerminal
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
