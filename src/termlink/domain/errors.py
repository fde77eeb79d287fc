"""Error taxonomy shared by every termlink component.

Argument validation errors always fail the call. Protocol errors are
recoverable: the offending bytes are dropped and the connection stays
open. Invocation errors never reach the protocol layer; they are turned
into an exit code plus error output.
"""

from __future__ import annotations

import errno


class TermlinkError(Exception):
    """Base class for all termlink errors."""


class InvalidArgument(TermlinkError, TypeError):
    """Raised when a constructor or operation receives a malformed argument."""

    def __init__(self, message: str, name: str = "", value: object = None) -> None:
        super().__init__(message)
        self.name = name
        self.value = value


class AddressInUse(TermlinkError, OSError):
    """Raised when a listener cannot bind because the port is taken."""

    def __init__(self, port: int, host: str = "") -> None:
        super().__init__(errno.EADDRINUSE, f"Address already in use: {host}:{port}")
        self.port = port
        self.host = host

    def __str__(self) -> str:
        return self.strerror


class ProtocolError(TermlinkError):
    """Raised when a control frame cannot be decoded.

    ``consumed`` is the number of characters occupied by the malformed
    frame so the decoder can resume right after it.
    """

    def __init__(self, message: str, consumed: int = 0) -> None:
        super().__init__(message)
        self.consumed = consumed


class InvocationError(TermlinkError):
    """Raised inside an executor when a command cannot be run."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code
