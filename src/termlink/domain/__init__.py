"""Domain models and errors for termlink.

This package contains the core data structures, enumerations, and the
error taxonomy used throughout the system. All models use Pydantic v2
for validation and serialization.
"""

from termlink.domain.errors import (
    AddressInUse,
    InvalidArgument,
    InvocationError,
    ProtocolError,
    TermlinkError,
)
from termlink.domain.models import (
    BannerState,
    ControlFrame,
    EchoFrame,
    ExecFrame,
    ExitEvent,
    ExitFrame,
    KeyEvent,
    KeypressFrame,
    OutputEvent,
    RawFrame,
    SessionInfo,
    SessionState,
    StreamName,
)

__all__ = [
    "AddressInUse",
    "BannerState",
    "ControlFrame",
    "EchoFrame",
    "ExecFrame",
    "ExitEvent",
    "ExitFrame",
    "InvalidArgument",
    "InvocationError",
    "KeyEvent",
    "KeypressFrame",
    "OutputEvent",
    "ProtocolError",
    "RawFrame",
    "SessionInfo",
    "SessionState",
    "StreamName",
    "TermlinkError",
]
