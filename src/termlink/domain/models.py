"""Core domain models for the termlink system.

These models represent the data flowing through a remote session:
decoded keypresses, the control frames smuggled inside the output
stream, output events produced by a CLI invocation, and session
snapshots exposed by the server.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionState(str, enum.Enum):
    """Lifecycle state of a server-side session."""

    OPEN = "open"
    AWAITING_INPUT = "awaiting_input"
    RUNNING = "running"
    CLOSED = "closed"


class StreamName(str, enum.Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


# ---------------------------------------------------------------------------
# Keyboard Models
# ---------------------------------------------------------------------------


class KeyEvent(BaseModel):
    """A single decoded keypress.

    ``sequence`` is the raw input exactly as received; it is ``None`` only
    when the input itself was empty or absent.
    """

    model_config = ConfigDict(frozen=True)

    name: str | None = Field(default=None, description="Key name, unset when unclassified")
    sequence: str | None = Field(default=None, description="Raw input sequence")
    ctrl: bool = False
    meta: bool = False
    shift: bool = False


# ---------------------------------------------------------------------------
# Control Frame Models (discriminated union)
# ---------------------------------------------------------------------------


class EchoFrame(BaseModel):
    """Toggles whether typed input is echoed back."""

    model_config = ConfigDict(frozen=True)

    type: Literal["echo"] = "echo"
    enabled: bool


class ExecFrame(BaseModel):
    """Explicit request to run a command line."""

    model_config = ConfigDict(frozen=True)

    type: Literal["exec"] = "exec"
    command_line: str


class KeypressFrame(BaseModel):
    """A keypress forwarded from the client terminal."""

    model_config = ConfigDict(frozen=True)

    type: Literal["keypress"] = "keypress"
    event: KeyEvent


class ExitFrame(BaseModel):
    """Sent by the server when a command finishes."""

    model_config = ConfigDict(frozen=True)

    type: Literal["exit"] = "exit"
    code: int


class RawFrame(BaseModel):
    """Plain stream content between control frames."""

    model_config = ConfigDict(frozen=True)

    type: Literal["raw"] = "raw"
    data: str


ControlFrame = Annotated[
    Union[EchoFrame, ExecFrame, KeypressFrame, ExitFrame, RawFrame],
    Field(discriminator="type"),
]

# Frames that carry a signal rather than content
SIGNAL_FRAMES = (EchoFrame, ExecFrame, KeypressFrame, ExitFrame)


# ---------------------------------------------------------------------------
# Invocation Models
# ---------------------------------------------------------------------------


class OutputEvent(BaseModel):
    """A chunk of output produced by a CLI invocation.

    ``data`` may also be a signal frame (e.g. an echo toggle issued by a
    password prompt) which the session relays to the client.
    """

    model_config = ConfigDict(frozen=True)

    stream: StreamName = StreamName.STDOUT
    data: str | bytes | EchoFrame


class ExitEvent(BaseModel):
    """Final event of every invocation."""

    model_config = ConfigDict(frozen=True)

    exit_code: int = 0


InvocationEvent = Union[OutputEvent, ExitEvent]


# ---------------------------------------------------------------------------
# Session Models
# ---------------------------------------------------------------------------


class BannerState(BaseModel):
    """Per-stream banner decision.

    ``decided`` flips on the first content-bearing chunk; after that no
    further banner logic runs for the stream.
    """

    decided: bool = False
    suppressed: bool = False


class SessionInfo(BaseModel):
    """Read-only snapshot of a server session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    state: SessionState
    echo_enabled: bool
    peer: str | None = None
    connected_at: datetime
    current_command: str | None = None
    last_exit_code: int | None = None
    commands_run: int = Field(default=0, ge=0)
