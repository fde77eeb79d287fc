"""Encoding and decoding of control frames carried in the byte stream.

``encode_frame`` turns a ControlFrame into its wire text. ``decode_frame``
reads one frame at a position in a buffer and reports how much it
consumed; it never applies a partial frame. ``FrameDecoder`` wraps it
with the buffering needed when frames are split across socket reads.
"""

from __future__ import annotations

import codecs
import logging
import re

from pydantic import ValidationError

from termlink.domain.errors import InvalidArgument, ProtocolError
from termlink.domain.models import (
    ControlFrame,
    EchoFrame,
    ExecFrame,
    ExitFrame,
    KeyEvent,
    KeypressFrame,
    RawFrame,
)
from termlink.protocol.ansi import (
    CUSTOM_PREFIX,
    CUSTOM_TERMINATOR,
    ESC,
    custom,
    decode_payload,
)

logger = logging.getLogger(__name__)

# An envelope longer than this without a terminator is treated as garbage
MAX_FRAME_LENGTH = 64 * 1024

# Shortest held tail that is more likely a split frame than an Escape key
MIN_FRAME_TAIL = 3

_BODY_RE = re.compile(r"^(?P<tag>[A-Za-z]+)=(?P<payload>.*)$", re.DOTALL)
_EXIT_RE = re.compile(r"^-?\d+$")

_ECHO_VALUES = {"on": True, "true": True, "off": False, "false": False}


def encode_frame(frame: ControlFrame) -> str:
    """Encode a control frame as wire text.

    Raises:
        InvalidArgument: If ``frame`` is not a ControlFrame.
    """
    if isinstance(frame, RawFrame):
        return frame.data
    if isinstance(frame, EchoFrame):
        return custom.echo(frame.enabled)
    if isinstance(frame, ExecFrame):
        return custom.exec(frame.command_line)
    if isinstance(frame, KeypressFrame):
        return custom.keypress(frame.event.model_dump())
    if isinstance(frame, ExitFrame):
        return custom.exit(frame.code)
    raise InvalidArgument("Expected a control frame", name="frame", value=frame)


def decode_frame(buffer: str, pos: int = 0) -> tuple[ControlFrame | None, int]:
    """Decode the frame starting at ``pos``.

    Returns:
        ``(frame, consumed)``. ``(None, 0)`` means the buffer ends inside
        a frame and more data is needed. Plain text comes back as a
        RawFrame running up to the next possible envelope.

    Raises:
        ProtocolError: If the envelope at ``pos`` is malformed. Its
            ``consumed`` attribute is the length to skip.
    """
    if pos >= len(buffer):
        return None, 0

    if buffer.startswith(CUSTOM_PREFIX, pos):
        body_start = pos + len(CUSTOM_PREFIX)
        end = buffer.find(CUSTOM_TERMINATOR, body_start)
        restart = buffer.find(CUSTOM_PREFIX, body_start)
        if restart != -1 and (end == -1 or restart < end):
            raise ProtocolError("Unterminated control frame", consumed=restart - pos)
        if end == -1:
            if len(buffer) - pos > MAX_FRAME_LENGTH:
                raise ProtocolError(
                    "Control frame exceeds maximum length",
                    consumed=len(buffer) - pos,
                )
            return None, 0
        consumed = end + len(CUSTOM_TERMINATOR) - pos
        return _parse_body(buffer[body_start:end], consumed), consumed

    if _is_partial_prefix(buffer, pos):
        return None, 0

    nxt = _next_envelope(buffer, pos + 1)
    return RawFrame(data=buffer[pos:nxt]), nxt - pos


def _parse_body(body: str, consumed: int) -> ControlFrame:
    m = _BODY_RE.match(body)
    if m is None:
        raise ProtocolError(f"Malformed control frame: {body[:40]!r}", consumed=consumed)
    tag, payload = m.group("tag"), m.group("payload")

    if tag == "Echo":
        enabled = _ECHO_VALUES.get(payload.lower())
        if enabled is None:
            raise ProtocolError(f"Invalid echo value: {payload!r}", consumed=consumed)
        return EchoFrame(enabled=enabled)

    if tag == "Exit":
        if not _EXIT_RE.match(payload):
            raise ProtocolError(f"Invalid exit code: {payload!r}", consumed=consumed)
        return ExitFrame(code=int(payload))

    if tag in ("Exec", "Keypress"):
        try:
            value = decode_payload(payload)
        except ValueError as e:
            raise ProtocolError(f"Undecodable {tag} payload: {e}", consumed=consumed) from e
        if tag == "Exec":
            if not isinstance(value, str):
                raise ProtocolError("Exec payload must be a string", consumed=consumed)
            return ExecFrame(command_line=value)
        try:
            return KeypressFrame(event=KeyEvent.model_validate(value))
        except ValidationError as e:
            raise ProtocolError(f"Invalid keypress payload: {e}", consumed=consumed) from e

    raise ProtocolError(f"Unknown control frame type: {tag!r}", consumed=consumed)


def _is_partial_prefix(buffer: str, pos: int) -> bool:
    """True when the buffer tail at ``pos`` could still grow into an envelope."""
    tail = buffer[pos:]
    return len(tail) < len(CUSTOM_PREFIX) and CUSTOM_PREFIX.startswith(tail)


def _next_envelope(buffer: str, start: int) -> int:
    idx = buffer.find(ESC, start)
    while idx != -1:
        if buffer.startswith(CUSTOM_PREFIX, idx) or _is_partial_prefix(buffer, idx):
            return idx
        idx = buffer.find(ESC, idx + 1)
    return len(buffer)


def is_control_frame(chunk: object) -> bool:
    """True when ``chunk`` is exactly one encoded signal frame."""
    if isinstance(chunk, (EchoFrame, ExecFrame, KeypressFrame, ExitFrame)):
        return True
    if not isinstance(chunk, str) or not chunk.startswith(CUSTOM_PREFIX):
        return False
    try:
        frame, consumed = decode_frame(chunk)
    except ProtocolError:
        return False
    return frame is not None and not isinstance(frame, RawFrame) and consumed == len(chunk)


class FrameDecoder:
    """Resumable decoder for a stream of interleaved text and frames.

    Example usage::

        decoder = FrameDecoder()
        for frame in decoder.feed(message):
            ...

    Partial frames stay buffered until the next ``feed()``. Malformed
    frames are logged and dropped; decoding resumes after them.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.errors = 0

    @property
    def pending(self) -> str:
        """Buffered text that has not formed a complete frame yet."""
        return self._buffer

    def feed(self, data: str | bytes) -> list[ControlFrame]:
        if isinstance(data, bytes):
            data = self._utf8.decode(data)
        self._buffer += data

        frames: list[ControlFrame] = []
        pos = 0
        while pos < len(self._buffer):
            try:
                frame, consumed = decode_frame(self._buffer, pos)
            except ProtocolError as e:
                self.errors += 1
                logger.warning("Dropping malformed control frame: %s", e)
                pos += max(e.consumed, 1)
                continue
            if frame is None:
                break
            frames.append(frame)
            pos += consumed

        self._buffer = self._buffer[pos:]
        return frames

    def flush(self) -> list[ControlFrame]:
        """Return whatever is buffered as raw text and reset."""
        data, self._buffer = self._buffer, ""
        return [RawFrame(data=data)] if data else []

    def release_escape(self) -> list[ControlFrame]:
        """Return a held ``ESC`` or ``ESC ]`` tail as raw text.

        Call this at a message boundary when the peer never splits frames
        across messages: the tail is then a typed Escape key, not the start
        of a frame.
        """
        if self._buffer and len(self._buffer) < MIN_FRAME_TAIL:
            return self.flush()
        return []
