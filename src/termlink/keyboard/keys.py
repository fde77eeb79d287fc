"""Keypress decoding for raw terminal input.

Turns a chunk of raw input read from a terminal in raw mode into a
structured ``KeyEvent``. Only the minimal set of sequences needed for
line editing is recognized; real escape sequences (cursor keys, function
keys) are left unclassified and are never assembled across chunks.
"""

from __future__ import annotations

import re

from termlink.domain.errors import InvalidArgument
from termlink.domain.models import KeyEvent

ESC = "\x1b"
DEL = "\x7f"

_ALNUM_RE = re.compile(r"^[0-9A-Za-z]$")
_UPPER_RE = re.compile(r"^[A-Z]$")

# Starts of CSI / SS3 sequences, which are not decoded
_UNSUPPORTED = ("O", "[")


def decode_key(chunk: str | None) -> KeyEvent:
    """Decode a raw input chunk into a KeyEvent.

    Args:
        chunk: The characters read from the terminal in one go. ``None``
               or ``""`` yields an unclassified event.

    Raises:
        InvalidArgument: If ``chunk`` is neither a string nor ``None``.
    """
    if chunk is None:
        return KeyEvent()
    if not isinstance(chunk, str):
        raise InvalidArgument(
            "Expected key sequence to be a string", name="chunk", value=chunk
        )

    name: str | None = None
    ctrl = meta = shift = False

    ch = chunk
    escaped = ch.startswith(ESC)
    if escaped:
        ch = ch[1:]
        if ch.startswith(ESC):
            ch = ch[1:]

    if not chunk:
        pass
    elif escaped and ch in _UNSUPPORTED:
        pass
    elif ch == "\n":
        name = "enter"
    elif ch == "\r":
        name = "return"
    elif ch in ("\b", DEL):
        name = "backspace"
    elif ch == ESC:
        meta = escaped
        name = "escape"
    elif ch == " ":
        meta = escaped
        name = "space"
    elif not escaped and ch <= "\x1a":
        ctrl = True
        name = chr(ord(ch[0]) + ord("a") - 1)
    elif _ALNUM_RE.match(ch):
        meta = escaped
        name = ch.lower()
        shift = bool(_UPPER_RE.match(ch))
    elif escaped:
        meta = True
        name = None if ch else "escape"

    return KeyEvent(name=name, sequence=chunk, ctrl=ctrl, meta=meta, shift=shift)


def describe_key(event: KeyEvent) -> str:
    """Render a key event as a human-readable combo, e.g. ``ctrl+c``."""
    if event.name is None:
        return repr(event.sequence)
    parts = [m for m in ("ctrl", "meta", "shift") if getattr(event, m)]
    parts.append(event.name)
    return "+".join(parts)
