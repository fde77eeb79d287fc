"""ANSI escape constants and the private-use control envelope.

Control frames ride inside the regular output stream as OSC sequences
with the private-use code 666::

    ESC ] 666 ; <Tag>=<payload> BEL

A real terminal emulator ignores unknown OSC codes, so a frame that
leaks to a terminal is invisible. Payloads are either a short literal
(``on``/``off``, an exit code) or base64-encoded JSON, which can never
contain the BEL terminator.
"""

from __future__ import annotations

import base64
import json
from typing import Any

BEL = "\x07"
ESC = "\x1b"

# OSC envelope used for every control frame
CUSTOM_PREFIX = ESC + "]666;"
CUSTOM_TERMINATOR = BEL

# Erases the character left of the cursor
BACKSPACE_ERASE = "\b \b"


def encode_payload(value: Any) -> str:
    """Encode a JSON-serializable value as base64 text."""
    return base64.b64encode(json.dumps(value).encode("utf-8")).decode("ascii")


def decode_payload(value: str) -> Any:
    """Inverse of ``encode_payload``.

    Raises:
        ValueError: If the payload is not valid base64 JSON.
    """
    if not value:
        return ""
    raw = base64.b64decode(value.encode("ascii"), validate=True)
    return json.loads(raw.decode("utf-8"))


class custom:
    """Builders for the private-use control sequences."""

    @staticmethod
    def echo(enabled: bool) -> str:
        return f"{CUSTOM_PREFIX}Echo={'on' if enabled else 'off'}{CUSTOM_TERMINATOR}"

    @staticmethod
    def exec(command: str) -> str:
        return f"{CUSTOM_PREFIX}Exec={encode_payload(command)}{CUSTOM_TERMINATOR}"

    @staticmethod
    def exit(code: int) -> str:
        return f"{CUSTOM_PREFIX}Exit={int(code)}{CUSTOM_TERMINATOR}"

    @staticmethod
    def keypress(key: dict[str, Any]) -> str:
        return f"{CUSTOM_PREFIX}Keypress={encode_payload(key)}{CUSTOM_TERMINATOR}"
