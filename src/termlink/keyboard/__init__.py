"""Keyboard input decoding for termlink.

Public API:
    decode_key -- Classify a raw input chunk as a KeyEvent
    describe_key -- Human-readable rendering of a KeyEvent
"""

from termlink.keyboard.keys import decode_key, describe_key

__all__ = ["decode_key", "describe_key"]
