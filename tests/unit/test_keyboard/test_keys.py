"""Tests for raw keypress decoding."""

from __future__ import annotations

import pytest

from termlink.domain.errors import InvalidArgument
from termlink.domain.models import KeyEvent
from termlink.keyboard.keys import decode_key, describe_key


class TestDecodeKey:
    """Test decode_key() against the supported sequences."""

    @pytest.mark.parametrize(
        "chunk, expected",
        [
            (None, KeyEvent()),
            ("a", KeyEvent(name="a", sequence="a")),
            ("\x1b", KeyEvent(name="escape", sequence="\x1b", meta=True)),
            ("\x1bO", KeyEvent(name=None, sequence="\x1bO")),
            ("\x1b[", KeyEvent(name=None, sequence="\x1b[")),
            ("\n", KeyEvent(name="enter", sequence="\n")),
            ("\r", KeyEvent(name="return", sequence="\r")),
            ("\b", KeyEvent(name="backspace", sequence="\b")),
            ("\x7f", KeyEvent(name="backspace", sequence="\x7f")),
            (" ", KeyEvent(name="space", sequence=" ")),
            ("\x0f", KeyEvent(name="o", sequence="\x0f", ctrl=True)),
            ("\x1b\x1b\x1b", KeyEvent(name="escape", sequence="\x1b\x1b\x1b", meta=True)),
        ],
    )
    def test_known_sequences(self, chunk: str | None, expected: KeyEvent) -> None:
        assert decode_key(chunk) == expected

    def test_empty_string_keeps_sequence(self) -> None:
        """An empty chunk is unclassified but keeps its sequence."""
        event = decode_key("")
        assert event.name is None
        assert event.sequence == ""
        assert not (event.ctrl or event.meta or event.shift)

    def test_uppercase_sets_shift(self) -> None:
        event = decode_key("A")
        assert event.name == "a"
        assert event.shift is True
        assert event.ctrl is False

    def test_digit(self) -> None:
        assert decode_key("7") == KeyEvent(name="7", sequence="7")

    def test_ctrl_c(self) -> None:
        event = decode_key("\x03")
        assert event.ctrl is True
        assert event.name == "c"

    def test_meta_letter(self) -> None:
        """ESC followed by a letter is Alt+letter."""
        event = decode_key("\x1bx")
        assert event.meta is True
        assert event.name == "x"

    def test_meta_space(self) -> None:
        event = decode_key("\x1b ")
        assert event.meta is True
        assert event.name == "space"

    def test_unknown_escape_sequence_is_unnamed(self) -> None:
        event = decode_key("\x1b[1;5A")
        assert event.name is None
        assert event.sequence == "\x1b[1;5A"

    def test_multi_character_text_is_unnamed(self) -> None:
        event = decode_key("hello")
        assert event.name is None
        assert event.sequence == "hello"

    def test_sequence_is_always_the_raw_input(self) -> None:
        for chunk in ("a", "\x1b", "\r", "\x1bO", "xyz"):
            assert decode_key(chunk).sequence == chunk

    def test_non_string_rejected(self) -> None:
        with pytest.raises(InvalidArgument):
            decode_key(b"a")  # type: ignore[arg-type]

    def test_event_is_immutable(self) -> None:
        event = decode_key("a")
        with pytest.raises(Exception):
            event.name = "b"  # type: ignore[misc]


class TestDescribeKey:
    def test_combo(self) -> None:
        assert describe_key(decode_key("\x03")) == "ctrl+c"

    def test_shift(self) -> None:
        assert describe_key(decode_key("Q")) == "shift+q"

    def test_unnamed_shows_sequence(self) -> None:
        assert describe_key(decode_key("\x1bO")) == repr("\x1bO")
