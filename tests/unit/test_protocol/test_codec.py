"""Tests for control frame encoding and decoding."""

from __future__ import annotations

import pytest

from termlink.domain.errors import InvalidArgument, ProtocolError
from termlink.domain.models import (
    EchoFrame,
    ExecFrame,
    ExitFrame,
    KeyEvent,
    KeypressFrame,
    RawFrame,
)
from termlink.protocol.ansi import CUSTOM_PREFIX, custom, encode_payload
from termlink.protocol.codec import (
    MAX_FRAME_LENGTH,
    FrameDecoder,
    decode_frame,
    encode_frame,
    is_control_frame,
)

SPLIT_FRAMES = [
    EchoFrame(enabled=True),
    EchoFrame(enabled=False),
    ExecFrame(command_line="deploy --force \"my app\""),
    KeypressFrame(event=KeyEvent(name="c", sequence="\x03", ctrl=True)),
    ExitFrame(code=0),
    ExitFrame(code=130),
]


class TestEncodeFrame:
    def test_echo(self) -> None:
        assert encode_frame(EchoFrame(enabled=True)) == "\x1b]666;Echo=on\x07"
        assert encode_frame(EchoFrame(enabled=False)) == "\x1b]666;Echo=off\x07"

    def test_exit(self) -> None:
        assert encode_frame(ExitFrame(code=3)) == "\x1b]666;Exit=3\x07"

    def test_exec_payload_is_base64_json(self) -> None:
        encoded = encode_frame(ExecFrame(command_line="ls -la"))
        assert encoded == f"{CUSTOM_PREFIX}Exec={encode_payload('ls -la')}\x07"
        assert "ls" not in encoded

    def test_raw_frame_is_its_data(self) -> None:
        assert encode_frame(RawFrame(data="plain")) == "plain"

    def test_rejects_non_frames(self) -> None:
        with pytest.raises(InvalidArgument):
            encode_frame("plain")  # type: ignore[arg-type]


class TestDecodeFrame:
    """Test decode_frame() on single positions of a buffer."""

    @pytest.mark.parametrize(
        "frame",
        [
            EchoFrame(enabled=True),
            EchoFrame(enabled=False),
            ExecFrame(command_line='greet "hello world"'),
            ExitFrame(code=0),
            ExitFrame(code=-1),
            KeypressFrame(event=KeyEvent(name="c", sequence="\x03", ctrl=True)),
        ],
    )
    def test_decodes_what_was_encoded(self, frame: object) -> None:
        encoded = encode_frame(frame)
        assert decode_frame(encoded) == (frame, len(encoded))

    def test_echo_accepts_true_false(self) -> None:
        frame, _ = decode_frame(f"{CUSTOM_PREFIX}Echo=true\x07")
        assert frame == EchoFrame(enabled=True)
        frame, _ = decode_frame(f"{CUSTOM_PREFIX}Echo=false\x07")
        assert frame == EchoFrame(enabled=False)

    def test_plain_text_runs_to_next_envelope(self) -> None:
        buffer = "hello" + custom.echo(False) + "world"
        frame, consumed = decode_frame(buffer)
        assert frame == RawFrame(data="hello")
        assert consumed == 5

        frame, consumed2 = decode_frame(buffer, consumed)
        assert frame == EchoFrame(enabled=False)

        frame, _ = decode_frame(buffer, consumed + consumed2)
        assert frame == RawFrame(data="world")

    def test_other_escape_sequences_are_plain_text(self) -> None:
        buffer = "\x1b[31mred\x1b[0m"
        assert decode_frame(buffer) == (RawFrame(data=buffer), len(buffer))

    def test_incomplete_frame_needs_more_data(self) -> None:
        assert decode_frame(f"{CUSTOM_PREFIX}Echo=o") == (None, 0)

    def test_partial_prefix_needs_more_data(self) -> None:
        assert decode_frame("\x1b]66") == (None, 0)
        assert decode_frame("\x1b") == (None, 0)

    def test_empty_buffer(self) -> None:
        assert decode_frame("") == (None, 0)

    def test_unknown_tag(self) -> None:
        encoded = f"{CUSTOM_PREFIX}Bogus=1\x07"
        with pytest.raises(ProtocolError) as exc_info:
            decode_frame(encoded)
        assert exc_info.value.consumed == len(encoded)

    def test_missing_equals(self) -> None:
        with pytest.raises(ProtocolError):
            decode_frame(f"{CUSTOM_PREFIX}Echo\x07")

    def test_invalid_echo_value(self) -> None:
        with pytest.raises(ProtocolError):
            decode_frame(f"{CUSTOM_PREFIX}Echo=maybe\x07")

    def test_invalid_exit_code(self) -> None:
        with pytest.raises(ProtocolError):
            decode_frame(f"{CUSTOM_PREFIX}Exit=abc\x07")

    def test_invalid_base64(self) -> None:
        with pytest.raises(ProtocolError):
            decode_frame(f"{CUSTOM_PREFIX}Exec=!!!\x07")

    def test_exec_payload_must_be_string(self) -> None:
        with pytest.raises(ProtocolError):
            decode_frame(f"{CUSTOM_PREFIX}Exec={encode_payload(123)}\x07")

    def test_keypress_payload_must_be_key_event(self) -> None:
        with pytest.raises(ProtocolError):
            decode_frame(f"{CUSTOM_PREFIX}Keypress={encode_payload('a')}\x07")

    def test_nested_prefix_drops_the_unterminated_frame(self) -> None:
        buffer = f"{CUSTOM_PREFIX}Echo=" + custom.echo(True)
        with pytest.raises(ProtocolError) as exc_info:
            decode_frame(buffer)
        assert exc_info.value.consumed == len(CUSTOM_PREFIX) + len("Echo=")

    def test_oversized_frame(self) -> None:
        buffer = CUSTOM_PREFIX + "Exec=" + "A" * MAX_FRAME_LENGTH
        with pytest.raises(ProtocolError) as exc_info:
            decode_frame(buffer)
        assert exc_info.value.consumed == len(buffer)


class TestIsControlFrame:
    def test_encoded_signal(self) -> None:
        assert is_control_frame(custom.echo(True))
        assert is_control_frame(custom.exit(0))

    def test_frame_objects(self) -> None:
        assert is_control_frame(EchoFrame(enabled=False))
        assert not is_control_frame(RawFrame(data="x"))

    def test_text_is_not_a_frame(self) -> None:
        assert not is_control_frame("hello")
        assert not is_control_frame(custom.echo(True) + "trailing")
        assert not is_control_frame(f"{CUSTOM_PREFIX}Bogus=1\x07")
        assert not is_control_frame(b"bytes")


class TestFrameDecoder:
    """Test the resumable decoder across feeds."""

    def test_interleaved_stream(self) -> None:
        decoder = FrameDecoder()
        frames = decoder.feed("abc" + custom.echo(False) + "def" + custom.exit(2))
        assert frames == [
            RawFrame(data="abc"),
            EchoFrame(enabled=False),
            RawFrame(data="def"),
            ExitFrame(code=2),
        ]
        assert decoder.pending == ""

    @pytest.mark.parametrize("frame", SPLIT_FRAMES, ids=lambda f: f.type)
    def test_frame_split_at_every_offset(self, frame) -> None:
        encoded = encode_frame(frame)
        for split in range(1, len(encoded)):
            decoder = FrameDecoder()
            assert decoder.feed(encoded[:split]) == []
            assert decoder.pending == encoded[:split]
            assert decoder.feed(encoded[split:]) == [frame]
            assert decoder.pending == ""

    def test_lone_escape_is_held(self) -> None:
        decoder = FrameDecoder()
        assert decoder.feed("abc\x1b") == [RawFrame(data="abc")]
        assert decoder.pending == "\x1b"
        assert decoder.feed("[A") == [RawFrame(data="\x1b[A")]

    @pytest.mark.parametrize("tail", ["\x1b", "\x1b]"])
    def test_release_escape(self, tail: str) -> None:
        decoder = FrameDecoder()
        assert decoder.feed(tail) == []
        assert decoder.release_escape() == [RawFrame(data=tail)]
        assert decoder.pending == ""

    def test_release_escape_keeps_split_frame(self) -> None:
        decoder = FrameDecoder()
        encoded = custom.echo(True)
        decoder.feed(encoded[:3])
        assert decoder.release_escape() == []
        assert decoder.feed(encoded[3:]) == [EchoFrame(enabled=True)]

    def test_malformed_frame_is_skipped(self) -> None:
        decoder = FrameDecoder()
        frames = decoder.feed(f"{CUSTOM_PREFIX}Bogus=1\x07ok")
        assert frames == [RawFrame(data="ok")]
        assert decoder.errors == 1

    def test_nested_prefix_recovers_next_frame(self) -> None:
        decoder = FrameDecoder()
        frames = decoder.feed(f"{CUSTOM_PREFIX}Echo=" + custom.echo(True))
        assert frames == [EchoFrame(enabled=True)]
        assert decoder.errors == 1

    def test_utf8_split_across_byte_feeds(self) -> None:
        decoder = FrameDecoder()
        encoded = "é".encode("utf-8")
        assert decoder.feed(encoded[:1]) == []
        assert decoder.feed(encoded[1:]) == [RawFrame(data="é")]

    def test_flush_returns_pending_text(self) -> None:
        decoder = FrameDecoder()
        decoder.feed(f"{CUSTOM_PREFIX}Ech")
        assert decoder.flush() == [RawFrame(data=f"{CUSTOM_PREFIX}Ech")]
        assert decoder.pending == ""
        assert decoder.flush() == []
