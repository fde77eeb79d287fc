"""Exactly-once banner injection for paired output streams.

A ``Banner`` is the shared handle that a stdout transform and a stderr
transform both hold. Whichever stream produces the first real output
decides: if that output looks like structured data (JSON or XML) the
banner is suppressed for that stream, otherwise the banner is written
ahead of it and the handle is consumed so the sibling stream never
prints it.

Chunks themselves are never modified, split, or re-encoded.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Callable, Protocol, Union

from termlink.domain.errors import InvalidArgument, ProtocolError
from termlink.domain.models import SIGNAL_FRAMES, BannerState
from termlink.protocol.ansi import CUSTOM_PREFIX
from termlink.protocol.codec import decode_frame

logger = logging.getLogger(__name__)

# Cheap check to see if output may be XML or JSON object output
DATA_RE = re.compile(r"^\s*[<{[]")

BannerSource = Union[str, Callable[[], Union[str, None]], None]


class Writable(Protocol):
    def write(self, data: str | bytes) -> object: ...


class Banner:
    """Shared "banner shown once" flag for the streams of one invocation.

    Args:
        banner: The banner text, or a function returning it. The function
                is only called when the banner is actually shown.
        enabled: Set to ``False`` to disable the banner up front.
    """

    def __init__(self, banner: BannerSource = None, enabled: bool = True) -> None:
        if banner is not None and not isinstance(banner, str) and not callable(banner):
            raise InvalidArgument(
                "Expected banner to be a string or a function",
                name="banner",
                value=banner,
            )
        self.banner = banner
        self.enabled = enabled
        self._lock = threading.Lock()

    def consume(self) -> str | None:
        """Claim the banner for the calling stream.

        Returns the text to print ahead of the first output (already
        trimmed and followed by a blank line), or ``None`` when there is
        nothing to show. Only the first claim can return text.
        """
        with self._lock:
            if not self.banner or not self.enabled:
                return None
            value = self.banner() if callable(self.banner) else self.banner
            self.enabled = False
        if not value:
            return None
        return f"{str(value).strip()}\n\n"


class BannerTransform:
    """Pass-through output stage that may prepend the banner once.

    Args:
        sink: Stream that ``write()`` forwards to. May be ``None`` when the
              transform is only used through ``process()``.
        banner: Shared Banner handle; without one the stage is a plain
                pass-through that still records its data decision.
        decode_bytes: Sniff ``bytes`` chunks as UTF-8. By default bytes
                      are forwarded without inspection.
    """

    def __init__(
        self,
        sink: Writable | None = None,
        banner: Banner | None = None,
        decode_bytes: bool = False,
    ) -> None:
        if sink is not None and not callable(getattr(sink, "write", None)):
            raise InvalidArgument(
                "Expected sink to be a writable stream", name="sink", value=sink
            )
        if banner is not None and not isinstance(banner, Banner):
            raise InvalidArgument(
                "Expected banner to be a Banner object", name="banner", value=banner
            )
        self._sink = sink
        self._banner = banner
        self._decode_bytes = decode_bytes
        self.state = BannerState()

    def process(self, chunk: object) -> list:
        """Return the pieces to emit for ``chunk``, in order.

        The chunk itself is always the last piece, unmodified.
        """
        if self.state.decided:
            return [chunk]

        text = self._sniffable(chunk)
        if text is None:
            return [chunk]
        text = _strip_frames(text)
        if not text.strip():
            return [chunk]

        self.state.decided = True
        if DATA_RE.match(text):
            self.state.suppressed = True
            logger.debug("Structured output detected, banner suppressed")
            return [chunk]

        if self._banner is not None:
            header = self._banner.consume()
            if header is not None:
                return [header, chunk]
        return [chunk]

    def write(self, chunk: object) -> None:
        if self._sink is None:
            raise InvalidArgument("BannerTransform has no sink to write to", name="sink")
        for piece in self.process(chunk):
            self._sink.write(piece)

    def flush(self) -> None:
        flush = getattr(self._sink, "flush", None)
        if callable(flush):
            flush()

    def _sniffable(self, chunk: object) -> str | None:
        if isinstance(chunk, SIGNAL_FRAMES):
            return None
        if isinstance(chunk, str):
            return chunk
        if isinstance(chunk, (bytes, bytearray)) and self._decode_bytes:
            return bytes(chunk).decode("utf-8", errors="replace")
        return None


def _strip_frames(text: str) -> str:
    """Drop complete control frames from the start of ``text``."""
    while text.startswith(CUSTOM_PREFIX):
        try:
            frame, consumed = decode_frame(text)
        except ProtocolError:
            break
        if frame is None:
            break
        text = text[consumed:]
    return text


def wrap_streams(
    stdout: Writable,
    stderr: Writable,
    banner: Banner | None = None,
    decode_bytes: bool = False,
) -> tuple[BannerTransform, BannerTransform]:
    """Wrap a stdout/stderr pair so they share one banner decision."""
    return (
        BannerTransform(stdout, banner=banner, decode_bytes=decode_bytes),
        BannerTransform(stderr, banner=banner, decode_bytes=decode_bytes),
    )
