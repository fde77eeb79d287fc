"""In-memory terminal backed by a queue and text buffers."""

from __future__ import annotations

import asyncio
import io
from typing import TextIO

from termlink.terminal.base import Terminal


class StreamTerminal(Terminal):
    """Terminal whose input is fed programmatically.

    Output goes to the given streams, or to fresh ``StringIO`` buffers.
    Passing the same stream for both merges stdout and stderr.
    """

    def __init__(self, stdout: TextIO | None = None, stderr: TextIO | None = None) -> None:
        self._stdout = stdout if stdout is not None else io.StringIO()
        self._stderr = stderr if stderr is not None else io.StringIO()
        self._input: asyncio.Queue[str | None] = asyncio.Queue()
        self._eof = False

    @property
    def stdout(self) -> TextIO:
        return self._stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr

    def feed(self, data: str) -> None:
        """Queue input as if it had been typed."""
        self._input.put_nowait(data)

    def end(self) -> None:
        """Signal end of input."""
        self._input.put_nowait(None)

    async def read(self) -> str:
        if self._eof:
            return ""
        item = await self._input.get()
        if item is None:
            self._eof = True
            return ""
        return item

    async def close(self) -> None:
        if not self._eof:
            self.end()
