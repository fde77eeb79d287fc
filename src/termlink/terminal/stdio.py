"""Terminal bound to the process's real stdin/stdout/stderr.

When stdin is a TTY it is switched to raw mode on ``open()`` so every
keystroke is delivered immediately and nothing is echoed locally; the
original termios attributes are restored on ``close()``.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import select
import sys
import termios
import tty
from typing import TextIO

from termlink.terminal.base import Terminal

logger = logging.getLogger(__name__)


class StdioTerminal(Terminal):
    """The controlling terminal of the current process."""

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        raw: bool = True,
    ) -> None:
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._stderr = stderr or sys.stderr
        self._raw = raw
        self._fd = self._stdin.fileno()
        self._saved_attrs: list | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._closed = False

    @property
    def stdout(self) -> TextIO:
        return self._stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr

    @property
    def is_tty(self) -> bool:
        return os.isatty(self._fd)

    async def open(self) -> None:
        if self._raw and self.is_tty and self._saved_attrs is None:
            self._saved_attrs = termios.tcgetattr(self._fd)
            tty.setraw(self._fd)
            logger.debug("Switched stdin to raw mode")

    async def close(self) -> None:
        self._closed = True
        if self._saved_attrs is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None
            logger.debug("Restored stdin terminal attributes")

    async def read(self) -> str:
        loop = asyncio.get_running_loop()
        while not self._closed:
            data = await loop.run_in_executor(None, self._read_fd)
            if data is not None:
                return data
        return ""

    def _read_fd(self) -> str | None:
        """Read from stdin (blocking call, run in executor)."""
        try:
            r, _, _ = select.select([self._fd], [], [], 0.1)
            if not r:
                return None
            data = os.read(self._fd, 4096)
        except (OSError, ValueError):
            return ""
        if not data:
            return ""
        text = self._decoder.decode(data)
        return text or None
