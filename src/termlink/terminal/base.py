"""Abstract base class for terminals attached to a session.

A Terminal is the capability set every attach point needs: a readable
input stream and two writable output streams. Both the real stdio
terminal and the in-memory stream terminal conform to it, so the remote
client and the local runner never care which one they were given.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TextIO

logger = logging.getLogger(__name__)


class Terminal(ABC):
    """Readable input plus writable stdout/stderr.

    Example usage::

        async with StdioTerminal() as terminal:
            chunk = await terminal.read()
            terminal.stdout.write(chunk)
    """

    @property
    @abstractmethod
    def stdout(self) -> TextIO:
        ...

    @property
    @abstractmethod
    def stderr(self) -> TextIO:
        ...

    @abstractmethod
    async def read(self) -> str:
        """Read the next chunk of input.

        Returns:
            The characters available, or ``""`` once input is exhausted.
        """
        ...

    async def open(self) -> None:
        """Prepare the terminal for interactive use (e.g. raw mode)."""

    async def close(self) -> None:
        """Restore the terminal. Safe to call multiple times."""

    async def __aenter__(self) -> Terminal:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()
