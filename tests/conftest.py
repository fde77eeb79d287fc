"""Shared test fixtures for the termlink test suite.

Provides an in-memory session transport, a command registry with a few
representative commands, and a helper that splits captured output into
visible text and control frames.
"""

from __future__ import annotations

import asyncio
import socket
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

import pytest

from termlink.domain.models import RawFrame
from termlink.endpoint.executor import CommandRegistry
from termlink.endpoint.server import Listener, ListenerHandle
from termlink.protocol.codec import FrameDecoder


# ---------------------------------------------------------------------------
# Transport Fixtures
# ---------------------------------------------------------------------------


class FakeTransport:
    """Session transport that records what is sent and replays queued input."""

    def __init__(self) -> None:
        self.peer = "127.0.0.1:50000"
        self.sent: list[str] = []
        self.incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.closed = False

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionError("transport closed")
        self.sent.append(data)

    async def receive(self) -> str | bytes | None:
        return await self.incoming.get()

    async def close(self) -> None:
        self.closed = True
        self.incoming.put_nowait(None)

    @property
    def output(self) -> str:
        return "".join(self.sent)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


# ---------------------------------------------------------------------------
# Command Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> CommandRegistry:
    """A registry with the commands most session tests need."""

    def abc(ctx):
        """Print bar."""
        ctx.print("bar!")

    def data(ctx):
        """Print JSON."""
        ctx.print('{"foo": "bar"}')

    async def ask(ctx):
        """Ask for a name."""
        name = await ctx.read_line("Name? ")
        ctx.print(f"Hello {name}")

    async def secret(ctx):
        """Ask for a password."""
        value = await ctx.read_secret("Password: ")
        ctx.print(f"{len(value)} chars")

    def fail(ctx):
        """Exit with 2."""
        ctx.error("failed")
        return 2

    async def hang(ctx):
        """Never finish."""
        ctx.print("hanging")
        await asyncio.Event().wait()

    return CommandRegistry(
        commands={
            "abc": abc,
            "data": data,
            "ask": ask,
            "secret": secret,
            "fail": fail,
            "hang": hang,
        },
        extensions={"foo": 'echo "hi"'},
    )


# ---------------------------------------------------------------------------
# Output Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def split_output() -> Callable[[str], tuple[str, list]]:
    """Split wire output into (visible text, control frames)."""

    def split(data: str) -> tuple[str, list]:
        decoder = FrameDecoder()
        frames = decoder.feed(data) + decoder.flush()
        text = "".join(f.data for f in frames if isinstance(f, RawFrame))
        return text, [f for f in frames if not isinstance(f, RawFrame)]

    return split


@pytest.fixture
def free_port() -> int:
    """A TCP port that is free at the time of the call."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ---------------------------------------------------------------------------
# Server Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def serve(registry: CommandRegistry, free_port: int):
    """Async context manager running a Listener on a free port.

    Usage::

        async with serve(banner="hi") as handle:
            ...
    """

    @asynccontextmanager
    async def _serve(**kwargs) -> AsyncIterator[ListenerHandle]:
        listener = Listener(registry, **kwargs)
        handle = await listener.listen(free_port)
        try:
            yield handle
        finally:
            await listener.close()

    return _serve
