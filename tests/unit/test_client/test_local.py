"""Tests for running commands locally."""

from __future__ import annotations

import io

import pytest

from termlink.client.local import run_local
from termlink.domain.errors import InvalidArgument
from termlink.terminal.stream import StreamTerminal


class TestRunLocal:
    @pytest.mark.asyncio
    async def test_output_and_exit_code(self, registry) -> None:
        terminal = StreamTerminal()
        assert await run_local(registry, ["abc"], terminal) == 0
        assert terminal.stdout.getvalue() == "bar!\n"
        assert terminal.stderr.getvalue() == ""

    @pytest.mark.asyncio
    async def test_stderr_and_failure(self, registry) -> None:
        terminal = StreamTerminal()
        assert await run_local(registry, ["fail"], terminal) == 2
        assert terminal.stderr.getvalue() == "failed\n"

    @pytest.mark.asyncio
    async def test_banner_shown_once_across_streams(self, registry) -> None:
        terminal = StreamTerminal()
        await run_local(registry, ["fail"], terminal, banner="Welcome")
        assert terminal.stderr.getvalue() == "Welcome\n\nfailed\n"
        assert terminal.stdout.getvalue() == ""

    @pytest.mark.asyncio
    async def test_banner_suppressed_for_json(self, registry) -> None:
        terminal = StreamTerminal()
        await run_local(registry, ["data"], terminal, banner="Welcome")
        assert terminal.stdout.getvalue() == '{"foo": "bar"}\n'

    @pytest.mark.asyncio
    async def test_reads_terminal_input(self, registry) -> None:
        terminal = StreamTerminal()
        terminal.feed("Ada\n")
        assert await run_local(registry, ["ask"], terminal) == 0
        assert terminal.stdout.getvalue() == "Name? Hello Ada\n"

    @pytest.mark.asyncio
    async def test_extension(self, registry) -> None:
        terminal = StreamTerminal()
        assert await run_local(registry, ["foo", "there"], terminal) == 0
        assert terminal.stdout.getvalue() == "hi there\n"

    @pytest.mark.asyncio
    async def test_shared_stream(self, registry) -> None:
        merged = io.StringIO()
        terminal = StreamTerminal(stdout=merged, stderr=merged)
        await run_local(registry, ["nosuch"], terminal)
        assert merged.getvalue() == 'Error: Unknown command "nosuch"\n'

    @pytest.mark.asyncio
    async def test_invalid_terminal(self, registry) -> None:
        with pytest.raises(InvalidArgument):
            await run_local(registry, ["abc"], object())  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_invalid_executor(self) -> None:
        with pytest.raises(InvalidArgument):
            await run_local(object(), ["abc"], StreamTerminal())  # type: ignore[arg-type]
