"""Command execution for sessions and local runs.

``CommandExecutor`` is the seam between the session protocol and the
actual CLI: it takes an argument vector, an environment, and an input
channel, and yields output events ending with an ``ExitEvent``.

``CommandRegistry`` is the concrete executor. It dispatches to Python
handler functions or to external "extension" commands run as
subprocesses with the remaining arguments appended.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import shlex
from abc import ABC, abstractmethod
from typing import AsyncIterator, Awaitable, Callable, Union

from termlink.domain.errors import InvalidArgument, InvocationError
from termlink.domain.models import (
    EchoFrame,
    ExitEvent,
    InvocationEvent,
    OutputEvent,
    StreamName,
)

logger = logging.getLogger(__name__)

# Exit code reported when a command is interrupted with Ctrl+C
EXIT_INTERRUPTED = 130


class InputChannel:
    """Input stream feeding a running invocation.

    Raw terminals send ``\\r`` for Enter, line-buffered ones ``\\n``; both
    end a line for ``read_line()`` and a ``\\r\\n`` pair counts once.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._buffer = ""
        self._eof = False
        self._skip_lf = False

    @property
    def at_eof(self) -> bool:
        return self._eof and not self._buffer

    def feed(self, data: str) -> None:
        if data:
            self._queue.put_nowait(data)

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def read(self) -> str:
        """Return the next available input, or ``""`` at end of input."""
        if self._buffer:
            data, self._buffer = self._buffer, ""
            return data
        if self._eof:
            return ""
        item = await self._queue.get()
        if item is None:
            self._eof = True
            return ""
        return item

    async def read_line(self) -> str:
        """Read one line, without its terminator."""
        line = ""
        while True:
            chunk = await self.read()
            if not chunk:
                return line
            if self._skip_lf and chunk.startswith("\n"):
                chunk = chunk[1:]
            self._skip_lf = False
            for i, ch in enumerate(chunk):
                if ch in "\r\n":
                    self._skip_lf = ch == "\r"
                    rest = chunk[i + 1:]
                    if self._skip_lf and rest.startswith("\n"):
                        rest = rest[1:]
                        self._skip_lf = False
                    self._buffer = rest + self._buffer
                    return line + chunk[:i]
            line += chunk


class CommandContext:
    """What a handler function receives when its command runs."""

    def __init__(
        self,
        name: str,
        args: list[str],
        env: dict[str, str],
        input_channel: InputChannel,
        emit: Callable[[OutputEvent], None],
    ) -> None:
        self.name = name
        self.args = args
        self.env = env
        self.stdin = input_channel
        self._emit = emit

    def write(self, data: str | bytes, stream: StreamName = StreamName.STDOUT) -> None:
        if data:
            self._emit(OutputEvent(stream=stream, data=data))

    def print(self, *values: object, sep: str = " ", end: str = "\n") -> None:
        self.write(sep.join(str(v) for v in values) + end)

    def error(self, *values: object, sep: str = " ", end: str = "\n") -> None:
        self.write(sep.join(str(v) for v in values) + end, StreamName.STDERR)

    def set_echo(self, enabled: bool) -> None:
        """Ask the attached terminal to start or stop echoing input."""
        self._emit(OutputEvent(data=EchoFrame(enabled=enabled)))

    async def read_line(self, prompt: str | None = None) -> str:
        if prompt:
            self.write(prompt)
        return await self.stdin.read_line()

    async def read_secret(self, prompt: str | None = None) -> str:
        """Read a line with echo turned off, e.g. for passwords."""
        self.set_echo(False)
        try:
            return await self.read_line(prompt)
        finally:
            self.set_echo(True)
            self.write("\n")


Handler = Callable[[CommandContext], Union[int, None, Awaitable[Union[int, None]]]]


class CommandExecutor(ABC):
    """Abstract interface for running one CLI invocation."""

    @abstractmethod
    def execute(
        self,
        args: list[str],
        env: dict[str, str],
        input_channel: InputChannel,
    ) -> AsyncIterator[InvocationEvent]:
        """Run a command.

        Yields OutputEvents as they are produced and finishes with exactly
        one ExitEvent. Closing the iterator early terminates the command.
        """
        ...

    def render_help(self) -> str:
        return ""


class CommandRegistry(CommandExecutor):
    """Dispatches argument vectors to handlers and extensions.

    Example usage::

        def hello(ctx):
            ctx.print("hi", *ctx.args)

        registry = CommandRegistry(
            commands={"hello": hello},
            extensions={"greet": 'echo "hi"'},
        )

    Args:
        commands: Command name to handler function (sync or async). The
                  handler's return value is the exit code (``None`` = 0).
        extensions: Command name to a shell command line. Arguments are
                    appended shell-quoted.
        default_command: Command to run when no arguments are given.
        termination_timeout: Seconds to wait for an extension process to
                             exit after SIGTERM before killing it.
    """

    def __init__(
        self,
        commands: dict[str, Handler] | None = None,
        extensions: dict[str, str] | None = None,
        default_command: str | None = "help",
        termination_timeout: float = 5.0,
    ) -> None:
        commands = dict(commands or {})
        for name, handler in commands.items():
            if not callable(handler):
                raise InvalidArgument(
                    f"Expected handler for command {name!r} to be callable",
                    name="commands",
                    value=handler,
                )
        commands.setdefault("help", self._help)
        self._commands = commands
        self._extensions = dict(extensions or {})
        self._default_command = default_command
        self._termination_timeout = termination_timeout

    @property
    def command_names(self) -> list[str]:
        return sorted(set(self._commands) | set(self._extensions))

    def render_help(self) -> str:
        lines = ["Commands:"]
        width = max((len(n) for n in self.command_names), default=0)
        for name in self.command_names:
            if name in self._commands:
                doc = inspect.getdoc(self._commands[name]) or ""
                summary = doc.splitlines()[0] if doc else ""
            else:
                summary = f"Runs: {self._extensions[name]}"
            lines.append(f"  {name.ljust(width)}  {summary}".rstrip())
        return "\n".join(lines) + "\n"

    def _help(self, ctx: CommandContext) -> None:
        """Show the available commands."""
        ctx.print(self.render_help(), end="")

    async def execute(
        self,
        args: list[str],
        env: dict[str, str],
        input_channel: InputChannel,
    ) -> AsyncIterator[InvocationEvent]:
        if not args and self._default_command:
            args = [self._default_command]
        if not args:
            yield ExitEvent(exit_code=0)
            return

        name, rest = args[0], list(args[1:])
        if name in self._commands:
            events = self._run_handler(name, rest, env, input_channel)
        elif name in self._extensions:
            events = self._run_extension(name, rest, env, input_channel)
        else:
            logger.info("Unknown command: %s", name)
            yield OutputEvent(
                stream=StreamName.STDERR, data=f'Error: Unknown command "{name}"\n'
            )
            yield ExitEvent(exit_code=1)
            return

        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    async def _run_handler(
        self,
        name: str,
        args: list[str],
        env: dict[str, str],
        input_channel: InputChannel,
    ) -> AsyncIterator[InvocationEvent]:
        queue: asyncio.Queue[OutputEvent | ExitEvent] = asyncio.Queue()
        ctx = CommandContext(name, args, env, input_channel, queue.put_nowait)

        async def runner() -> None:
            code = await self._call_handler(name, ctx)
            queue.put_nowait(ExitEvent(exit_code=code))

        task = asyncio.create_task(runner(), name=f"command-{name}")
        try:
            while True:
                event = await queue.get()
                yield event
                if isinstance(event, ExitEvent):
                    break
        finally:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def _call_handler(self, name: str, ctx: CommandContext) -> int:
        handler = self._commands[name]
        logger.debug("Running handler for %s", name)
        try:
            result = handler(ctx)
            if inspect.isawaitable(result):
                result = await result
        except InvocationError as e:
            ctx.error(f"Error: {e}")
            return e.exit_code
        except SystemExit as e:
            return e.code if isinstance(e.code, int) else (0 if e.code is None else 1)
        except Exception as e:
            logger.exception("Command %s failed", name)
            ctx.error(f"Error: {e}")
            return 1
        return int(result) if result is not None else 0

    async def _run_extension(
        self,
        name: str,
        args: list[str],
        env: dict[str, str],
        input_channel: InputChannel,
    ) -> AsyncIterator[InvocationEvent]:
        command = self._extensions[name]
        if args:
            command = f"{command} {shlex.join(args)}"
        logger.info("Running extension %s: %s", name, command)

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **env},
            )
        except OSError as e:
            yield OutputEvent(
                stream=StreamName.STDERR, data=f"Error: Failed to run {name}: {e}\n"
            )
            yield ExitEvent(exit_code=127)
            return

        queue: asyncio.Queue[OutputEvent | None] = asyncio.Queue()

        async def pump(reader: asyncio.StreamReader, stream: StreamName) -> None:
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                queue.put_nowait(OutputEvent(stream=stream, data=data))
            queue.put_nowait(None)

        async def feed_stdin() -> None:
            try:
                while True:
                    data = await input_channel.read()
                    if not data:
                        break
                    process.stdin.write(data.encode())
                    await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                pass
            finally:
                if not process.stdin.is_closing():
                    process.stdin.close()

        tasks = [
            asyncio.create_task(pump(process.stdout, StreamName.STDOUT)),
            asyncio.create_task(pump(process.stderr, StreamName.STDERR)),
        ]
        stdin_task = asyncio.create_task(feed_stdin())
        try:
            open_streams = len(tasks)
            while open_streams:
                event = await queue.get()
                if event is None:
                    open_streams -= 1
                    continue
                yield event
            code = await process.wait()
            yield ExitEvent(exit_code=code)
        finally:
            stdin_task.cancel()
            for task in tasks:
                task.cancel()
            await asyncio.gather(stdin_task, *tasks, return_exceptions=True)
            if process.returncode is None:
                await self._terminate(process)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop an extension process gracefully, then forcefully."""
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=self._termination_timeout)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning("Process %d ignored SIGTERM, killing", process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
        logger.info("Terminated process %d", process.pid)
