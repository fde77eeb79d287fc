"""Server-side state for one remote client connection.

A Session owns at most one CLI invocation at a time. It decodes the
client's input stream (plain keystrokes interleaved with control frames),
performs minimal line editing while idle, forwards input to the running
invocation, and relays the invocation's output back through a pair of
banner transforms.

State machine::

    OPEN -> AWAITING_INPUT <-> RUNNING
                 |                |
                 +----> CLOSED <--+
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import re
import shlex
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Protocol

from termlink.domain.models import (
    EchoFrame,
    ExecFrame,
    ExitEvent,
    ExitFrame,
    KeypressFrame,
    RawFrame,
    SessionInfo,
    SessionState,
    StreamName,
)
from termlink.endpoint.executor import EXIT_INTERRUPTED, CommandExecutor, InputChannel
from termlink.keyboard.keys import DEL, ESC, decode_key, describe_key
from termlink.protocol.ansi import BACKSPACE_ERASE
from termlink.protocol.codec import FrameDecoder, encode_frame
from termlink.render.banner import Banner, BannerSource, BannerTransform

logger = logging.getLogger(__name__)

# Bare LF -> CRLF, the translation a pty would apply to output
_LF_RE = re.compile(r"(?<!\r)\n")
# Any line ending typed by the client
_EOL_RE = re.compile(r"\r\n|\r|\n")

CTRL_C = "\x03"


class Transport(Protocol):
    """The connection a Session talks over."""

    peer: str | None

    async def send(self, data: str) -> None:
        """Send one message. Raises ConnectionError once closed."""
        ...

    async def receive(self) -> str | bytes | None:
        """Next message, or None when the peer has gone away."""
        ...

    async def close(self) -> None:
        ...


class Session:
    """One attached client and its (at most one) running command.

    Args:
        transport: Connection to the client.
        executor: Runs the commands the client requests.
        session_id: Identifier; generated when omitted.
        env: Extra environment passed to every invocation.
        banner: Banner text or function, shown once per invocation ahead
                of its first non-structured output.
        termination_timeout: Seconds to wait for a running invocation to
                             stop when the session closes.
        on_close: Called once after the session has closed.
    """

    def __init__(
        self,
        transport: Transport,
        executor: CommandExecutor,
        session_id: str | None = None,
        env: dict[str, str] | None = None,
        banner: BannerSource = None,
        termination_timeout: float = 5.0,
        on_close: Callable[[Session], Awaitable[None]] | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex[:12]
        self.state = SessionState.OPEN
        self.echo_enabled = True
        self.last_exit_code: int | None = None
        self.connected_at = datetime.now()

        self._transport = transport
        self._executor = executor
        self._env = {"TERMLINK_SESSION_ID": self.id, **(env or {})}
        self._banner = banner
        self._termination_timeout = termination_timeout
        self._on_close = on_close

        self._decoder = FrameDecoder()
        self._write_lock = asyncio.Lock()
        self._line = ""
        self._pending_cr = False
        self._invocation: asyncio.Task[None] | None = None
        self._input: InputChannel | None = None
        self._current_command: str | None = None
        self._interrupted = False
        self._commands_run = 0
        self._closed = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def current_command(self) -> str | None:
        return self._current_command

    def info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.id,
            state=self.state,
            echo_enabled=self.echo_enabled,
            peer=getattr(self._transport, "peer", None),
            connected_at=self.connected_at,
            current_command=self._current_command,
            last_exit_code=self.last_exit_code,
            commands_run=self._commands_run,
        )

    # -------------------------------------------------------------------
    # Connection loop
    # -------------------------------------------------------------------

    async def run(self) -> None:
        """Serve the connection until either side closes it."""
        self.state = SessionState.AWAITING_INPUT
        logger.info("Session %s opened (peer=%s)", self.id, getattr(self._transport, "peer", None))
        try:
            while self.state is not SessionState.CLOSED:
                data = await self._transport.receive()
                if data is None:
                    logger.info("Session %s: peer disconnected", self.id)
                    break
                await self.handle_input(data)
        finally:
            await self.close()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def handle_input(self, data: str | bytes) -> None:
        """Decode a chunk from the client and act on every frame in it."""
        frames = self._decoder.feed(data)
        # Clients send whole frames per message, so a short escape tail is a key
        frames += self._decoder.release_escape()
        for frame in frames:
            await self._dispatch(frame)

    async def _dispatch(self, frame: object) -> None:
        if isinstance(frame, EchoFrame):
            self.echo_enabled = frame.enabled
            logger.debug("Session %s: echo %s", self.id, "on" if frame.enabled else "off")
        elif isinstance(frame, ExecFrame):
            await self.execute(frame.command_line)
        elif isinstance(frame, KeypressFrame):
            logger.debug("Session %s: keypress %s", self.id, describe_key(frame.event))
            await self._handle_text(frame.event.sequence or "")
        elif isinstance(frame, RawFrame):
            await self._handle_text(frame.data)
        else:
            logger.debug("Session %s: ignoring %s frame from client", self.id, frame.type)

    # -------------------------------------------------------------------
    # Input handling
    # -------------------------------------------------------------------

    async def _handle_text(self, text: str) -> None:
        if not text:
            return
        if self.is_running:
            await self._forward_input(text)
            return

        if text.startswith(ESC):
            # Real escape sequences (arrows, function keys) are not edited
            logger.debug("Session %s: ignoring key %s", self.id, describe_key(decode_key(text)))
            return

        echo: list[str] = []
        for i, ch in enumerate(text):
            if self._pending_cr and ch == "\n":
                self._pending_cr = False
                continue
            self._pending_cr = False

            if ch in "\r\n":
                self._pending_cr = ch == "\r"
                echo.append("\r\n")
                line, self._line = self._line, ""
                await self._flush_echo(echo)
                await self._submit_line(line)
                rest = text[i + 1:]
                if self._pending_cr and rest.startswith("\n"):
                    rest = rest[1:]
                    self._pending_cr = False
                await self._handle_text(rest)
                return
            if ch in ("\b", DEL):
                if self._line:
                    self._line = self._line[:-1]
                    echo.append(BACKSPACE_ERASE)
            elif ch == CTRL_C:
                self._line = ""
                echo.append("^C\r\n")
            elif ch >= " ":
                self._line += ch
                echo.append(ch)

        await self._flush_echo(echo)

    async def _flush_echo(self, echo: list[str]) -> None:
        if echo and self.echo_enabled:
            await self._send("".join(echo))
        echo.clear()

    async def _forward_input(self, text: str) -> None:
        if CTRL_C in text:
            if self.echo_enabled:
                await self._send("^C\r\n")
            await self.interrupt()
            return
        if self.echo_enabled:
            echoed = _EOL_RE.sub("\r\n", text)
            echoed = echoed.replace(DEL, BACKSPACE_ERASE).replace("\b", BACKSPACE_ERASE)
            await self._send(echoed)
        if self._input is not None:
            self._input.feed(text)

    async def _submit_line(self, line: str) -> None:
        if not line.strip():
            return
        await self.execute(line)

    # -------------------------------------------------------------------
    # Invocation lifecycle
    # -------------------------------------------------------------------

    async def execute(self, command_line: str) -> bool:
        """Start ``command_line`` unless a command is already running.

        A second command while one is running is rejected: an error is
        written to the client and the running command continues.

        Returns:
            True if the command was started.
        """
        if self.state is SessionState.CLOSED:
            return False
        if self.is_running:
            logger.warning(
                "Session %s: rejected %r, %r is still running",
                self.id, command_line, self._current_command,
            )
            await self._send(
                f"Error: Cannot run \"{command_line}\" while \"{self._current_command}\" is running\r\n"
            )
            return False

        try:
            args = shlex.split(command_line)
        except ValueError as e:
            await self._send(f"Error: {e}\r\n")
            await self._send(encode_frame(ExitFrame(code=1)))
            self.last_exit_code = 1
            return False

        logger.info("Session %s: running %r", self.id, command_line)
        self.state = SessionState.RUNNING
        self._current_command = command_line
        self._interrupted = False
        self._input = InputChannel()
        self._invocation = asyncio.create_task(
            self._run_invocation(args, self._input), name=f"session-{self.id}"
        )
        return True

    async def interrupt(self) -> None:
        """Stop the running command as if Ctrl+C had been pressed."""
        task = self._invocation
        if task is None or task.done():
            return
        self._interrupted = True
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def wait_idle(self) -> None:
        """Wait for the running command, if any, to finish."""
        task = self._invocation
        if task is not None:
            await asyncio.shield(task)

    async def _run_invocation(self, args: list[str], channel: InputChannel) -> None:
        banner = Banner(self._banner) if self._banner else None
        transforms = {
            StreamName.STDOUT: BannerTransform(banner=banner, decode_bytes=True),
            StreamName.STDERR: BannerTransform(banner=banner, decode_bytes=True),
        }
        decoders = {
            name: codecs.getincrementaldecoder("utf-8")(errors="replace")
            for name in transforms
        }

        exit_code = 1
        events = None
        try:
            events = self._executor.execute(args, dict(self._env), channel)
            async for event in events:
                if isinstance(event, ExitEvent):
                    exit_code = event.exit_code
                    break
                for piece in transforms[event.stream].process(event.data):
                    await self._emit(piece, decoders[event.stream])
        except asyncio.CancelledError:
            if not self._interrupted:
                raise
            exit_code = EXIT_INTERRUPTED
            logger.info("Session %s: %r interrupted", self.id, self._current_command)
        except Exception as e:
            logger.exception("Session %s: invocation failed", self.id)
            await self._send(f"Error: {e}\r\n")
            exit_code = 1
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
            channel.close()

        for decoder in decoders.values():
            tail = decoder.decode(b"", final=True)
            if tail:
                await self._send(_LF_RE.sub("\r\n", tail))

        logger.info("Session %s: %r exited with %d", self.id, self._current_command, exit_code)
        self.last_exit_code = exit_code
        self._commands_run += 1
        self._current_command = None
        self._input = None
        self._invocation = None
        if self.state is SessionState.RUNNING:
            self.state = SessionState.AWAITING_INPUT
        await self._send(encode_frame(ExitFrame(code=exit_code)))

    async def _emit(self, piece: object, decoder: codecs.IncrementalDecoder) -> None:
        if isinstance(piece, EchoFrame):
            self.echo_enabled = piece.enabled
            await self._send(encode_frame(piece))
            return
        if isinstance(piece, (bytes, bytearray)):
            piece = decoder.decode(bytes(piece))
        if piece:
            await self._send(_LF_RE.sub("\r\n", piece))

    # -------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------

    async def send(self, frame: object) -> None:
        """Send a control frame (or raw text) to the client."""
        await self._send(frame if isinstance(frame, str) else encode_frame(frame))

    async def _send(self, data: str) -> None:
        async with self._write_lock:
            if self.state is SessionState.CLOSED and self._closed.is_set():
                return
            try:
                await self._transport.send(data)
            except ConnectionError as e:
                logger.debug("Session %s: dropped %d chars, %s", self.id, len(data), e)

    # -------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------

    async def close(self) -> None:
        """Stop the running command, close the transport, and unregister.

        Safe to call multiple times; only the first call does anything.
        """
        if self.state is SessionState.CLOSED:
            await self._closed.wait()
            return
        self.state = SessionState.CLOSED

        task = self._invocation
        if task is not None and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=self._termination_timeout)
            except asyncio.CancelledError:
                pass
            except asyncio.TimeoutError:
                logger.warning(
                    "Session %s: invocation did not stop within %.1fs",
                    self.id, self._termination_timeout,
                )

        await self._transport.close()
        self._closed.set()
        logger.info("Session %s closed", self.id)
        if self._on_close is not None:
            await self._on_close(self)
