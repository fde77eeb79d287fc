"""Client side of a remote session.

Attaches a local Terminal to a session server over a WebSocket: typed
input goes up, output comes down and is rendered to the terminal. Control
frames in the output stream adjust local state (echo, last exit code) and
are never shown.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Literal

import websockets

from termlink.domain.errors import InvalidArgument
from termlink.domain.models import (
    EchoFrame,
    ExecFrame,
    ExitFrame,
    KeypressFrame,
    RawFrame,
)
from termlink.keyboard.keys import DEL, ESC, decode_key, describe_key
from termlink.protocol.codec import FrameDecoder, encode_frame
from termlink.render.banner import Banner, BannerSource, BannerTransform
from termlink.terminal.base import Terminal

logger = logging.getLogger(__name__)

InputMode = Literal["line", "keypress"]

CTRL_C = "\x03"
CTRL_D = "\x04"


class RemoteClient:
    """A terminal attached to a remote session.

    Arguments are validated here, before any network I/O. Use
    ``connect()`` to construct and open in one step.

    Args:
        url: WebSocket URL of the session server, e.g. ``ws://host:1337/``.
        terminal: Local terminal to attach.
        mode: ``"line"`` sends input as typed; ``"keypress"`` wraps each
              chunk in a Keypress frame.
        banner: Banner shown once per command ahead of its first output.
        local_echo: Render typed input locally while echo is enabled,
                    for servers that do not echo.
    """

    def __init__(
        self,
        url: str,
        terminal: Terminal,
        mode: InputMode = "line",
        banner: BannerSource = None,
        local_echo: bool = False,
    ) -> None:
        if not isinstance(url, str) or not url:
            raise InvalidArgument("Expected URL to be a string", name="url", value=url)
        if not isinstance(terminal, Terminal):
            raise InvalidArgument(
                "Expected terminal to be a Terminal instance", name="terminal", value=terminal
            )
        if mode not in ("line", "keypress"):
            raise InvalidArgument(
                f"Unknown input mode {mode!r}, expected 'line' or 'keypress'",
                name="mode",
                value=mode,
            )
        # Validate the banner now rather than on first output
        Banner(banner)

        self.url = url
        self.terminal = terminal
        self.mode = mode
        self.local_echo = local_echo
        self.echo_enabled = True
        self.last_exit_code: int | None = None

        self._banner_source = banner
        self._output = self._new_transform()
        self._server_echo = True
        self._line = ""
        # Set from command submission until its ExitFrame
        self._command_pending = False
        self._skip_echo_line = False
        self._decoder = FrameDecoder()
        self._ws: websockets.ClientConnection | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._exit_waiters: list[asyncio.Future[int]] = []
        self._closed = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._closed.is_set()

    async def open(self) -> RemoteClient:
        """Connect to the server and start pumping input and output."""
        if self._ws is not None:
            return self
        logger.info("Connecting to %s", self.url)
        self._ws = await websockets.connect(self.url)
        self._tasks = [
            asyncio.create_task(self._pump_output(self._ws), name="termlink-output"),
            asyncio.create_task(self._pump_input(), name="termlink-input"),
        ]
        logger.info("Connected to %s (mode=%s)", self.url, self.mode)
        return self

    # -------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------

    async def send(self, frame: object) -> None:
        """Send a control frame, or raw text, to the server."""
        if self._ws is None or self._closed.is_set():
            raise ConnectionError("Not connected")
        if isinstance(frame, EchoFrame):
            self.echo_enabled = frame.enabled
            self._server_echo = frame.enabled
        data = frame if isinstance(frame, str) else encode_frame(frame)
        try:
            await self._ws.send(data)
        except websockets.ConnectionClosed as e:
            raise ConnectionError(f"Connection to {self.url} closed") from e

    async def run(self, command_line: str) -> int:
        """Run ``command_line`` remotely and return its exit code.

        Raises:
            ConnectionError: If the connection closes before the command
                finishes.
        """
        waiter = asyncio.get_running_loop().create_future()
        self._exit_waiters.append(waiter)
        try:
            if not self._command_pending:
                self._start_command(echoed=False)
            await self.send(ExecFrame(command_line=command_line))
            return await waiter
        finally:
            if waiter in self._exit_waiters:
                self._exit_waiters.remove(waiter)

    async def wait_exit(self) -> int:
        """Wait for the next command on the server to finish."""
        waiter = asyncio.get_running_loop().create_future()
        self._exit_waiters.append(waiter)
        return await waiter

    # -------------------------------------------------------------------
    # Pumps
    # -------------------------------------------------------------------

    async def _pump_input(self) -> None:
        while True:
            chunk = await self.terminal.read()
            if not chunk:
                logger.debug("Terminal input ended")
                break
            event = decode_key(chunk)
            logger.debug("Key %s (%r)", describe_key(event), chunk)
            if chunk == CTRL_D:
                break

            if self.local_echo and self.echo_enabled:
                self._write(chunk.replace("\r", "\r\n"))
            if self._track_line(chunk):
                self._start_command(echoed=self._server_echo)
            try:
                if self.mode == "keypress":
                    await self.send(KeypressFrame(event=event))
                else:
                    await self.send(chunk)
            except ConnectionError:
                return
        if self._ws is not None:
            await self._ws.close()

    async def _pump_output(self, ws: websockets.ClientConnection) -> None:
        try:
            async for message in ws:
                for frame in self._decoder.feed(message):
                    self._handle_frame(frame)
        except websockets.ConnectionClosed as e:
            logger.debug("Connection closed: %s", e)
        finally:
            for frame in self._decoder.flush():
                self._handle_frame(frame)
            self._closed.set()
            self._fail_waiters()
            logger.info("Disconnected from %s", self.url)

    def _handle_frame(self, frame: object) -> None:
        if isinstance(frame, RawFrame):
            self._render(frame.data)
        elif isinstance(frame, EchoFrame):
            self.echo_enabled = frame.enabled
            self._server_echo = frame.enabled
            logger.debug("Server turned echo %s", "on" if frame.enabled else "off")
        elif isinstance(frame, ExitFrame):
            self.last_exit_code = frame.code
            self._command_pending = False
            self._skip_echo_line = False
            waiters, self._exit_waiters = self._exit_waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(frame.code)
        else:
            logger.debug("Ignoring %s frame from server", frame.type)

    def _track_line(self, chunk: str) -> bool:
        """Mirror the server's line editor; True when a command line is submitted."""
        if self._command_pending or chunk.startswith(ESC):
            return False
        for ch in chunk:
            if ch in "\r\n":
                line, self._line = self._line, ""
                if line.strip():
                    return True
            elif ch in ("\b", DEL):
                self._line = self._line[:-1]
            elif ch == CTRL_C:
                self._line = ""
            elif ch >= " ":
                self._line += ch
        return False

    def _start_command(self, echoed: bool) -> None:
        self._command_pending = True
        self._skip_echo_line = echoed
        self._output = self._new_transform()

    def _render(self, data: str) -> None:
        """Write server output, passing command output through the banner."""
        if not self._command_pending:
            self._write(data)
            return
        if self._skip_echo_line:
            # The server's echo of the submitted line is not command output
            end = data.find("\n")
            if end == -1:
                self._write(data)
                return
            self._write(data[: end + 1])
            self._skip_echo_line = False
            data = data[end + 1:]
            if not data:
                return
        *header, chunk = self._output.process(data)
        for piece in header:
            self._write(piece.replace("\n", "\r\n"))
        self._write(chunk)

    def _write(self, data: str) -> None:
        self.terminal.stdout.write(data)
        self.terminal.stdout.flush()

    def _new_transform(self) -> BannerTransform:
        banner = Banner(self._banner_source) if self._banner_source else None
        return BannerTransform(banner=banner)

    def _fail_waiters(self) -> None:
        waiters, self._exit_waiters = self._exit_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(ConnectionError(f"Connection to {self.url} closed"))

    # -------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------

    async def close(self) -> None:
        """Disconnect from the server. Safe to call multiple times."""
        if self._ws is None:
            self._closed.set()
            return
        await self._ws.close()
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in self._tasks if t is not current), return_exceptions=True
        )
        self._closed.set()
        self._fail_waiters()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def __aenter__(self) -> RemoteClient:
        return await self.open()

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()


async def connect(
    url: str,
    terminal: Terminal,
    mode: InputMode = "line",
    banner: BannerSource = None,
    local_echo: bool = False,
) -> RemoteClient:
    """Attach ``terminal`` to the session server at ``url``.

    Raises:
        InvalidArgument: If ``url`` or ``terminal`` is malformed. Nothing
            is sent over the network in that case.
    """
    client = RemoteClient(url, terminal, mode=mode, banner=banner, local_echo=local_echo)
    return await client.open()
