"""Run a command in-process against a local terminal.

This is the local half of the parity contract: the same executor and the
same paired banner transforms as a remote session, without the socket.
"""

from __future__ import annotations

import asyncio
import codecs
import logging

from termlink.domain.errors import InvalidArgument
from termlink.domain.models import EchoFrame, ExitEvent, StreamName
from termlink.endpoint.executor import CommandExecutor, InputChannel
from termlink.render.banner import Banner, BannerSource, wrap_streams
from termlink.terminal.base import Terminal

logger = logging.getLogger(__name__)


async def run_local(
    executor: CommandExecutor,
    args: list[str],
    terminal: Terminal,
    banner: BannerSource = None,
    env: dict[str, str] | None = None,
) -> int:
    """Run ``args`` through ``executor`` and render to ``terminal``.

    Terminal input is forwarded to the command until it finishes.

    Returns:
        The command's exit code.
    """
    if not isinstance(executor, CommandExecutor):
        raise InvalidArgument(
            "Expected executor to be a CommandExecutor", name="executor", value=executor
        )
    if not isinstance(terminal, Terminal):
        raise InvalidArgument(
            "Expected terminal to be a Terminal instance", name="terminal", value=terminal
        )

    shared = Banner(banner) if banner else None
    stdout, stderr = wrap_streams(terminal.stdout, terminal.stderr, banner=shared)
    streams = {StreamName.STDOUT: stdout, StreamName.STDERR: stderr}
    decoders = {
        name: codecs.getincrementaldecoder("utf-8")(errors="replace") for name in streams
    }

    channel = InputChannel()

    async def forward_input() -> None:
        while True:
            data = await terminal.read()
            if not data:
                channel.close()
                return
            channel.feed(data)

    input_task = asyncio.create_task(forward_input(), name="termlink-local-input")
    exit_code = 1
    events = executor.execute(list(args), dict(env or {}), channel)
    try:
        async for event in events:
            if isinstance(event, ExitEvent):
                exit_code = event.exit_code
                break
            if isinstance(event.data, EchoFrame):
                logger.debug("Local run: echo %s", "on" if event.data.enabled else "off")
                continue
            data = event.data
            if isinstance(data, bytes):
                data = decoders[event.stream].decode(data)
            sink = streams[event.stream]
            sink.write(data)
            sink.flush()
    finally:
        await events.aclose()
        input_task.cancel()
        await asyncio.gather(input_task, return_exceptions=True)

    for name, decoder in decoders.items():
        tail = decoder.decode(b"", final=True)
        if tail:
            streams[name].write(tail)

    logger.debug("Local run of %s exited with %d", args, exit_code)
    return exit_code
