"""Command-line interface for termlink.

Provides the entry point for serving sessions, attaching a terminal to a
remote server, running a command locally with the same rendering, and
checking on a running server.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="termlink",
        description="Run a CLI locally or as a remote terminal session",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/termlink.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the session server")
    serve_parser.add_argument("--host", type=str, default=None, help="Interface to bind")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to listen on")

    connect_parser = subparsers.add_parser(
        "connect", help="Attach this terminal to a session server"
    )
    connect_parser.add_argument(
        "url", nargs="?", default=None, help="Server URL (default: client.url from config)"
    )
    connect_parser.add_argument(
        "--mode", choices=["line", "keypress"], default=None,
        help="Send input as typed or as keypress frames",
    )
    connect_parser.add_argument(
        "--exec", dest="exec_line", type=str, default=None,
        help="Run one command remotely and exit with its code",
    )

    run_parser = subparsers.add_parser("run", help="Run a command locally")
    run_parser.add_argument("args", nargs=argparse.REMAINDER, help="Command and arguments")

    status_parser = subparsers.add_parser("status", help="Show a server's health and sessions")
    status_parser.add_argument(
        "url", nargs="?", default=None, help="Server URL (default: client.url from config)"
    )

    return parser.parse_args(argv)


def build_executor(settings):
    """Create the command registry described by the configuration."""
    from termlink.endpoint.executor import CommandRegistry

    return CommandRegistry(
        extensions=settings.commands.extensions,
        default_command=settings.commands.default_command,
        termination_timeout=settings.server.termination_timeout,
    )


async def _serve(settings, args) -> None:
    from termlink.endpoint.server import Listener

    host = args.host or settings.server.host
    port = args.port if args.port is not None else settings.server.port
    listener = Listener(
        build_executor(settings),
        host=host,
        banner=settings.banner_text,
        termination_timeout=settings.server.termination_timeout,
    )
    handle = await listener.listen(port)
    print(f"Listening on {handle.url}", file=sys.stderr)
    try:
        await handle.wait_closed()
    finally:
        await listener.close()


async def _connect(settings, args) -> int:
    from termlink.client.remote import RemoteClient
    from termlink.terminal.stdio import StdioTerminal

    url = args.url or settings.client.url
    mode = args.mode or settings.client.mode
    raw = args.exec_line is None and sys.stdin.isatty()
    async with StdioTerminal(raw=raw) as terminal:
        client = RemoteClient(
            url,
            terminal,
            mode=mode,
            banner=settings.banner_text,
            local_echo=settings.client.local_echo,
        )
        async with client:
            if args.exec_line is not None:
                return await client.run(args.exec_line)
            await client.wait_closed()
            return client.last_exit_code or 0


async def _run_local(settings, args) -> int:
    from termlink.client.local import run_local
    from termlink.terminal.stdio import StdioTerminal

    async with StdioTerminal(raw=False) as terminal:
        return await run_local(
            build_executor(settings), args.args, terminal, banner=settings.banner_text
        )


def _status(settings, args) -> int:
    import httpx

    url = args.url or settings.client.url
    base = url.replace("ws://", "http://", 1).replace("wss://", "https://", 1).rstrip("/")
    try:
        with httpx.Client(base_url=base, timeout=5.0) as http:
            health = http.get("/health")
            health.raise_for_status()
            sessions = http.get("/sessions")
            sessions.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Error: {base} is not reachable: {e}", file=sys.stderr)
        return 1

    data = health.json()
    print(f"{base}: {data['status']} ({data['sessions']} session(s))")
    for info in sessions.json():
        command = info.get("current_command") or "-"
        print(f"  {info['session_id']}  {info['state']:<15}  {info.get('peer') or '?':<21}  {command}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the termlink CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from termlink.config.settings import load_settings
    from termlink.domain.errors import TermlinkError
    from termlink.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    exit_code = 0
    try:
        if args.command == "serve":
            logger.info("Starting session server")
            asyncio.run(_serve(settings, args))

        elif args.command == "connect":
            exit_code = asyncio.run(_connect(settings, args))

        elif args.command == "run":
            exit_code = asyncio.run(_run_local(settings, args))

        elif args.command == "status":
            exit_code = _status(settings, args)

    except KeyboardInterrupt:
        exit_code = 130
    except (TermlinkError, ConnectionError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
