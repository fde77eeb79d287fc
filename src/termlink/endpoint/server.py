"""FastAPI session server and the listener that binds it to a port.

Each WebSocket connection to ``/`` becomes a Session. The app also
exposes a small HTTP surface for monitoring::

    GET /health    -> {"status": "ok", "sessions": 2}
    GET /sessions  -> [SessionInfo, ...]
    WS  /          <- keystrokes and control frames, -> output

The Listener binds the socket itself before handing it to uvicorn so a
busy port surfaces as ``AddressInUse`` to the caller instead of a
server log line.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel
from fastapi.websockets import WebSocketState

from termlink import __version__
from termlink.domain.errors import AddressInUse, InvalidArgument, TermlinkError
from termlink.domain.models import SessionInfo
from termlink.endpoint.executor import CommandExecutor
from termlink.endpoint.manager import SessionManager
from termlink.endpoint.session import Session
from termlink.render.banner import BannerSource

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str = "ok"
    sessions: int = 0


class WebSocketTransport:
    """Adapts a Starlette WebSocket to the Session transport interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        client = websocket.client
        self.peer = f"{client.host}:{client.port}" if client else None
        self._closed = False

    async def send(self, data: str) -> None:
        if self._closed:
            raise ConnectionError("WebSocket is closed")
        try:
            await self._ws.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise ConnectionError(f"WebSocket send failed: {e}") from e

    async def receive(self) -> str | bytes | None:
        if self._closed:
            return None
        try:
            message = await self._ws.receive()
        except (WebSocketDisconnect, RuntimeError):
            self._closed = True
            return None
        if message["type"] == "websocket.disconnect":
            self._closed = True
            return None
        text = message.get("text")
        return text if text is not None else message.get("bytes")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws.application_state == WebSocketState.CONNECTED:
            try:
                await self._ws.close()
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.debug("WebSocket close failed: %s", e)


def create_app(
    executor: CommandExecutor,
    manager: SessionManager | None = None,
    banner: BannerSource = None,
    env: dict[str, str] | None = None,
    termination_timeout: float = 5.0,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Session server started")
        yield
        await app.state.manager.close_all()
        logger.info("Session server stopped")

    app = FastAPI(
        title="termlink",
        description="Remote CLI session server",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.manager = manager if manager is not None else SessionManager()
    app.state.executor = executor

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", sessions=len(app.state.manager))

    @app.get("/sessions")
    async def list_sessions() -> list[SessionInfo]:
        return app.state.manager.snapshot()

    @app.websocket("/")
    async def session_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        m: SessionManager = app.state.manager
        session = Session(
            WebSocketTransport(websocket),
            app.state.executor,
            env=env,
            banner=banner,
            termination_timeout=termination_timeout,
            on_close=m.remove,
        )
        await m.add(session)
        await session.run()

    return app


def validate_port(port: object) -> int:
    """Return ``port`` if it is an integer in 1..65535.

    Raises:
        InvalidArgument: For anything else.
    """
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        raise InvalidArgument(
            "Expected port to be a number between 1 and 65535", name="port", value=port
        )
    return port


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening-ready TCP socket.

    Raises:
        AddressInUse: If another socket already holds the address.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        if e.errno == errno.EADDRINUSE:
            raise AddressInUse(port, host) from e
        raise
    return sock


class ListenerHandle:
    """A bound, serving session server. Close it to stop serving."""

    def __init__(
        self,
        host: str,
        port: int,
        manager: SessionManager,
        server: uvicorn.Server,
        task: asyncio.Task[None],
    ) -> None:
        self.host = host
        self.port = port
        self.manager = manager
        self._server = server
        self._task = task

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/"

    @property
    def is_serving(self) -> bool:
        return not self._task.done()

    async def close(self) -> None:
        """Close every session, then stop the server."""
        if not self.is_serving:
            return
        await self.manager.close_all()
        self._server.should_exit = True
        await self._task
        logger.info("Listener on %s:%d closed", self.host, self.port)

    async def wait_closed(self) -> None:
        await asyncio.shield(self._task)

    async def __aenter__(self) -> ListenerHandle:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()


class Listener:
    """Accepts remote sessions for one command executor.

    Example usage::

        listener = Listener(CommandRegistry(commands={"abc": abc}))
        handle = await listener.listen(1337)
        ...
        await listener.close(handle)

    Args:
        executor: Runs the commands requested by clients.
        host: Interface to bind.
        banner: Banner text or function for remote invocations.
        env: Extra environment for every invocation.
        termination_timeout: Seconds a closing session waits for its
                             running command to stop.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        host: str = "127.0.0.1",
        banner: BannerSource = None,
        env: dict[str, str] | None = None,
        termination_timeout: float = 5.0,
    ) -> None:
        if not isinstance(executor, CommandExecutor):
            raise InvalidArgument(
                "Expected executor to be a CommandExecutor", name="executor", value=executor
            )
        self._executor = executor
        self._host = host
        self._banner = banner
        self._env = env
        self._termination_timeout = termination_timeout
        self._handles: list[ListenerHandle] = []

    @property
    def handles(self) -> list[ListenerHandle]:
        return [h for h in self._handles if h.is_serving]

    async def listen(self, port: int) -> ListenerHandle:
        """Bind ``port`` and start serving sessions on it.

        Raises:
            InvalidArgument: If ``port`` is not an integer in 1..65535.
            AddressInUse: If the port is already bound.
        """
        validate_port(port)
        sock = bind_socket(self._host, port)

        manager = SessionManager()
        app = create_app(
            self._executor,
            manager=manager,
            banner=self._banner,
            env=self._env,
            termination_timeout=self._termination_timeout,
        )
        config = uvicorn.Config(app, log_config=None, lifespan="on")
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name=f"listener-{port}")

        while not server.started:
            if task.done():
                sock.close()
                await task
                raise TermlinkError(f"Session server on port {port} failed to start")
            await asyncio.sleep(0.01)

        handle = ListenerHandle(self._host, port, manager, server, task)
        self._handles.append(handle)
        logger.info("Listening for sessions on %s:%d", self._host, port)
        return handle

    async def close(self, handle: ListenerHandle | None = None) -> None:
        """Close one handle, or every handle this listener created."""
        targets = [handle] if handle is not None else list(self._handles)
        for h in targets:
            await h.close()
            if h in self._handles:
                self._handles.remove(h)
