"""Per-session protocol transports."""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Optional

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.types import Receive, Scope, Send

logger = logging.getLogger(__name__)

MCP_SESSION_HEADER = "mcp-session-id"


class SessionTransport(ABC):
    """One client session's protocol channel.

    ``on_close`` is called once with the session id when the transport shuts
    down, whether the gateway closed it or it closed itself.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.on_close: Optional[Callable[[str], None]] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Serve one HTTP exchange for this session as a raw ASGI call."""

    @abstractmethod
    async def _shutdown(self) -> None:
        ...

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._shutdown()
        finally:
            self._notify_closed()

    def _notify_closed(self) -> None:
        self._closed = True
        callback, self.on_close = self.on_close, None
        if callback is not None:
            callback(self.session_id)


class TransportFactory(ABC):
    """Creates started transports. ``run`` brackets the factory's lifetime."""

    @asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        yield

    @abstractmethod
    async def create(self, session_id: str) -> SessionTransport:
        ...


class McpSessionTransport(SessionTransport):
    """Streamable HTTP transport from the mcp SDK bound to its own protocol server."""

    def __init__(self, session_id: str, server: Server, json_response: bool = False) -> None:
        super().__init__(session_id)
        self._server = server
        self._http = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
        )

    async def run(self, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        """Pump messages between the HTTP transport and the protocol server until either ends."""
        async with self._http.connect() as (read_stream, write_stream):
            task_status.started()
            try:
                await self._server.run(
                    read_stream,
                    write_stream,
                    self._server.create_initialization_options(),
                    stateless=False,
                )
            except Exception:
                logger.exception("Protocol server for session %s crashed", self.session_id[:8])
            finally:
                self._notify_closed()

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._http.handle_request(scope, receive, send)

    async def _shutdown(self) -> None:
        await self._http.terminate()


def default_server_factory() -> Server:
    return Server("quire-mcp-gateway")


class McpTransportFactory(TransportFactory):
    """Starts each session's protocol server inside one long-lived task group."""

    def __init__(self, server_factory: Callable[[], Server] = default_server_factory,
                 json_response: bool = False) -> None:
        self._server_factory = server_factory
        self._json_response = json_response
        self._task_group: Optional[TaskGroup] = None

    @asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            try:
                yield
            finally:
                tg.cancel_scope.cancel()
                self._task_group = None

    async def create(self, session_id: str) -> SessionTransport:
        if self._task_group is None:
            raise RuntimeError("Transport factory is not running")
        transport = McpSessionTransport(session_id, self._server_factory(), self._json_response)
        await self._task_group.start(transport.run)
        return transport
