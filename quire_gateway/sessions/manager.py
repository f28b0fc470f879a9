"""Routes protocol requests to per-session transports and reclaims idle sessions."""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from starlette.types import Message, Receive, Scope, Send

from quire_gateway.server.errors import (
    GatewayError,
    InternalError,
    InvalidRequestError,
    ServiceUnavailableError,
    SessionNotFoundError,
)
from quire_gateway.server.models.rpc import rpc_error_body
from quire_gateway.sessions.cache import BoundedEvictionCache
from quire_gateway.sessions.transport import MCP_SESSION_HEADER, SessionTransport, TransportFactory

logger = logging.getLogger(__name__)

MAX_SESSIONS = 1000
SESSION_IDLE_TIMEOUT = 30 * 60
ASGIForward = Callable[[Scope, Receive, Send], Awaitable[None]]


def _short(session_id: str) -> str:
    return session_id[:8]


def is_initialize_request(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and payload.get("jsonrpc") == "2.0"
        and payload.get("method") == "initialize"
        and "id" in payload
    )


@dataclass
class Session:
    session_id: str
    transport: SessionTransport
    last_activity_at: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _replay_body(body: bytes, receive: Receive, on_taken: Optional[Callable[[], None]] = None) -> Receive:
    """Hand an already-read request body to a downstream ASGI app, then defer to the real channel.

    ``on_taken`` runs once the downstream app has pulled the body.
    """
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            if on_taken is not None:
                on_taken()
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def _release_once(lock: asyncio.Lock) -> Callable[[], None]:
    released = False

    def release() -> None:
        nonlocal released
        if not released:
            released = True
            lock.release()

    return release


class SessionManager:
    """Owns every live session.

    Sessions live in an LRU cache capped at ``max_sessions``; the least
    recently used one is closed when a new session would exceed the cap.
    Sessions untouched for longer than ``idle_timeout`` seconds are reclaimed
    by :meth:`sweep_idle` or lazily on their next request. POST bodies for one
    session reach the transport one at a time, in the order they were accepted;
    responses and GET streams are not serialized. A new session joins the
    cache only when its transport answers initialize with a 2xx status;
    otherwise it is closed and its id is never sent to the client.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        max_sessions: int = MAX_SESSIONS,
        idle_timeout: float = SESSION_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        session_id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._transport_factory = transport_factory
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._session_id_factory = session_id_factory
        self._sessions: BoundedEvictionCache[Session] = BoundedEvictionCache(max_sessions, on_evict=self._evicted)
        self._background: set[asyncio.Task] = set()
        self._closing = False

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def closing(self) -> bool:
        return self._closing

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.peek(session_id)

    async def route_post(self, session_id: Optional[str], body: bytes) -> ASGIForward:
        """Resolve a POST to the ASGI call that will serve it."""
        if session_id:
            return self._forward(self._resolve(session_id), body, serialize=True)
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            payload = None
        if not is_initialize_request(payload):
            raise InvalidRequestError()
        if self._closing:
            raise ServiceUnavailableError()
        session = await self._create_session()
        return self._forward(session, body, serialize=True, initializing=True)

    def route_get(self, session_id: Optional[str]) -> ASGIForward:
        if not session_id:
            raise InvalidRequestError("Invalid or missing session ID")
        return self._forward(self._resolve(session_id), None, serialize=False)

    async def terminate(self, session_id: Optional[str]) -> None:
        """Explicitly end a session. Close failures are logged, not raised."""
        if not session_id:
            raise InvalidRequestError("Invalid or missing session ID")
        session = self._resolve(session_id)
        self._sessions.delete(session_id)
        logger.info("Session %s terminated by client", _short(session_id))
        await self._safe_close(session)

    async def sweep_idle(self) -> int:
        """Close every session idle past the threshold. Returns how many were reclaimed."""
        now = self._clock()
        expired = [s for _, s in self._sessions.items() if self._is_idle(s, now)]
        for session in expired:
            self._sessions.delete(session.session_id)
            logger.info("Closing idle session %s", _short(session.session_id))
            await self._safe_close(session)
        if expired:
            logger.info("Reclaimed %d idle session(s), %d active", len(expired), len(self._sessions))
        return len(expired)

    async def shutdown(self, grace: float) -> None:
        """Refuse new sessions and close the live ones, waiting at most ``grace`` seconds."""
        self._closing = True
        held = self._sessions.clear()
        logger.info("Closing %d active session(s)", len(held))
        tasks = [asyncio.ensure_future(self._safe_close(s)) for _, s in held]
        tasks.extend(self._background)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=grace)
        if pending:
            logger.warning("%d session close(s) still pending after %.1fs, abandoning", len(pending), grace)
            for task in pending:
                task.cancel()

    def _resolve(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError()
        now = self._clock()
        if self._is_idle(session, now):
            self._sessions.delete(session_id)
            logger.info("Session %s expired while idle", _short(session_id))
            self._close_in_background(session)
            raise SessionNotFoundError()
        session.last_activity_at = now
        return session

    def _is_idle(self, session: Session, now: float) -> bool:
        return now - session.last_activity_at > self._idle_timeout

    async def _create_session(self) -> Session:
        session_id = self._session_id_factory()
        transport = await self._transport_factory.create(session_id)
        session = Session(session_id=session_id, transport=transport, last_activity_at=self._clock())
        transport.on_close = self._transport_closed
        return session

    def _accept(self, session: Session) -> None:
        """Start tracking a session once its transport has accepted initialize."""
        session.last_activity_at = self._clock()
        self._sessions.set(session.session_id, session)
        logger.info("Session %s initialized, %d active", _short(session.session_id), len(self._sessions))

    def _transport_closed(self, session_id: str) -> None:
        if self._sessions.delete(session_id):
            logger.info("Session %s closed by transport", _short(session_id))

    def _evicted(self, session_id: str, session: Session) -> None:
        logger.warning("Session limit reached, evicting least recently used session %s", _short(session_id))
        self._close_in_background(session)

    def _close_in_background(self, session: Session) -> None:
        task = asyncio.ensure_future(self._safe_close(session))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _safe_close(self, session: Session) -> None:
        try:
            await session.transport.close()
        except Exception:
            logger.warning("Error closing session %s", _short(session.session_id), exc_info=True)

    def _forward(self, session: Session, body: Optional[bytes], serialize: bool,
                 initializing: bool = False) -> ASGIForward:
        """Build the ASGI call that hands one exchange to ``session``'s transport.

        With ``serialize`` the session lock is held only until the transport
        has taken the request body, so intake follows acceptance order while
        long responses (and server-to-client requests made during them) never
        block later POSTs on the same session.
        """
        async def forward(scope: Scope, receive: Receive, send: Send) -> None:
            started = False
            rejected = False

            async def tracked_send(message: Message) -> None:
                nonlocal started, rejected
                if message["type"] == "http.response.start":
                    started = True
                    if initializing:
                        if 200 <= message["status"] < 300:
                            self._accept(session)
                            message = _with_session_header(message, session.session_id)
                        else:
                            rejected = True
                            message = _without_session_header(message)
                await send(message)

            release = None
            if serialize:
                await session.lock.acquire()
                release = _release_once(session.lock)
            downstream = _replay_body(body, receive, on_taken=release) if body is not None else receive
            try:
                await session.transport.handle_request(scope, downstream, tracked_send)
            except Exception:
                logger.exception("Error handling request for session %s", _short(session.session_id))
                if initializing:
                    rejected = True
                    self._sessions.delete(session.session_id)
                if not started:
                    await _send_error(send, InternalError())
            finally:
                if release is not None:
                    release()
            if rejected:
                logger.info("Session %s discarded, initialize was not accepted", _short(session.session_id))
                await self._safe_close(session)

        return forward


def _with_session_header(message: Message, session_id: str) -> Message:
    headers = list(message.get("headers", []))
    if not any(name.lower() == MCP_SESSION_HEADER.encode() for name, _ in headers):
        headers.append((MCP_SESSION_HEADER.encode(), session_id.encode()))
    return {**message, "headers": headers}


def _without_session_header(message: Message) -> Message:
    headers = [(name, value) for name, value in message.get("headers", []) if name.lower() != MCP_SESSION_HEADER.encode()]
    return {**message, "headers": headers}


async def _send_error(send: Send, error: GatewayError) -> None:
    body = json.dumps(rpc_error_body(error.rpc_code, error.message)).encode()
    await send({
        "type": "http.response.start",
        "status": error.status_code,
        "headers": [(b"content-type", b"application/json"), (b"content-length", str(len(body)).encode())],
    })
    await send({"type": "http.response.body", "body": body})
