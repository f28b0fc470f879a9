"""Pytest fixtures shared by gateway tests."""
import json
from typing import Callable, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from quire_gateway.client import ResilientRequester
from quire_gateway.oauth.upstream import TokenSet, UpstreamConfig
from quire_gateway.server.app import create_app
from quire_gateway.server.config import GatewayConfig, RateLimitConfig, SessionConfig
from quire_gateway.sessions.transport import SessionTransport, TransportFactory

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {"protocolVersion": "2025-03-26", "capabilities": {}, "clientInfo": {"name": "test", "version": "1"}},
}


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(delay: float) -> None:
    return None


class FakeTransport(SessionTransport):
    """Echoes JSON-RPC ids back and records what it was sent."""

    def __init__(self, session_id: str, fail_close: bool = False, fail_requests: bool = False,
                 reject_status: Optional[int] = None) -> None:
        super().__init__(session_id)
        self.fail_close = fail_close
        self.fail_requests = fail_requests
        self.reject_status = reject_status
        self.requests: list[tuple[str, bytes]] = []
        self.close_calls = 0

    async def handle_request(self, scope, receive, send) -> None:
        request = Request(scope, receive)
        body = await request.body()
        self.requests.append((request.method, body))
        if self.fail_requests:
            raise RuntimeError("transport exploded")
        if self.reject_status is not None:
            response: Response = JSONResponse({"error": "rejected"}, status_code=self.reject_status,
                                              headers={"mcp-session-id": self.session_id})
        elif request.method == "GET":
            response = JSONResponse({"stream": self.session_id})
        else:
            payload = json.loads(body) if body else {}
            response = JSONResponse({"jsonrpc": "2.0", "id": payload.get("id"), "result": {"echo": payload.get("method")}})
        await response(scope, receive, send)

    async def _shutdown(self) -> None:
        self.close_calls += 1
        if self.fail_close:
            raise RuntimeError("close failed")


class FakeTransportFactory(TransportFactory):
    def __init__(self, **transport_kwargs) -> None:
        self.transport_kwargs = transport_kwargs
        self.created: list[FakeTransport] = []

    async def create(self, session_id: str) -> SessionTransport:
        transport = FakeTransport(session_id, **self.transport_kwargs)
        self.created.append(transport)
        return transport


def make_requester(handler: Callable[[httpx.Request], httpx.Response], sleep=no_sleep) -> ResilientRequester:
    return ResilientRequester(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleep=sleep)


def upstream_token_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"access_token": "quire-access", "refresh_token": "quire-refresh", "expires_in": 3600})


@pytest.fixture
def upstream_config() -> UpstreamConfig:
    return UpstreamConfig(
        client_id="quire-client",
        client_secret="quire-secret",
        redirect_uri="http://localhost:3001/oauth/callback",
        authorize_url="https://quire.example/oauth",
        token_url="https://quire.example/oauth/token",
    )


@pytest.fixture
def gateway_config(upstream_config: UpstreamConfig) -> GatewayConfig:
    return GatewayConfig(
        upstream=upstream_config,
        issuer_url="http://localhost:3001",
        sessions=SessionConfig(max_sessions=3, idle_timeout=60, sweep_interval=3600, shutdown_grace=1.0),
        rate_limit=RateLimitConfig(requests_per_minute=1000),
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def app(gateway_config: GatewayConfig, transport_factory: FakeTransportFactory, clock: ManualClock):
    return create_app(
        gateway_config,
        transport_factory=transport_factory,
        requester=make_requester(upstream_token_handler),
        clock=clock,
    )


@pytest.fixture
def client(app) -> TestClient:
    with TestClient(app) as c:
        yield c


@pytest.fixture
def access_token(app) -> str:
    issued = app.state.oauth_provider.tokens.issue("client-1", ("read",), TokenSet("quire-access", "quire-refresh"))
    return issued.access_token


@pytest.fixture
def auth_headers(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}", "Accept": "application/json, text/event-stream"}


def initialize_session(client: TestClient, headers: dict, payload: Optional[dict] = None) -> str:
    resp = client.post("/mcp", json=payload or INITIALIZE, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.headers["mcp-session-id"]


@pytest.fixture
def access_token_for() -> Callable:
    """Seed a gateway token on an app built inside a test and return request headers."""
    def _headers(target_app) -> dict:
        issued = target_app.state.oauth_provider.tokens.issue("client-1", ("read",), TokenSet("quire-access"))
        return {"Authorization": f"Bearer {issued.access_token}", "Accept": "application/json, text/event-stream"}

    return _headers
