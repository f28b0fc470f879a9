"""Tests for cross-origin, caching and rate limiting middleware."""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from quire_gateway.server.middleware.cache_control import NO_STORE_HEADERS
from quire_gateway.server.middleware.origin import is_cors_allowed_path, matches_path_boundary
from quire_gateway.server.middleware.rate_limit import RateLimitMiddleware
from tests.conftest import INITIALIZE, ManualClock

ORIGIN = {"Origin": "https://app.example"}


class TestPathBoundary:
    @pytest.mark.parametrize("path,expected", [
        ("/authorize", True),
        ("/authorize/extra", True),
        ("/authorize-admin", False),
        ("/tokenizer", False),
        ("/.well-known/oauth-protected-resource", True),
        ("/mcp", False),
    ])
    def test_cors_allow_list(self, path: str, expected: bool) -> None:
        assert is_cors_allowed_path(path) is expected

    def test_trailing_slash_prefix(self) -> None:
        assert matches_path_boundary("/oauth/callback", "/oauth/")
        assert not matches_path_boundary("/oauthx", "/oauth/")


class TestOriginPolicy:
    def test_cross_origin_protocol_request_forbidden(self, client: TestClient, auth_headers: dict) -> None:
        resp = client.post("/mcp", json=INITIALIZE, headers={**auth_headers, **ORIGIN})
        assert resp.status_code == 403
        assert resp.json() == {"error": "Cross-origin requests not allowed"}

    def test_lookalike_path_forbidden(self, client: TestClient) -> None:
        resp = client.get("/authorize-admin", headers=ORIGIN)
        assert resp.status_code == 403

    def test_preflight_on_oauth_path(self, client: TestClient) -> None:
        resp = client.options("/token", headers={**ORIGIN, "Access-Control-Request-Method": "POST"})
        assert resp.status_code == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example"
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]

    def test_cors_headers_on_metadata(self, client: TestClient) -> None:
        resp = client.get("/.well-known/oauth-authorization-server", headers=ORIGIN)
        assert resp.status_code == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example"

    def test_same_origin_passes_through(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestNoStore:
    def test_protocol_responses_not_cacheable(self, client: TestClient, auth_headers: dict) -> None:
        resp = client.post("/mcp", json=INITIALIZE, headers=auth_headers)
        for name, value in NO_STORE_HEADERS.items():
            assert resp.headers[name] == value

    def test_error_responses_not_cacheable(self, client: TestClient) -> None:
        resp = client.post("/token", data={"grant_type": "password"})
        assert resp.headers["Cache-Control"] == NO_STORE_HEADERS["Cache-Control"]

    def test_health_left_alone(self, client: TestClient) -> None:
        assert "Pragma" not in client.get("/health").headers


class TestRateLimit:
    @pytest.fixture
    def limited(self):
        clock = ManualClock()
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, requests_per_minute=2, clock=clock)

        @app.get("/mcp")
        async def mcp() -> dict:
            return {"ok": True}

        @app.get("/health")
        async def health() -> dict:
            return {"ok": True}

        return TestClient(app), clock

    def test_limit_enforced_with_retry_after(self, limited) -> None:
        client, _ = limited
        assert client.get("/mcp").status_code == 200
        second = client.get("/mcp")
        assert second.headers["X-RateLimit-Remaining"] == "0"
        resp = client.get("/mcp")
        assert resp.status_code == 429
        assert resp.json()["error"] == "rate_limited"
        assert resp.headers["Retry-After"] == "60"

    def test_window_slides(self, limited) -> None:
        client, clock = limited
        client.get("/mcp")
        client.get("/mcp")
        clock.advance(61)
        assert client.get("/mcp").status_code == 200

    def test_other_paths_unlimited(self, limited) -> None:
        client, _ = limited
        for _ in range(5):
            assert client.get("/health").status_code == 200
