"""FastAPI application factory."""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from quire_gateway import __version__
from quire_gateway.client import ResilientRequester
from quire_gateway.oauth.pending import PendingAuthorizationStore
from quire_gateway.oauth.provider import OAuthEndpointError, ProxyOAuthProvider
from quire_gateway.oauth.token_store import ServerTokenStore
from quire_gateway.server.auth import BearerAuth, BearerAuthError
from quire_gateway.server.config import GatewayConfig, load_config_from_env
from quire_gateway.server.errors import CallbackError, GatewayError, InternalError
from quire_gateway.server.html import render_error_page
from quire_gateway.server.middleware.cache_control import NoStoreMiddleware
from quire_gateway.server.middleware.logging import RequestLoggingMiddleware
from quire_gateway.server.middleware.origin import OriginPolicyMiddleware, matches_path_boundary
from quire_gateway.server.middleware.rate_limit import RateLimitMiddleware
from quire_gateway.server.models.oauth import OAuthErrorResponse
from quire_gateway.server.models.rpc import rpc_error_body
from quire_gateway.server.routes.health import create_health_router
from quire_gateway.server.routes.mcp import create_mcp_router
from quire_gateway.server.routes.oauth import create_oauth_router
from quire_gateway.sessions.manager import SessionManager
from quire_gateway.sessions.transport import McpTransportFactory, TransportFactory

logger = logging.getLogger(__name__)


async def _sweep_loop(manager: SessionManager, provider: ProxyOAuthProvider, interval: float) -> None:
    """Reclaim idle sessions and expired OAuth state every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            await manager.sweep_idle()
            provider.purge_expired()
        except Exception:
            logger.exception("Periodic sweep failed")


def _build_provider(config: GatewayConfig, requester: ResilientRequester) -> ProxyOAuthProvider:
    lifetimes = config.tokens
    return ProxyOAuthProvider(
        upstream=config.upstream,
        requester=requester,
        pending=PendingAuthorizationStore(ttl=lifetimes.pending_request),
        tokens=ServerTokenStore(
            auth_code_ttl=lifetimes.auth_code,
            access_token_ttl=lifetimes.access_token,
            refresh_token_ttl=lifetimes.refresh_token,
        ),
    )


def create_app(
    config: Optional[GatewayConfig] = None,
    *,
    transport_factory: Optional[TransportFactory] = None,
    requester: Optional[ResilientRequester] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    When called without arguments (e.g. via uvicorn --factory), loads
    configuration from environment variables. ``transport_factory``,
    ``requester`` and ``clock`` replace the production session transport,
    upstream HTTP client and session clock.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    if config is None:
        config = load_config_from_env()

    if transport_factory is None:
        transport_factory = McpTransportFactory()
    if requester is None:
        requester = ResilientRequester(
            timeout=config.retry.timeout,
            max_retries=config.retry.max_retries,
            initial_delay=config.retry.initial_delay,
        )
    manager_kwargs = {"clock": clock} if clock is not None else {}
    manager = SessionManager(
        transport_factory,
        max_sessions=config.sessions.max_sessions,
        idle_timeout=config.sessions.idle_timeout,
        **manager_kwargs,
    )
    provider = _build_provider(config, requester)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with requester, transport_factory.run():
            sweeper = asyncio.create_task(_sweep_loop(manager, provider, config.sessions.sweep_interval))
            logger.info(
                "Gateway listening for %s (max_sessions=%d, idle_timeout=%ss)",
                config.issuer_url, config.sessions.max_sessions, config.sessions.idle_timeout,
            )
            try:
                yield
            finally:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper
                await manager.shutdown(config.sessions.shutdown_grace)
                logger.info("Gateway shut down")

    app = FastAPI(
        title="Quire MCP Gateway",
        description="OAuth-proxying MCP gateway for the Quire API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.session_manager = manager
    app.state.oauth_provider = provider

    app.add_middleware(RateLimitMiddleware, requests_per_minute=config.rate_limit.requests_per_minute)
    app.add_middleware(NoStoreMiddleware)
    app.add_middleware(OriginPolicyMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(BearerAuthError, _bearer_error_handler)
    app.add_exception_handler(OAuthEndpointError, _oauth_error_handler)
    app.add_exception_handler(CallbackError, _callback_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(create_oauth_router(config, provider))
    app.include_router(create_mcp_router(manager, BearerAuth(provider, config.resource_metadata_url)))
    app.include_router(create_health_router(manager))
    return app


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=rpc_error_body(exc.rpc_code, exc.message))


async def _bearer_error_handler(request: Request, exc: BearerAuthError) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "invalid_token", "error_description": exc.description},
        headers={"WWW-Authenticate": exc.www_authenticate},
    )


async def _oauth_error_handler(request: Request, exc: OAuthEndpointError) -> JSONResponse:
    content = OAuthErrorResponse(error=exc.error, error_description=exc.description)
    return JSONResponse(status_code=exc.status_code, content=content.model_dump(exclude_none=True))


async def _callback_error_handler(request: Request, exc: CallbackError) -> HTMLResponse:
    return HTMLResponse(render_error_page(exc.title, exc.message), status_code=exc.status_code)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "invalid_request", "error_description": "Request validation failed"})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    if matches_path_boundary(request.url.path, "/mcp"):
        err = InternalError()
        return JSONResponse(status_code=err.status_code, content=rpc_error_body(err.rpc_code, err.message))
    return JSONResponse(status_code=500, content={"error": "server_error"})
