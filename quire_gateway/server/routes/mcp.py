"""POST/GET/DELETE /mcp protocol endpoint."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response, status
from starlette.types import Receive, Scope, Send

from quire_gateway.oauth.provider import AuthInfo
from quire_gateway.server.auth import BearerAuth
from quire_gateway.sessions.manager import ASGIForward, SessionManager

logger = logging.getLogger(__name__)


class TransportResponse(Response):
    """Hands the raw ASGI exchange to a session transport instead of rendering a body."""

    def __init__(self, forward: ASGIForward) -> None:
        super().__init__()
        self._forward = forward

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._forward(scope, receive, send)


def create_mcp_router(manager: SessionManager, bearer_auth: BearerAuth) -> APIRouter:
    """Create the /mcp router with injected dependencies.

    Args:
        manager: Owns the live sessions requests are routed to.
        bearer_auth: Dependency that verifies the gateway access token.
    """
    router = APIRouter(tags=["mcp"])

    @router.post("/mcp")
    async def mcp_post(
        request: Request,
        auth: AuthInfo = Depends(bearer_auth),
        mcp_session_id: Optional[str] = Header(default=None),
    ) -> Response:
        body = await request.body()
        forward = await manager.route_post(mcp_session_id, body)
        return TransportResponse(forward)

    @router.get("/mcp")
    async def mcp_get(
        auth: AuthInfo = Depends(bearer_auth),
        mcp_session_id: Optional[str] = Header(default=None),
    ) -> Response:
        return TransportResponse(manager.route_get(mcp_session_id))

    @router.delete("/mcp", status_code=status.HTTP_204_NO_CONTENT)
    async def mcp_delete(
        auth: AuthInfo = Depends(bearer_auth),
        mcp_session_id: Optional[str] = Header(default=None),
    ) -> Response:
        await manager.terminate(mcp_session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return router
