"""GET /health endpoint handler."""
from datetime import datetime, timezone
from fastapi import APIRouter, status
from quire_gateway.server.models.responses import HealthResponse
from quire_gateway.sessions.manager import SessionManager


def create_health_router(manager: SessionManager) -> APIRouter:
    """Create health router with injected dependencies."""
    router = APIRouter()

    @router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK, tags=["status"])
    async def health_check() -> HealthResponse:
        """Report liveness and the number of open protocol sessions."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        if manager.closing:
            return HealthResponse(status="shutting_down", sessions=len(manager), timestamp=timestamp,
                                  message="Server is shutting down")
        return HealthResponse(status="healthy", sessions=len(manager), timestamp=timestamp)

    return router
