"""Response models for operational endpoints."""
from typing import Annotated, Literal, Optional
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: Annotated[Literal["healthy", "shutting_down"], Field()]
    sessions: Annotated[int, Field(ge=0)]
    timestamp: Annotated[str, Field()]
    message: Optional[str] = None
