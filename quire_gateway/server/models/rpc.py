"""JSON-RPC wire models."""
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field


class JsonRpcErrorDetail(BaseModel):
    code: Annotated[int, Field()]
    message: Annotated[str, Field()]


class JsonRpcErrorResponse(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    error: Annotated[JsonRpcErrorDetail, Field()]
    id: Optional[Union[str, int]] = None


def rpc_error_body(code: int, message: str) -> dict:
    """Envelope for errors raised before any request id is known."""
    return JsonRpcErrorResponse(error=JsonRpcErrorDetail(code=code, message=message)).model_dump()
