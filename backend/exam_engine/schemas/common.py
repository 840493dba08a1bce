"""
Tagged result envelopes shared by every engine endpoint.
"""
from typing import Any, Dict, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

DataT = TypeVar("DataT")


class EngineResponse(BaseModel, Generic[DataT]):
    """Successful engine result."""

    success: Literal[True] = True
    data: DataT


class ErrorBody(BaseModel):
    """Machine-readable failure description."""

    code: str = Field(..., description="Error code, e.g. SESSION_EXPIRED")
    message: str = Field(..., description="User-facing message")
    details: Optional[Dict[str, Any]] = Field(
        None, description="Extra context such as the session's current status"
    )


class ErrorResponse(BaseModel):
    """Failed engine result."""

    success: Literal[False] = False
    error: ErrorBody
