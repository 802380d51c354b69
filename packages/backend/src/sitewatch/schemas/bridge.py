"""Pydantic schemas for bridge commands.

Flow:
- BridgeRequest: broadcast on bridge-{id}, event tag = path
- ResponseRecord: row the bridge inserts into the response table
- BridgeResult: what a caller gets back — always a value, never an exception
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

DEFAULT_FAILURE = "Request failed"


class BridgeRequest(BaseModel):
    request_id: str
    path: str
    body: dict[str, Any] = Field(default_factory=dict)
    requester_id: str


class BridgeResponseBody(BaseModel):
    success: bool = False
    data: Any = None
    error: Optional[str] = None

    model_config = {"extra": "allow"}


class ResponseRecord(BaseModel):
    """Row of the durable response table."""
    id: Optional[int] = None
    bridge_id: Optional[int] = None
    request_id: str
    requester_id: Optional[str] = None
    request_path: Optional[str] = None
    response_body: BridgeResponseBody
    created_at: Optional[datetime] = None


class BridgeResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "BridgeResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str) -> "BridgeResult":
        return cls(success=False, error=error)

    @classmethod
    def from_response(cls, body: BridgeResponseBody) -> "BridgeResult":
        if body.success:
            return cls.ok(body.data)
        return cls.failure(body.error or DEFAULT_FAILURE)


# ─── API body ───────────────────────────────────────────


class BridgeCommandCreate(BaseModel):
    """Send a command to a bridge."""
    path: str = Field(..., min_length=1, description="Command path, e.g. /api/v1/cameras")
    body: dict[str, Any] = Field(default_factory=dict)
