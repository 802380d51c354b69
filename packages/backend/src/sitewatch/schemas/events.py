"""Pydantic schemas for system and user-activity broadcasts.

Learn: id and timestamp are optional on input — the broadcaster stamps
them at broadcast time when the caller didn't. Anything read back from a
channel therefore has both.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class SystemEvent(BaseModel):
    id: Optional[str] = None
    type: Literal["status_change", "maintenance", "alert", "info"]
    message: str
    severity: Literal["low", "medium", "high", "critical"] = "low"
    timestamp: Optional[datetime] = None


class SystemStatus(BaseModel):
    id: Optional[str] = None
    component: str
    status: Literal["online", "offline", "maintenance", "error"]
    message: Optional[str] = None
    timestamp: Optional[datetime] = None


class UserActivity(BaseModel):
    id: Optional[str] = None
    user_id: str
    action: Literal[
        "login", "logout", "view_site", "edit_site", "create_alarm", "mark_read"
    ]
    target: str = Field(..., description="site id, alarm id, etc.")
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


class UserPresence(BaseModel):
    id: Optional[str] = None
    user_id: str
    status: Literal["online", "offline", "away"]
    last_seen: Optional[datetime] = None
    timestamp: Optional[datetime] = None
