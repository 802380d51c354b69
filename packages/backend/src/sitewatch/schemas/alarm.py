"""Pydantic schemas for alarms.

Learn: AlarmRecord is both the API read model and the broadcast payload.
Alarm broadcasts are parsed through a discriminated union keyed on the
event tag, so an alarm-delete must carry {id} and an insert/update must
carry a full row — anything else is rejected at the boundary.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator


class AlarmRecord(BaseModel):
    """Full alarm row."""
    id: int
    site_id: int
    bridge_id: Optional[int] = None
    camera_id: Optional[int] = None
    alarm_type: str = ""
    alarm_name: str = ""
    is_read: bool = False
    read_at: Optional[datetime] = None
    last_alarm_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    snapshot_urls: Optional[list[str]] = None

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_read_state(self):
        """read_at is set exactly when the alarm is read."""
        if self.is_read != (self.read_at is not None):
            raise ValueError("read_at must be set if and only if is_read is true")
        return self


class AlarmDeleted(BaseModel):
    id: int


# ─── Broadcast events (tagged union) ────────────────────


class AlarmInsertEvent(BaseModel):
    event: Literal["alarm-insert"]
    payload: AlarmRecord


class AlarmUpdateEvent(BaseModel):
    event: Literal["alarm-update"]
    payload: AlarmRecord


class AlarmDeleteEvent(BaseModel):
    event: Literal["alarm-delete"]
    payload: AlarmDeleted


AlarmEvent = Annotated[
    Union[AlarmInsertEvent, AlarmUpdateEvent, AlarmDeleteEvent],
    Field(discriminator="event"),
]

_alarm_event_adapter = TypeAdapter(AlarmEvent)


def parse_alarm_event(event: str, payload: Any) -> AlarmEvent:
    """Validate a raw alarm broadcast. Raises pydantic.ValidationError."""
    return _alarm_event_adapter.validate_python({"event": event, "payload": payload})


# ─── API bodies ─────────────────────────────────────────


class SyntheticAlarmCreate(BaseModel):
    """Create a synthetic alarm (test harness)."""
    site_id: Optional[int] = Field(None, description="Site ID (None = first site)")
    bridge_id: int = 1
    camera_id: int = 1
    alarm_type: str = "motion"
    alarm_name: Optional[str] = Field(
        None, description="Display name (defaults to 'Test Alarm <time>')"
    )


class UnreadCounts(BaseModel):
    counts: dict[int, int]
    total: int


class MarkAllReadResult(BaseModel):
    updated: int
    alarm_ids: list[int]
