"""Shared test doubles and builders (not fixtures — those live in conftest)."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sitewatch.realtime.channels import bridge_channel
from sitewatch.realtime.memory import MemoryTransport
from sitewatch.schemas.alarm import AlarmRecord
from sitewatch.services.alarm_service import AlarmNotFoundError

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_alarm(alarm_id: int, site_id: int = 7, *, read: bool = False, **overrides) -> AlarmRecord:
    """Alarm row; higher ids are newer."""
    created = BASE_TIME + timedelta(minutes=alarm_id)
    fields = dict(
        id=alarm_id,
        site_id=site_id,
        bridge_id=1,
        camera_id=1,
        alarm_type="motion",
        alarm_name=f"Alarm {alarm_id}",
        is_read=read,
        read_at=created if read else None,
        created_at=created,
        updated_at=created,
    )
    fields.update(overrides)
    return AlarmRecord(**fields)


class InMemoryAlarmRepository:
    """AlarmRepository over a dict. Set `fail` to make every call raise."""

    def __init__(self, alarms: Optional[list[AlarmRecord]] = None):
        self.rows: dict[int, AlarmRecord] = {a.id: a for a in alarms or []}
        self.fail = False
        self.fetches = 0
        self.writes = 0

    def _check(self) -> None:
        if self.fail:
            raise RuntimeError("database unavailable")

    async def fetch_alarms(self, site_id: Optional[int]) -> list[AlarmRecord]:
        self._check()
        self.fetches += 1
        rows = [a for a in self.rows.values() if site_id is None or a.site_id == site_id]
        return sorted(rows, key=lambda a: (a.created_at, a.id), reverse=True)

    async def mark_read(self, alarm_id: int) -> AlarmRecord:
        self._check()
        if alarm_id not in self.rows:
            raise AlarmNotFoundError(f"Alarm {alarm_id} not found")
        self.writes += 1
        now = datetime.now(timezone.utc)
        self.rows[alarm_id] = self.rows[alarm_id].model_copy(
            update={"is_read": True, "read_at": now, "updated_at": now}
        )
        return self.rows[alarm_id]

    async def mark_all_read(self, site_id: Optional[int]) -> list[AlarmRecord]:
        self._check()
        self.writes += 1
        changed = [
            a.id for a in self.rows.values()
            if not a.is_read and (site_id is None or a.site_id == site_id)
        ]
        return [await self.mark_read(alarm_id) for alarm_id in changed]


def published_pairs(transport: MemoryTransport) -> list[tuple[str, str]]:
    """(channel, event) for everything published so far, in order."""
    return [(channel, event) for channel, event, _ in transport.published]


class FakeBridge:
    """Listens on bridge-{id} and answers each request with a response row."""

    def __init__(self, transport, bridge_id: int, *, delay: float = 0.0, reply: Optional[dict] = None):
        self.transport = transport
        self.bridge_id = bridge_id
        self.delay = delay
        self.reply = reply
        self.requests: list[dict[str, Any]] = []
        self.channel = transport.channel(bridge_channel(bridge_id))
        self.channel.on_broadcast("*", self._on_request)

    async def start(self):
        await self.channel.subscribe()
        return self

    def _on_request(self, message):
        if not isinstance(message.payload, dict):
            return
        self.requests.append({"event": message.event, **message.payload})
        body = self.reply or {"success": True, "data": {"bridge": self.bridge_id}}
        row = {
            "id": len(self.requests),
            "bridge_id": self.bridge_id,
            "request_id": message.payload["request_id"],
            "requester_id": message.payload["requester_id"],
            "request_path": message.payload["path"],
            "response_body": body,
        }
        emit = lambda: self.transport.emit_row_change("response", "INSERT", new=row)
        if self.delay:
            asyncio.get_running_loop().call_later(self.delay, emit)
        else:
            emit()
