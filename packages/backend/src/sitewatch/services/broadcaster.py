"""Event broadcaster — fan domain events out to their channels.

Learn: Every event type has a fixed set of (channel, event tag) targets
(see realtime/channels.py). An alarm insert, for example, goes to four
channels: the global and per-site alarm channels for stores, and the
global and per-site notification channels for notifiers.

Publishes are independent and run concurrently — there is no atomic
multi-channel publish. If one fails, the others still go out (nothing is
rolled back) and a BroadcastError names the channels that failed.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel

from sitewatch.realtime.channels import (
    SYSTEM_EVENT_TARGETS,
    SYSTEM_STATUS_TARGETS,
    USER_ACTION_TARGETS,
    USER_PRESENCE_TARGETS,
    alarm_delete_targets,
    alarm_insert_targets,
    alarm_update_targets,
)
from sitewatch.realtime.transport import Transport, to_wire
from sitewatch.schemas.alarm import AlarmRecord
from sitewatch.schemas.events import SystemEvent, SystemStatus, UserActivity, UserPresence

logger = structlog.get_logger()


class BroadcastError(Exception):
    """Raised when one or more publishes of a fanout failed."""

    def __init__(self, failed: list[str]):
        self.failed = failed
        super().__init__(f"Broadcast failed on channel(s): {', '.join(failed)}")


def _stamp(model: BaseModel) -> dict[str, Any]:
    """Wire payload with an id and timestamp, keeping any the caller set."""
    payload = to_wire(model)
    if not payload.get("id"):
        payload["id"] = str(uuid.uuid4())
    if not payload.get("timestamp"):
        payload["timestamp"] = datetime.now(timezone.utc).isoformat()
    return payload


class EventBroadcaster:
    """Publishes domain events following the fixed fanout topology."""

    def __init__(self, transport: Transport):
        self.transport = transport

    async def fanout(self, targets: list[tuple[str, str]], payload: Any) -> None:
        """Publish `payload` to every (channel, event) target."""
        wire_payload = to_wire(payload)
        results = await asyncio.gather(
            *(
                self.transport.publish(channel, event, wire_payload)
                for channel, event in targets
            ),
            return_exceptions=True,
        )

        failed = []
        for (channel, event), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(
                    "broadcast.publish_failed",
                    channel=channel,
                    event=event,
                    error=str(result),
                )
                failed.append(channel)
        if failed:
            raise BroadcastError(failed)

    # ─── Alarms ───────────────────────────────────────────

    async def alarm_inserted(self, alarm: AlarmRecord) -> None:
        await self.fanout(alarm_insert_targets(alarm.site_id), alarm)

    async def alarm_updated(self, alarm: AlarmRecord) -> None:
        await self.fanout(alarm_update_targets(alarm.site_id), alarm)

    async def alarm_deleted(self, alarm_id: int, site_id: int) -> None:
        await self.fanout(alarm_delete_targets(site_id), {"id": alarm_id})

    # ─── System ───────────────────────────────────────────

    async def system_event(self, event: SystemEvent) -> dict[str, Any]:
        payload = _stamp(event)
        await self.fanout(SYSTEM_EVENT_TARGETS, payload)
        return payload

    async def system_status(self, status: SystemStatus) -> dict[str, Any]:
        payload = _stamp(status)
        await self.fanout(SYSTEM_STATUS_TARGETS, payload)
        return payload

    # ─── User activity ────────────────────────────────────

    async def user_activity(self, activity: UserActivity) -> dict[str, Any]:
        payload = _stamp(activity)
        await self.fanout(USER_ACTION_TARGETS, payload)
        return payload

    async def user_presence(self, presence: UserPresence) -> dict[str, Any]:
        payload = _stamp(presence)
        await self.fanout(USER_PRESENCE_TARGETS, payload)
        return payload

    # ─── Custom ───────────────────────────────────────────

    async def broadcast(self, channel: str, event: str, payload: Any) -> None:
        await self.fanout([(channel, event)], payload)
