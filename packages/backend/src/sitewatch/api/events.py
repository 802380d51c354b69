"""System and user-activity event routes.

POST publishes through the broadcaster (which stamps id/timestamp) and
returns the payload as sent. GET reads the hub's bounded feeds.
A publish failure is a 503: nothing reached the channel.
"""

from fastapi import APIRouter, Depends, HTTPException

from sitewatch.api.deps import hub_dependency
from sitewatch.realtime.hub import RealtimeHub
from sitewatch.schemas.events import SystemEvent, SystemStatus, UserActivity, UserPresence
from sitewatch.services.broadcaster import BroadcastError

router = APIRouter()


def _unavailable(e: BroadcastError) -> HTTPException:
    return HTTPException(status_code=503, detail=str(e))


# ─── System ───────────────────────────────────────────


@router.post("/events/system", status_code=202)
async def publish_system_event(body: SystemEvent, hub: RealtimeHub = Depends(hub_dependency)):
    try:
        return await hub.broadcaster.system_event(body)
    except BroadcastError as e:
        raise _unavailable(e)


@router.post("/events/system-status", status_code=202)
async def publish_system_status(body: SystemStatus, hub: RealtimeHub = Depends(hub_dependency)):
    try:
        return await hub.broadcaster.system_status(body)
    except BroadcastError as e:
        raise _unavailable(e)


@router.get("/events/system")
async def recent_system_events(hub: RealtimeHub = Depends(hub_dependency)):
    """Latest system events (newest first) and per-component status."""
    feed = hub.system_events
    return {
        "events": [e.model_dump(mode="json") for e in feed.events],
        "statuses": {k: v.model_dump(mode="json") for k, v in feed.statuses.items()},
    }


# ─── User activity ────────────────────────────────────


@router.post("/events/user-activity", status_code=202)
async def publish_user_activity(body: UserActivity, hub: RealtimeHub = Depends(hub_dependency)):
    try:
        return await hub.broadcaster.user_activity(body)
    except BroadcastError as e:
        raise _unavailable(e)


@router.post("/events/user-presence", status_code=202)
async def publish_user_presence(body: UserPresence, hub: RealtimeHub = Depends(hub_dependency)):
    try:
        return await hub.broadcaster.user_presence(body)
    except BroadcastError as e:
        raise _unavailable(e)


@router.get("/events/user-activity")
async def recent_user_activity(hub: RealtimeHub = Depends(hub_dependency)):
    feed = hub.user_activity
    return {
        "activities": [a.model_dump(mode="json") for a in feed.activities],
        "presence": {k: v.model_dump(mode="json") for k, v in feed.presence.items()},
    }
