"""Alarm API routes.

Learn: Reads come straight from PostgreSQL (or, for unread counts, from
the GlobalAlarmCache kept live by broadcasts). Mark-read writes go
through the hub's global RealtimeAlarmStore, which writes first, applies
the confirmed rows to the cache, then broadcasts them so every other
subscribed store converges.

A failed broadcast after a successful write is logged, not returned as
an error. The write already happened and can't be rolled back.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from sitewatch.api.deps import alarm_service, hub_dependency
from sitewatch.realtime.hub import RealtimeHub
from sitewatch.schemas.alarm import (
    AlarmRecord,
    MarkAllReadResult,
    SyntheticAlarmCreate,
    UnreadCounts,
)
from sitewatch.schemas.events import UserActivity
from sitewatch.services.alarm_service import AlarmNotFoundError, AlarmService
from sitewatch.services.broadcaster import BroadcastError

logger = structlog.get_logger()
router = APIRouter()


# ═══════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════


@router.get("/alarms", response_model=list[AlarmRecord])
async def list_alarms(
    site_id: Optional[int] = Query(None, description="Filter by site"),
    unread_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    svc: AlarmService = Depends(alarm_service),
):
    """Alarms newest first, optionally for one site."""
    return await svc.list_alarms(site_id, unread_only=unread_only, limit=limit)


@router.get("/alarms/unread-counts", response_model=UnreadCounts)
async def unread_counts(hub: RealtimeHub = Depends(hub_dependency)):
    """Per-site unread counts from the live global cache."""
    cache = hub.alarm_cache
    return UnreadCounts(counts=cache.unread_counts(), total=cache.total_unread())


@router.get("/sites/{site_id}/alarms/unread-count")
async def site_unread_count(
    site_id: int,
    svc: AlarmService = Depends(alarm_service),
):
    """Count-only query against PostgreSQL."""
    return {"site_id": site_id, "unread": await svc.count_unread(site_id)}


# ═══════════════════════════════════════════════════════════
# Mark as read
# ═══════════════════════════════════════════════════════════


@router.post("/alarms/{alarm_id}/read", response_model=AlarmRecord)
async def mark_alarm_read(
    alarm_id: int,
    hub: RealtimeHub = Depends(hub_dependency),
):
    """Mark one alarm read through the global alarm store."""
    try:
        record = await hub.alarms.mark_as_read(alarm_id)
    except AlarmNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if record is None:
        raise HTTPException(status_code=503, detail="Failed to mark alarm as read")
    return record


@router.post("/alarms/read-all", response_model=MarkAllReadResult)
async def mark_all_alarms_read(
    site_id: Optional[int] = Query(None, description="Limit to one site"),
    hub: RealtimeHub = Depends(hub_dependency),
):
    """Mark every unread alarm read. A second call updates nothing."""
    records = await hub.alarms.mark_all_as_read(site_id)
    if records is None:
        raise HTTPException(status_code=503, detail="Failed to mark alarms as read")
    return MarkAllReadResult(updated=len(records), alarm_ids=[r.id for r in records])


# ═══════════════════════════════════════════════════════════
# Synthetic alarms (test harness)
# ═══════════════════════════════════════════════════════════


@router.post("/alarms/test", response_model=AlarmRecord, status_code=201)
async def create_test_alarm(
    body: SyntheticAlarmCreate,
    svc: AlarmService = Depends(alarm_service),
    hub: RealtimeHub = Depends(hub_dependency),
):
    """Insert an alarm, broadcast it, and record who raised it.

    Learn: Exercises the whole fanout — alarm stores get alarm-insert,
    notifiers get new-alarm, and the activity feed gets create_alarm.
    """
    site_id = body.site_id
    if site_id is None:
        site_id = await svc.first_site_id()
        if site_id is None:
            raise HTTPException(status_code=404, detail="No sites found")

    name = body.alarm_name or (
        f"Test Alarm {datetime.now(timezone.utc).strftime('%H:%M:%S')}"
    )
    alarm = await svc.create_alarm(
        site_id=site_id,
        bridge_id=body.bridge_id,
        camera_id=body.camera_id,
        alarm_type=body.alarm_type,
        alarm_name=name,
    )
    record = AlarmRecord.model_validate(alarm)

    try:
        await hub.broadcaster.alarm_inserted(record)
        await hub.broadcaster.user_activity(
            UserActivity(
                user_id=hub.bridges.requester_id,
                action="create_alarm",
                target=str(record.id),
                metadata={"site_id": site_id, "alarm_type": record.alarm_type},
            )
        )
    except BroadcastError as e:
        logger.warning("alarms.test_broadcast_failed", alarm_id=record.id, failed=e.failed)

    return record
