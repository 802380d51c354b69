"""Shared route dependencies.

Learn: Routes never call get_hub() directly. Going through a dependency
lets tests swap in a hub over MemoryTransport via app.dependency_overrides,
and turns "realtime not started" into a clean 503 instead of a 500.
"""

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.db.engine import get_db
from sitewatch.realtime.hub import RealtimeHub, get_hub
from sitewatch.services.alarm_service import AlarmService


def hub_dependency() -> RealtimeHub:
    try:
        return get_hub()
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))


def alarm_service(db: AsyncSession = Depends(get_db)) -> AlarmService:
    return AlarmService(db)
