"""Alarm persistence — durable reads and mark-read writes.

Learn: AlarmService is the per-session SQL layer (one AsyncSession, used
by API routes). SqlAlarmRepository wraps it for long-lived consumers such
as RealtimeAlarmStore: each call opens its own short session and returns
plain AlarmRecord values instead of ORM rows.

Mark-read writes use UPDATE ... RETURNING so the caller gets the exact
rows that changed — those are what gets broadcast afterwards.
"""

from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitewatch.db.models import Alarm, Site
from sitewatch.schemas.alarm import AlarmRecord


class AlarmNotFoundError(Exception):
    """Raised when an alarm is not found."""


class AlarmService:
    """SQL operations on the alarm table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Reads ────────────────────────────────────────────

    async def list_alarms(
        self,
        site_id: Optional[int] = None,
        *,
        unread_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[Alarm]:
        """Alarms newest-created first, optionally for one site."""
        q = select(Alarm).order_by(Alarm.created_at.desc(), Alarm.id.desc())
        if site_id is not None:
            q = q.where(Alarm.site_id == site_id)
        if unread_only:
            q = q.where(Alarm.is_read.is_(False))
        if limit:
            q = q.limit(limit)

        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def get_alarm(self, alarm_id: int) -> Optional[Alarm]:
        return await self.db.get(Alarm, alarm_id)

    async def count_unread(self, site_id: Optional[int] = None) -> int:
        """Count-only query — no rows are loaded."""
        q = select(func.count()).select_from(Alarm).where(Alarm.is_read.is_(False))
        if site_id is not None:
            q = q.where(Alarm.site_id == site_id)
        result = await self.db.execute(q)
        return result.scalar_one()

    async def first_site_id(self) -> Optional[int]:
        result = await self.db.execute(select(Site.id).order_by(Site.id).limit(1))
        return result.scalar_one_or_none()

    # ─── Writes ───────────────────────────────────────────

    async def mark_read(self, alarm_id: int) -> Alarm:
        """Set is_read/read_at on one alarm. Returns the updated row."""
        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(Alarm)
            .where(Alarm.id == alarm_id)
            .values(is_read=True, read_at=now, updated_at=now)
            .returning(Alarm)
        )
        alarm = result.scalar_one_or_none()
        if alarm is None:
            await self.db.rollback()
            raise AlarmNotFoundError(f"Alarm {alarm_id} not found")

        await self.db.commit()
        return alarm

    async def mark_all_read(self, site_id: Optional[int] = None) -> list[Alarm]:
        """Mark every unread alarm (in one site, or everywhere) as read.

        Learn: One bulk UPDATE. Rows that are already read don't match the
        WHERE clause, so a second call changes nothing and returns [].
        """
        now = datetime.now(timezone.utc)
        q = (
            update(Alarm)
            .where(Alarm.is_read.is_(False))
            .values(is_read=True, read_at=now, updated_at=now)
            .returning(Alarm)
        )
        if site_id is not None:
            q = q.where(Alarm.site_id == site_id)

        result = await self.db.execute(q)
        alarms = list(result.scalars().all())
        await self.db.commit()
        return alarms

    async def create_alarm(
        self,
        *,
        site_id: int,
        bridge_id: int,
        camera_id: int,
        alarm_type: str,
        alarm_name: str,
        snapshot_urls: Optional[list[str]] = None,
    ) -> Alarm:
        now = datetime.now(timezone.utc)
        alarm = Alarm(
            site_id=site_id,
            bridge_id=bridge_id,
            camera_id=camera_id,
            alarm_type=alarm_type,
            alarm_name=alarm_name,
            is_read=False,
            last_alarm_at=now,
            snapshot_urls=snapshot_urls,
        )
        self.db.add(alarm)
        await self.db.commit()
        await self.db.refresh(alarm)
        return alarm


# ─── Repository for long-lived consumers ────────────────


class AlarmRepository(Protocol):
    """Durable alarm storage as the realtime store sees it."""

    async def fetch_alarms(self, site_id: Optional[int]) -> list[AlarmRecord]: ...

    async def mark_read(self, alarm_id: int) -> AlarmRecord: ...

    async def mark_all_read(self, site_id: Optional[int]) -> list[AlarmRecord]: ...


class SqlAlarmRepository:
    """AlarmRepository over PostgreSQL, one session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def fetch_alarms(self, site_id: Optional[int]) -> list[AlarmRecord]:
        async with self._session_factory() as db:
            rows = await AlarmService(db).list_alarms(site_id)
            return [AlarmRecord.model_validate(row) for row in rows]

    async def mark_read(self, alarm_id: int) -> AlarmRecord:
        async with self._session_factory() as db:
            row = await AlarmService(db).mark_read(alarm_id)
            return AlarmRecord.model_validate(row)

    async def mark_all_read(self, site_id: Optional[int]) -> list[AlarmRecord]:
        async with self._session_factory() as db:
            rows = await AlarmService(db).mark_all_read(site_id)
            return [AlarmRecord.model_validate(row) for row in rows]
