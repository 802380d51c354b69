"""Realtime alarm store — a live, locally reconciled view of alarms.

Learn: One store per consumer, scoped to a site or global (site_id=None):

    LOADING ──fetch ok──→ READY ──close()──→ CLOSED
        └────fetch failed──→ ERROR

1. start() bulk-fetches alarms newest first, then subscribes to
   alarm-site-{id} (or alarm-global)
2. Broadcasts are applied locally in arrival order, no re-fetch:
   alarm-insert → prepend, alarm-update → replace by id,
   alarm-delete → remove by id
3. mark_as_read / mark_all_as_read write to storage first, apply the
   confirmed rows locally, then broadcast alarm-update so every other
   subscriber converges without writing itself

The global store also mirrors every mutation into the process-wide
GlobalAlarmCache. A write failure is logged and aborts the operation:
nothing changes locally and nothing is broadcast.

Gap: broadcasts missed while disconnected are not replayed. Call
refresh() after a reconnect to re-fetch.
"""

from enum import Enum
from typing import Optional

import structlog
from pydantic import ValidationError

from sitewatch.events.types import ALARM_DELETE, ALARM_INSERT, ALARM_UPDATE
from sitewatch.realtime.channels import alarm_channel
from sitewatch.realtime.transport import Channel, ChannelState, Transport
from sitewatch.schemas.alarm import (
    AlarmDeleteEvent,
    AlarmEvent,
    AlarmInsertEvent,
    AlarmRecord,
    parse_alarm_event,
)
from sitewatch.schemas.realtime import BroadcastMessage
from sitewatch.services.alarm_cache import (
    GlobalAlarmCache,
    get_global_alarm_cache,
    prepend_alarm,
    remove_alarm,
    replace_alarm,
)
from sitewatch.services.alarm_service import AlarmNotFoundError, AlarmRepository
from sitewatch.services.broadcaster import BroadcastError, EventBroadcaster

logger = structlog.get_logger()


class StoreState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


class RealtimeAlarmStore:
    """Alarm collection for one site (or all sites) kept live by broadcasts."""

    def __init__(
        self,
        transport: Transport,
        repository: AlarmRepository,
        broadcaster: EventBroadcaster,
        *,
        site_id: Optional[int] = None,
        cache: Optional[GlobalAlarmCache] = None,
    ):
        self.transport = transport
        self.repository = repository
        self.broadcaster = broadcaster
        self.site_id = site_id
        self.state = StoreState.LOADING
        self.error: Optional[str] = None
        self._alarms: list[AlarmRecord] = []
        self._channel: Optional[Channel] = None
        self._cache: Optional[GlobalAlarmCache] = None
        if site_id is None:
            self._cache = cache or get_global_alarm_cache()
        self._log = logger.bind(site_id=site_id)

    # ─── Views ────────────────────────────────────────────

    @property
    def is_global(self) -> bool:
        return self.site_id is None

    @property
    def channel_name(self) -> str:
        return alarm_channel(self.site_id)

    @property
    def alarms(self) -> list[AlarmRecord]:
        return list(self._alarms)

    @property
    def unread_count(self) -> int:
        """Always recomputed from the collection."""
        return sum(1 for alarm in self._alarms if not alarm.is_read)

    def get(self, alarm_id: int) -> Optional[AlarmRecord]:
        return next((a for a in self._alarms if a.id == alarm_id), None)

    # ─── Lifecycle ────────────────────────────────────────

    async def start(self) -> StoreState:
        """Initial fetch, then subscribe. Returns READY or ERROR."""
        self.state = StoreState.LOADING
        try:
            alarms = await self.repository.fetch_alarms(self.site_id)
        except Exception as e:
            self._log.exception("alarm_store.fetch_failed")
            self.state = StoreState.ERROR
            self.error = str(e) or "Failed to fetch alarms"
            return self.state

        self._load(alarms)
        self.state = StoreState.READY
        self.error = None

        channel = self.transport.channel(self.channel_name)
        channel.on_broadcast(ALARM_INSERT, self._on_broadcast)
        channel.on_broadcast(ALARM_UPDATE, self._on_broadcast)
        channel.on_broadcast(ALARM_DELETE, self._on_broadcast)
        self._channel = channel
        if await channel.subscribe() is not ChannelState.SUBSCRIBED:
            # Still READY with the fetched data; it just won't update live
            self._log.warning("alarm_store.subscribe_failed", error=channel.error)
        else:
            self._log.info("alarm_store.ready", alarms=len(self._alarms))
        return self.state

    async def refresh(self) -> StoreState:
        """Re-fetch the collection (e.g. after a reconnect)."""
        try:
            alarms = await self.repository.fetch_alarms(self.site_id)
        except Exception:
            self._log.exception("alarm_store.refresh_failed")
            return self.state
        self._load(alarms)
        return self.state

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.unsubscribe()
            self._channel = None
        self.state = StoreState.CLOSED

    # ─── Mutations ────────────────────────────────────────

    async def mark_as_read(self, alarm_id: int) -> Optional[AlarmRecord]:
        """Mark one alarm read. Returns the updated row, or None on failure.

        Raises AlarmNotFoundError when no such alarm exists.
        """
        try:
            updated = await self.repository.mark_read(alarm_id)
        except AlarmNotFoundError:
            raise
        except Exception:
            self._log.exception("alarm_store.mark_read_failed", alarm_id=alarm_id)
            return None

        self._apply_update(updated)
        await self._broadcast_updates([updated])
        return updated

    async def mark_all_as_read(
        self, site_id: Optional[int] = None
    ) -> Optional[list[AlarmRecord]]:
        """Mark every unread alarm in scope read.

        Returns the changed rows ([] when nothing was unread), or None when
        the write failed. The global store accepts `site_id` to narrow the
        write to one site; a site store is always scoped to its own.
        """
        if self.site_id is not None:
            if site_id not in (None, self.site_id):
                raise ValueError(f"Store is scoped to site {self.site_id}, not {site_id}")
            site_id = self.site_id
        try:
            updated = await self.repository.mark_all_read(site_id)
        except Exception:
            self._log.exception("alarm_store.mark_all_read_failed", scope=site_id)
            return None

        for alarm in updated:
            self._apply_update(alarm)
        await self._broadcast_updates(updated)
        return updated

    async def _broadcast_updates(self, alarms: list[AlarmRecord]) -> None:
        for alarm in alarms:
            try:
                await self.broadcaster.alarm_updated(alarm)
            except BroadcastError as e:
                self._log.warning(
                    "alarm_store.broadcast_failed", alarm_id=alarm.id, failed=e.failed
                )

    # ─── Event application ────────────────────────────────

    def apply(self, event: AlarmEvent) -> None:
        """Apply one validated alarm event to the local collection."""
        if isinstance(event, AlarmInsertEvent):
            self._apply_insert(event.payload)
        elif isinstance(event, AlarmDeleteEvent):
            self._apply_delete(event.payload.id)
        else:
            self._apply_update(event.payload)

    def _on_broadcast(self, message: BroadcastMessage) -> None:
        if self.state is not StoreState.READY:
            return
        try:
            event = parse_alarm_event(message.event, message.payload)
        except ValidationError as e:
            self._log.warning(
                "alarm_store.malformed_event", event=message.event, error=str(e)
            )
            return
        self.apply(event)

    def _load(self, alarms: list[AlarmRecord]) -> None:
        self._alarms = list(alarms)
        if self._cache is not None:
            self._cache.replace_all(self._alarms)

    def _apply_insert(self, alarm: AlarmRecord) -> None:
        self._alarms = prepend_alarm(self._alarms, alarm)
        if self._cache is not None:
            self._cache.apply_insert(alarm)

    def _apply_update(self, alarm: AlarmRecord) -> None:
        self._alarms = replace_alarm(self._alarms, alarm)
        if self._cache is not None:
            self._cache.apply_update(alarm)

    def _apply_delete(self, alarm_id: int) -> None:
        self._alarms = remove_alarm(self._alarms, alarm_id)
        if self._cache is not None:
            self._cache.apply_delete(alarm_id)
