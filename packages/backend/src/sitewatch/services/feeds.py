"""Broadcast feeds — bounded recent-history views of shared channels.

- SystemEventFeed: system-events → last N system-event payloads, newest
  first, plus the latest system-status per component
- UserActivityFeed: user-activity → last N user-action payloads plus the
  latest user-presence per user
- AlarmNotifier: notification-global / notification-site-{id} → calls
  handlers for every new-alarm
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from sitewatch.events.types import (
    NEW_ALARM,
    SYSTEM_EVENT,
    SYSTEM_STATUS,
    USER_ACTION,
    USER_PRESENCE,
)
from sitewatch.realtime.channels import SYSTEM_EVENTS, USER_ACTIVITY, notification_channel
from sitewatch.realtime.transport import Channel, ChannelState, Transport
from sitewatch.schemas.alarm import AlarmRecord
from sitewatch.schemas.events import SystemEvent, SystemStatus, UserActivity, UserPresence
from sitewatch.schemas.realtime import BroadcastMessage

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)


class ChannelFeed(ABC):
    """Base: owns one channel subscription."""

    channel_name: str

    def __init__(self, transport: Transport):
        self.transport = transport
        self._channel: Optional[Channel] = None

    @property
    def subscribed(self) -> bool:
        return self._channel is not None and self._channel.state is ChannelState.SUBSCRIBED

    @abstractmethod
    def bind(self, channel: Channel) -> None:
        """Register this feed's callbacks on a fresh channel."""

    async def start(self) -> ChannelState:
        channel = self.transport.channel(self.channel_name)
        self.bind(channel)
        self._channel = channel
        return await channel.subscribe()

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.unsubscribe()
            self._channel = None

    def _parse(self, model: type[M], message: BroadcastMessage) -> Optional[M]:
        try:
            return model.model_validate(message.payload)
        except ValidationError as e:
            logger.warning(
                "feed.malformed_event",
                channel=self.channel_name,
                event=message.event,
                error=str(e),
            )
            return None


class SystemEventFeed(ChannelFeed):
    channel_name = SYSTEM_EVENTS

    def __init__(self, transport: Transport, limit: int = 10):
        super().__init__(transport)
        self._events: deque[SystemEvent] = deque(maxlen=limit)
        self._statuses: dict[str, SystemStatus] = {}

    def bind(self, channel: Channel) -> None:
        channel.on_broadcast(SYSTEM_EVENT, self._on_event)
        channel.on_broadcast(SYSTEM_STATUS, self._on_status)

    @property
    def events(self) -> list[SystemEvent]:
        return list(self._events)

    @property
    def statuses(self) -> dict[str, SystemStatus]:
        return dict(self._statuses)

    def _on_event(self, message: BroadcastMessage) -> None:
        event = self._parse(SystemEvent, message)
        if event is not None:
            self._events.appendleft(event)

    def _on_status(self, message: BroadcastMessage) -> None:
        status = self._parse(SystemStatus, message)
        if status is not None:
            self._statuses[status.component] = status


class UserActivityFeed(ChannelFeed):
    channel_name = USER_ACTIVITY

    def __init__(self, transport: Transport, limit: int = 20):
        super().__init__(transport)
        self._activities: deque[UserActivity] = deque(maxlen=limit)
        self._presence: dict[str, UserPresence] = {}

    def bind(self, channel: Channel) -> None:
        channel.on_broadcast(USER_ACTION, self._on_action)
        channel.on_broadcast(USER_PRESENCE, self._on_presence)

    @property
    def activities(self) -> list[UserActivity]:
        return list(self._activities)

    @property
    def presence(self) -> dict[str, UserPresence]:
        return dict(self._presence)

    def _on_action(self, message: BroadcastMessage) -> None:
        activity = self._parse(UserActivity, message)
        if activity is not None:
            self._activities.appendleft(activity)

    def _on_presence(self, message: BroadcastMessage) -> None:
        presence = self._parse(UserPresence, message)
        if presence is not None:
            self._presence[presence.user_id] = presence


AlarmHandler = Callable[[AlarmRecord], Optional[Awaitable[None]]]


def log_alarm_notification(alarm: AlarmRecord) -> None:
    logger.info(
        "alarm.notification",
        alarm_id=alarm.id,
        site_id=alarm.site_id,
        title=f"{alarm.alarm_name} - {alarm.alarm_type}",
    )


class AlarmNotifier(ChannelFeed):
    """Dispatches new-alarm notifications to handlers.

    Learn: Handlers may be plain functions or coroutine functions; the
    latter are scheduled as tasks so a slow handler can't stall delivery.
    """

    def __init__(
        self,
        transport: Transport,
        site_id: Optional[int] = None,
        handlers: Optional[list[AlarmHandler]] = None,
    ):
        super().__init__(transport)
        self.site_id = site_id
        self.channel_name = notification_channel(site_id)
        self._handlers: list[AlarmHandler] = list(handlers or [log_alarm_notification])
        self._tasks: set[asyncio.Task] = set()
        self.notified = 0

    def add_handler(self, handler: AlarmHandler) -> None:
        self._handlers.append(handler)

    def bind(self, channel: Channel) -> None:
        channel.on_broadcast(NEW_ALARM, self._on_new_alarm)

    def _on_new_alarm(self, message: BroadcastMessage) -> None:
        alarm = self._parse(AlarmRecord, message)
        if alarm is None:
            return
        self.notified += 1
        for handler in list(self._handlers):
            try:
                outcome = handler(alarm)
                if outcome is not None:
                    task = asyncio.ensure_future(outcome)
                    self._tasks.add(task)
                    task.add_done_callback(partial(self._handler_done, alarm.id))
            except Exception:
                logger.exception("alarm_notifier.handler_failed", alarm_id=alarm.id)

    def _handler_done(self, alarm_id: int, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "alarm_notifier.handler_failed",
                alarm_id=alarm_id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def close(self) -> None:
        await super().close()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
