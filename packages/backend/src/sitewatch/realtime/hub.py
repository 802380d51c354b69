"""Realtime hub — the process-wide set of realtime collaborators.

Learn: Built once at startup (main.py lifespan) around a started
Transport, torn down at shutdown. API routes and the WebSocket bridge
reach it through get_hub(), the same way the Redis client used to be a
module-level singleton behind get_redis().

    transport ─┬─ broadcaster      (publish side)
               ├─ bridges          (bridge command client)
               ├─ alarms           (global RealtimeAlarmStore → GlobalAlarmCache)
               ├─ system_events    (system-events feed)
               ├─ user_activity    (user-activity feed)
               └─ notifier         (notification-global → handlers)
"""

from typing import Optional

import structlog

from sitewatch.config import Settings
from sitewatch.realtime.transport import ChannelState, Transport
from sitewatch.services.alarm_cache import GlobalAlarmCache, get_global_alarm_cache
from sitewatch.services.alarm_service import AlarmRepository
from sitewatch.services.alarm_store import RealtimeAlarmStore, StoreState
from sitewatch.services.bridge_client import BridgeCommandClient
from sitewatch.services.broadcaster import EventBroadcaster
from sitewatch.services.feeds import AlarmNotifier, SystemEventFeed, UserActivityFeed

logger = structlog.get_logger()


class RealtimeHub:
    def __init__(
        self,
        transport: Transport,
        repository: AlarmRepository,
        config: Settings,
        *,
        cache: Optional[GlobalAlarmCache] = None,
    ):
        self.transport = transport
        self.broadcaster = EventBroadcaster(transport)
        self.bridges = BridgeCommandClient(
            transport, timeout=config.bridge_request_timeout_seconds
        )
        self.alarm_cache = cache or get_global_alarm_cache()
        self.alarms = RealtimeAlarmStore(
            transport, repository, self.broadcaster, cache=self.alarm_cache
        )
        self.system_events = SystemEventFeed(transport, limit=config.system_event_history)
        self.user_activity = UserActivityFeed(transport, limit=config.user_activity_history)
        self.notifier = AlarmNotifier(transport)

    async def start(self) -> None:
        """Start the global store and the feeds. Failures degrade, never raise."""
        state = await self.alarms.start()
        if state is StoreState.ERROR:
            logger.warning("hub.alarm_store_unavailable", error=self.alarms.error)

        for feed in (self.system_events, self.user_activity, self.notifier):
            if await feed.start() is not ChannelState.SUBSCRIBED:
                logger.warning("hub.feed_unavailable", channel=feed.channel_name)

    async def close(self) -> None:
        await self.notifier.close()
        await self.user_activity.close()
        await self.system_events.close()
        await self.alarms.close()


# Module-level hub (initialized on app startup)
_hub: Optional[RealtimeHub] = None


async def init_hub(
    transport: Transport,
    repository: AlarmRepository,
    config: Settings,
    *,
    cache: Optional[GlobalAlarmCache] = None,
) -> RealtimeHub:
    """Create and start the hub. Called once during app lifespan."""
    global _hub
    hub = RealtimeHub(transport, repository, config, cache=cache)
    await hub.start()
    _hub = hub
    logger.info("hub.started", transport=type(transport).__name__)
    return hub


def get_hub() -> RealtimeHub:
    """Get the running hub. Raises if not initialized."""
    if _hub is None:
        raise RuntimeError("Realtime hub not initialized. Call init_hub() first.")
    return _hub


async def close_hub() -> None:
    """Stop the hub's consumers. Called during shutdown."""
    global _hub
    if _hub:
        await _hub.close()
        _hub = None
