"""Channel names and fanout targets.

Learn: Channel names are the wire contract shared with browsers and bridge
devices. Build them only through these helpers so a typo can't silently
split subscribers across two topics.

Each *_targets() function returns the exact (channel, event tag) pairs an
event fans out to.
"""

import re
import uuid

from sitewatch.events.types import (
    ALARM_DELETE,
    ALARM_INSERT,
    ALARM_UPDATE,
    NEW_ALARM,
    SYSTEM_EVENT,
    SYSTEM_STATUS,
    USER_ACTION,
    USER_PRESENCE,
)

ALARM_GLOBAL = "alarm-global"
NOTIFICATION_GLOBAL = "notification-global"
SYSTEM_EVENTS = "system-events"
USER_ACTIVITY = "user-activity"

# Channels a browser may listen to over the WebSocket bridge.
# bridge-* and response-* stay server-side.
_PUBLIC_CHANNEL = re.compile(
    r"^(alarm-global|notification-global|system-events|user-activity"
    r"|alarm-site-\d+|notification-site-\d+)$"
)


def bridge_channel(bridge_id: int) -> str:
    return f"bridge-{bridge_id}"


def response_channel(request_id: str) -> str:
    return f"response-{request_id}"


def alarm_site_channel(site_id: int) -> str:
    return f"alarm-site-{site_id}"


def notification_site_channel(site_id: int) -> str:
    return f"notification-site-{site_id}"


def alarm_channel(site_id: int | None) -> str:
    """Channel an alarm store listens on: per-site, or global when unfiltered."""
    return ALARM_GLOBAL if site_id is None else alarm_site_channel(site_id)


def notification_channel(site_id: int | None) -> str:
    return NOTIFICATION_GLOBAL if site_id is None else notification_site_channel(site_id)


def is_public_channel(name: str) -> bool:
    return bool(_PUBLIC_CHANNEL.match(name))


def new_request_id() -> str:
    return str(uuid.uuid4())


# ─── Fanout topology ─────────────────────────────────────


def alarm_insert_targets(site_id: int) -> list[tuple[str, str]]:
    return [
        (ALARM_GLOBAL, ALARM_INSERT),
        (alarm_site_channel(site_id), ALARM_INSERT),
        (NOTIFICATION_GLOBAL, NEW_ALARM),
        (notification_site_channel(site_id), NEW_ALARM),
    ]


def alarm_update_targets(site_id: int) -> list[tuple[str, str]]:
    return [
        (ALARM_GLOBAL, ALARM_UPDATE),
        (alarm_site_channel(site_id), ALARM_UPDATE),
    ]


def alarm_delete_targets(site_id: int) -> list[tuple[str, str]]:
    return [
        (ALARM_GLOBAL, ALARM_DELETE),
        (alarm_site_channel(site_id), ALARM_DELETE),
    ]


SYSTEM_EVENT_TARGETS = [(SYSTEM_EVENTS, SYSTEM_EVENT)]
SYSTEM_STATUS_TARGETS = [(SYSTEM_EVENTS, SYSTEM_STATUS)]
USER_ACTION_TARGETS = [(USER_ACTIVITY, USER_ACTION)]
USER_PRESENCE_TARGETS = [(USER_ACTIVITY, USER_PRESENCE)]
