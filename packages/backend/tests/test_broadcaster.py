"""Event broadcaster — exact fanout targets and partial failure."""

import pytest

from sitewatch.schemas.events import SystemEvent, SystemStatus, UserActivity, UserPresence
from sitewatch.services.broadcaster import BroadcastError
from helpers import make_alarm, published_pairs


@pytest.mark.asyncio
async def test_alarm_insert_reaches_exactly_four_channels(memory_transport, broadcaster):
    await broadcaster.alarm_inserted(make_alarm(42, site_id=7))

    assert sorted(published_pairs(memory_transport)) == sorted([
        ("alarm-global", "alarm-insert"),
        ("alarm-site-7", "alarm-insert"),
        ("notification-global", "new-alarm"),
        ("notification-site-7", "new-alarm"),
    ])
    for _, _, payload in memory_transport.published:
        assert payload["id"] == 42
        assert payload["site_id"] == 7


@pytest.mark.asyncio
async def test_alarm_update_and_delete(memory_transport, broadcaster):
    await broadcaster.alarm_updated(make_alarm(1, site_id=3, read=True))
    await broadcaster.alarm_deleted(1, site_id=3)

    assert published_pairs(memory_transport) == [
        ("alarm-global", "alarm-update"),
        ("alarm-site-3", "alarm-update"),
        ("alarm-global", "alarm-delete"),
        ("alarm-site-3", "alarm-delete"),
    ]
    assert memory_transport.sent_to("alarm-site-3")[-1] == ("alarm-delete", {"id": 1})


@pytest.mark.asyncio
async def test_partial_failure_still_publishes_the_rest(memory_transport, broadcaster):
    memory_transport.fail_publish("alarm-site-7")
    with pytest.raises(BroadcastError) as exc:
        await broadcaster.alarm_inserted(make_alarm(5, site_id=7))

    assert exc.value.failed == ["alarm-site-7"]
    assert "alarm-site-7" in str(exc.value)
    assert sorted(ch for ch, _ in published_pairs(memory_transport)) == [
        "alarm-global", "notification-global", "notification-site-7",
    ]


@pytest.mark.asyncio
async def test_system_event_is_stamped(memory_transport, broadcaster):
    sent = await broadcaster.system_event(
        SystemEvent(type="maintenance", message="DB upgrade at 02:00", severity="medium")
    )

    assert sent["id"]
    assert sent["timestamp"]
    [(event, payload)] = memory_transport.sent_to("system-events")
    assert event == "system-event"
    assert payload == sent


@pytest.mark.asyncio
async def test_caller_supplied_id_is_kept(memory_transport, broadcaster):
    sent = await broadcaster.system_status(
        SystemStatus(id="status-1", component="bridge-gateway", status="offline")
    )
    assert sent["id"] == "status-1"
    assert memory_transport.sent_to("system-events")[0][0] == "system-status"


@pytest.mark.asyncio
async def test_user_activity_and_presence(memory_transport, broadcaster):
    await broadcaster.user_activity(
        UserActivity(user_id="u1", action="view_site", target="7")
    )
    await broadcaster.user_presence(UserPresence(user_id="u1", status="away"))

    assert [e for e, _ in memory_transport.sent_to("user-activity")] == [
        "user-action", "user-presence",
    ]


@pytest.mark.asyncio
async def test_custom_broadcast(memory_transport, broadcaster):
    await broadcaster.broadcast("alarm-site-9", "alarm-delete", {"id": 9})
    assert memory_transport.published == [("alarm-site-9", "alarm-delete", {"id": 9})]
