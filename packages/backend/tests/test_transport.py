"""Channel lifecycle and delivery on the in-memory transport.

Learn: MemoryTransport runs the same Channel base class as Redis, so
these tests pin the behavior every transport shares: state machine,
event-tag matching, row-change filters, exactly-once release.
"""

import pytest

from sitewatch.realtime.memory import MemoryTransport
from sitewatch.realtime.transport import (
    ChannelNotSubscribedError,
    ChannelState,
    TransportError,
)
from sitewatch.services.bridge_client import BridgeCommandClient

from helpers import FakeBridge


@pytest.mark.asyncio
async def test_subscribe_then_receive(memory_transport):
    received = []
    ch = memory_transport.channel("alarm-site-7")
    ch.on_broadcast("alarm-insert", received.append)

    assert ch.state is ChannelState.PENDING
    assert await ch.subscribe() is ChannelState.SUBSCRIBED

    await memory_transport.publish("alarm-site-7", "alarm-insert", {"id": 1})
    assert [m.payload for m in received] == [{"id": 1}]


@pytest.mark.asyncio
async def test_only_matching_event_tags_delivered(memory_transport):
    inserts, everything = [], []
    ch = memory_transport.channel("alarm-global")
    ch.on_broadcast("alarm-insert", inserts.append)
    ch.on_broadcast("*", everything.append)
    await ch.subscribe()

    await memory_transport.publish("alarm-global", "alarm-update", {"id": 1})
    await memory_transport.publish("alarm-global", "alarm-insert", {"id": 2})

    assert [m.event for m in inserts] == ["alarm-insert"]
    assert [m.event for m in everything] == ["alarm-update", "alarm-insert"]


@pytest.mark.asyncio
async def test_independent_subscribers_each_get_a_copy(memory_transport):
    a, b = [], []
    ch_a = memory_transport.channel("system-events")
    ch_b = memory_transport.channel("system-events")
    ch_a.on_broadcast("*", a.append)
    ch_b.on_broadcast("*", b.append)
    await ch_a.subscribe()
    await ch_b.subscribe()

    await memory_transport.publish("system-events", "system-event", {"message": "hi"})
    assert len(a) == len(b) == 1

    await ch_a.unsubscribe()
    await memory_transport.publish("system-events", "system-event", {"message": "again"})
    assert len(a) == 1
    assert len(b) == 2


@pytest.mark.asyncio
async def test_payload_is_plain_json_not_sender_object(memory_transport):
    from sitewatch.schemas.events import SystemStatus

    received = []
    ch = memory_transport.channel("system-events")
    ch.on_broadcast("*", received.append)
    await ch.subscribe()

    status = SystemStatus(component="db", status="online")
    await memory_transport.publish("system-events", "system-status", status)
    assert received[0].payload["component"] == "db"
    assert isinstance(received[0].payload, dict)


@pytest.mark.asyncio
async def test_send_before_subscribe_raises(memory_transport):
    ch = memory_transport.channel("bridge-5")
    with pytest.raises(ChannelNotSubscribedError):
        await ch.send("/api/v1/cameras", {})
    assert memory_transport.published == []


@pytest.mark.asyncio
async def test_unsubscribe_is_exactly_once(memory_transport):
    ch = memory_transport.channel("bridge-5")
    await ch.subscribe()

    assert await ch.unsubscribe() is True
    assert await ch.unsubscribe() is False
    assert ch.state is ChannelState.CLOSED
    assert memory_transport.releases["bridge-5"] == 1
    assert memory_transport.subscriber_count("bridge-5") == 0


@pytest.mark.asyncio
async def test_no_delivery_after_unsubscribe(memory_transport):
    received = []
    ch = memory_transport.channel("alarm-global")
    ch.on_broadcast("*", received.append)
    await ch.subscribe()
    await ch.unsubscribe()

    ch.deliver_broadcast({"event": "alarm-insert", "payload": {"id": 1}})
    assert received == []


@pytest.mark.asyncio
async def test_refused_subscription_goes_to_error(memory_transport):
    states = []
    memory_transport.fail_channel("bridge-9")
    ch = memory_transport.channel("bridge-9")
    ch.on_state_change(lambda state, reason: states.append(state))

    assert await ch.subscribe() is ChannelState.ERROR
    assert ch.error
    assert states == [ChannelState.ERROR]


@pytest.mark.asyncio
async def test_fail_moves_live_channel_to_error(memory_transport):
    seen = []
    ch = memory_transport.channel("bridge-5")
    ch.on_state_change(lambda state, reason: seen.append((state, reason)))
    await ch.subscribe()

    ch.fail("connection lost")
    ch.fail("again")  # already in ERROR

    assert seen == [
        (ChannelState.SUBSCRIBED, None),
        (ChannelState.ERROR, "connection lost"),
    ]


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_others(memory_transport):
    received = []

    def boom(message):
        raise ValueError("handler bug")

    ch = memory_transport.channel("alarm-global")
    ch.on_broadcast("*", boom)
    ch.on_broadcast("*", received.append)
    await ch.subscribe()

    await memory_transport.publish("alarm-global", "alarm-delete", {"id": 3})
    assert len(received) == 1


@pytest.mark.asyncio
async def test_malformed_broadcast_ignored(memory_transport):
    received = []
    ch = memory_transport.channel("alarm-global")
    ch.on_broadcast("*", received.append)
    await ch.subscribe()

    ch.deliver_broadcast({"payload": {"id": 1}})  # no event tag
    ch.deliver_broadcast("not a message")
    assert received == []


@pytest.mark.asyncio
async def test_failed_publish_raises(memory_transport):
    memory_transport.fail_publish("alarm-site-7")
    with pytest.raises(TransportError):
        await memory_transport.publish("alarm-site-7", "alarm-update", {"id": 1})


# ═══════════════════════════════════════════════════════════
# Row changes
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_row_change_filter_matches_column_value(memory_transport):
    received = []
    ch = memory_transport.channel("response-abc")
    ch.on_row_change("response", received.append, filter={"request_id": "abc"})
    await ch.subscribe()

    memory_transport.emit_row_change("response", "INSERT", new={"request_id": "other"})
    memory_transport.emit_row_change("response", "INSERT", new={"request_id": "abc"})

    assert len(received) == 1
    assert received[0].new["request_id"] == "abc"


@pytest.mark.asyncio
async def test_row_change_operation_and_table_must_match(memory_transport):
    received = []
    ch = memory_transport.channel("response-abc")
    ch.on_row_change("response", received.append, filter={"request_id": "abc"})
    await ch.subscribe()

    memory_transport.emit_row_change("response", "UPDATE", new={"request_id": "abc"})
    memory_transport.emit_row_change("alarm", "INSERT", new={"request_id": "abc"})
    assert received == []


@pytest.mark.asyncio
async def test_row_change_filter_compares_as_strings(memory_transport):
    received = []
    ch = memory_transport.channel("alarm-watch")
    ch.on_row_change("alarm", received.append, operation="*", filter={"site_id": 7})
    await ch.subscribe()

    memory_transport.emit_row_change("alarm", "UPDATE", new={"id": 1, "site_id": "7"})
    memory_transport.emit_row_change("alarm", "DELETE", old={"id": 2, "site_id": 7})
    assert [c.operation for c in received] == ["UPDATE", "DELETE"]


# ═══════════════════════════════════════════════════════════
# Long-running process (recording off)
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_unrecorded_transport_keeps_no_history():
    transport = MemoryTransport()
    await FakeBridge(transport, 5).start()
    client = BridgeCommandClient(transport, timeout=0.1, requester_id="client-1")

    for _ in range(50):
        assert (await client.call(5, "/ping")).success

    assert transport.published == []
    assert len(transport.releases) == 0
    # Only the bridge's own subscription is left
    assert list(transport._subscribers) == ["bridge-5"]
