"""Redis/PostgreSQL transport — wire format and row-change routing.

No Redis or PostgreSQL needed: the Redis client is an AsyncMock and row
changes are fed straight into the LISTEN callback.
"""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from sitewatch.config import Settings
from sitewatch.realtime.memory import MemoryTransport
from sitewatch.realtime.pubsub import RedisTransport, asyncpg_dsn, create_transport
from sitewatch.realtime.transport import ChannelState, TransportError


def test_asyncpg_dsn():
    assert asyncpg_dsn("postgresql+asyncpg://u:p@db:5432/sw") == "postgresql://u:p@db:5432/sw"
    assert asyncpg_dsn("postgresql://u:p@db/sw") == "postgresql://u:p@db/sw"


def test_create_transport_follows_settings():
    assert isinstance(create_transport(Settings(transport="memory")), MemoryTransport)

    redis_transport = create_transport(
        Settings(transport="redis", redis_url="redis://cache:6379/1", row_change_channel="rc")
    )
    assert isinstance(redis_transport, RedisTransport)
    assert redis_transport.redis_url == "redis://cache:6379/1"
    assert redis_transport.row_change_channel == "rc"


@pytest.mark.asyncio
async def test_publish_wire_format():
    transport = RedisTransport("redis://unused")
    transport._redis = AsyncMock()

    await transport.publish("alarm-site-7", "alarm-delete", {"id": 3})
    transport._redis.publish.assert_awaited_once_with(
        "alarm-site-7", json.dumps({"event": "alarm-delete", "payload": {"id": 3}})
    )


@pytest.mark.asyncio
async def test_publish_errors_become_transport_errors():
    transport = RedisTransport("redis://unused")
    transport._redis = AsyncMock()
    transport._redis.publish.side_effect = RedisError("connection reset")

    with pytest.raises(TransportError):
        await transport.publish("alarm-global", "alarm-insert", {"id": 1})


@pytest.mark.asyncio
async def test_publish_before_start_raises():
    with pytest.raises(TransportError):
        await RedisTransport("redis://unused").publish("alarm-global", "alarm-insert", {})


@pytest.mark.asyncio
async def test_ping_false_when_not_connected():
    assert await RedisTransport("redis://unused").ping() is False


@pytest.mark.asyncio
async def test_row_change_channel_needs_listener():
    transport = RedisTransport("redis://unused")
    channel = transport.channel("response-abc")
    channel.on_row_change("response", lambda change: None, filter={"request_id": "abc"})

    assert await channel.subscribe() is ChannelState.ERROR
    assert "Row-change" in channel.error


@pytest.mark.asyncio
async def test_notify_payload_routed_to_row_channels():
    transport = RedisTransport("redis://unused")
    received = []

    # Any subscribed Channel works as a routing target
    target = MemoryTransport().channel("response-abc")
    target.on_row_change("response", received.append, filter={"request_id": "abc"})
    await target.subscribe()
    transport._attach(target)

    payload = json.dumps({
        "table": "response",
        "operation": "INSERT",
        "new": {"request_id": "abc", "response_body": {"success": True}},
        "old": None,
    })
    transport._on_row_change(None, 1234, "row_changes", payload)
    transport._on_row_change(None, 1234, "row_changes", "{not json")

    assert len(received) == 1
    assert received[0].new["request_id"] == "abc"

    transport._detach(target)
    transport._on_row_change(None, 1234, "row_changes", payload)
    assert len(received) == 1
