"""Redis pub/sub + PG LISTEN/NOTIFY — the production channel transport.

Learn: Two sources feed a channel:
1. Broadcasts → Redis PUBLISH/SUBSCRIBE on the exact channel name
   (e.g. "alarm-site-7"), body = JSON {"event": ..., "payload": ...}
2. Row changes → a PostgreSQL trigger calls pg_notify('row_changes', ...)
   and one asyncpg connection LISTENs for every channel in the process

Redis pub/sub is fire-and-forget. If no one is listening, the message is
lost. That's fine for realtime UI state — a consumer that missed events
re-fetches from PostgreSQL.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import asyncpg
import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from sitewatch.config import Settings
from sitewatch.realtime.memory import MemoryTransport
from sitewatch.realtime.transport import Channel, Transport, TransportError, to_wire
from sitewatch.schemas.realtime import RowChange

logger = logging.getLogger("sitewatch.realtime")


def asyncpg_dsn(database_url: str) -> str:
    """Convert a SQLAlchemy URL to a plain asyncpg DSN."""
    return database_url.replace("postgresql+asyncpg://", "postgresql://")


class RedisChannel(Channel):
    """A channel backed by its own Redis pub/sub connection."""

    def __init__(self, name: str, transport: "RedisTransport"):
        super().__init__(name)
        self._transport = transport
        self._pubsub: Optional[aioredis.client.PubSub] = None
        self._listener: Optional[asyncio.Task] = None

    async def _open(self) -> None:
        if self.wants_row_changes and not self._transport.listens_for_row_changes:
            raise TransportError("Row-change notifications are not available")
        try:
            self._pubsub = self._transport.redis.pubsub()
            await self._pubsub.subscribe(self.name)
        except (RedisError, OSError) as e:
            raise TransportError(f"Redis subscribe to {self.name} failed: {e}") from e

        self._listener = asyncio.create_task(self._listen())
        if self.wants_row_changes:
            self._transport._attach(self)

    async def _close(self) -> None:
        self._transport._detach(self)
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
        if self._pubsub:
            try:
                await self._pubsub.unsubscribe(self.name)
                await self._pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.warning("Error closing pub/sub for %s: %s", self.name, e)

    async def _publish(self, event: str, payload: Any) -> None:
        await self._transport.publish(self.name, event, payload)

    async def _listen(self) -> None:
        """Forward Redis messages to this channel's callbacks."""
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    data = json.loads(message["data"])
                except json.JSONDecodeError:
                    logger.warning("Dropping non-JSON message on %s", self.name)
                    continue
                self.deliver_broadcast(data)
        except asyncio.CancelledError:
            pass
        except (RedisError, OSError) as e:
            self.fail(f"Redis connection lost: {e}")


class RedisTransport(Transport):
    """Redis for broadcasts, asyncpg LISTEN for row changes."""

    def __init__(
        self,
        redis_url: str,
        database_url: Optional[str] = None,
        row_change_channel: str = "row_changes",
    ):
        self.redis_url = redis_url
        self.database_url = database_url
        self.row_change_channel = row_change_channel
        self._redis: Optional[aioredis.Redis] = None
        self._pg: Optional[asyncpg.Connection] = None
        self._row_channels: set[Channel] = set()

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise TransportError("Redis not connected. Call start() first.")
        return self._redis

    @property
    def listens_for_row_changes(self) -> bool:
        return self._pg is not None

    async def start(self) -> None:
        self._redis = aioredis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        # Verify connection
        await self._redis.ping()

        if self.database_url:
            self._pg = await asyncpg.connect(asyncpg_dsn(self.database_url))
            await self._pg.add_listener(self.row_change_channel, self._on_row_change)
            logger.info("Listening for row changes on %s", self.row_change_channel)

    async def close(self) -> None:
        for channel in list(self._row_channels):
            await channel.unsubscribe()
        if self._pg:
            await self._pg.close()
            self._pg = None
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except (TransportError, RedisError, OSError):
            return False

    def channel(self, name: str) -> RedisChannel:
        return RedisChannel(name, self)

    async def publish(self, name: str, event: str, payload: Any) -> None:
        body = json.dumps({"event": event, "payload": to_wire(payload)})
        try:
            await self.redis.publish(name, body)
        except (RedisError, OSError) as e:
            raise TransportError(f"Publish to {name} failed: {e}") from e

    # ─── PG LISTEN handler ────────────────────────────────

    def _on_row_change(self, conn, pid, channel, payload):
        """Called by asyncpg for every NOTIFY on the row-change channel.

        Learn: This is a synchronous callback on the event loop — delivery
        to channel callbacks is synchronous too, so no task is spawned.
        """
        try:
            change = RowChange.model_validate_json(payload)
        except ValidationError:
            logger.exception("Malformed row change notification")
            return

        for target in list(self._row_channels):
            target.deliver_row_change(change)

    def _attach(self, channel: Channel) -> None:
        self._row_channels.add(channel)

    def _detach(self, channel: Channel) -> None:
        self._row_channels.discard(channel)


def create_transport(config: Settings) -> Transport:
    """Build the transport selected by SITEWATCH_TRANSPORT."""
    if config.transport == "memory":
        return MemoryTransport()
    return RedisTransport(
        redis_url=config.redis_url,
        database_url=config.database_url,
        row_change_channel=config.row_change_channel,
    )
