"""In-process transport — same semantics as Redis, no network.

Learn: Used by the test suite and for running a single SiteWatch process
without Redis (SITEWATCH_TRANSPORT=memory). Payloads are pushed through
to_wire() exactly as they would be JSON-encoded for Redis, so subscribers
see plain dicts/strings, never the sender's objects.

Extra knobs for tests:
- fail_channel(name): subscriptions to `name` go to ERROR
- fail_publish(name): publishes to `name` raise TransportError
- record=True turns on two logs that otherwise stay empty, since a
  long-running process would grow them forever:
  - releases: Counter of unsubscribe() calls per channel name
  - published: every (channel, event, payload) that was sent
"""

from collections import Counter, defaultdict
from typing import Any, Optional

from sitewatch.realtime.transport import Channel, Transport, TransportError, to_wire
from sitewatch.schemas.realtime import RowChange


class MemoryChannel(Channel):
    def __init__(self, name: str, transport: "MemoryTransport"):
        super().__init__(name)
        self._transport = transport

    async def _open(self) -> None:
        if self.name in self._transport.failing_channels:
            raise TransportError(f"Subscription to {self.name} refused")
        self._transport._attach(self)

    async def _close(self) -> None:
        self._transport._detach(self)

    async def _publish(self, event: str, payload: Any) -> None:
        await self._transport.publish(self.name, event, payload)


class MemoryTransport(Transport):
    def __init__(self, *, record: bool = False) -> None:
        self.record = record
        self._subscribers: dict[str, list[MemoryChannel]] = defaultdict(list)
        self.failing_channels: set[str] = set()
        self.failing_publishes: set[str] = set()
        self.releases: Counter[str] = Counter()
        self.published: list[tuple[str, str, Any]] = []

    def channel(self, name: str) -> MemoryChannel:
        return MemoryChannel(name, self)

    async def publish(self, name: str, event: str, payload: Any) -> None:
        if name in self.failing_publishes:
            raise TransportError(f"Publish to {name} failed")
        wire_payload = to_wire(payload)
        if self.record:
            self.published.append((name, event, wire_payload))
        for channel in list(self._subscribers.get(name, ())):
            channel.deliver_broadcast({"event": event, "payload": wire_payload})

    def emit_row_change(
        self,
        table: str,
        operation: str,
        new: Optional[dict[str, Any]] = None,
        old: Optional[dict[str, Any]] = None,
    ) -> None:
        """Simulate a durable-storage change notification."""
        change = RowChange(
            table=table,
            operation=operation,
            new=to_wire(new) if new is not None else None,
            old=to_wire(old) if old is not None else None,
        )
        for channels in list(self._subscribers.values()):
            for channel in list(channels):
                if channel.wants_row_changes:
                    channel.deliver_row_change(change)

    # ─── Test helpers ─────────────────────────────────────

    def fail_channel(self, name: str) -> None:
        self.failing_channels.add(name)

    def fail_publish(self, name: str) -> None:
        self.failing_publishes.add(name)

    def subscriber_count(self, name: str) -> int:
        return len(self._subscribers.get(name, ()))

    def sent_to(self, name: str) -> list[tuple[str, Any]]:
        """(event, payload) pairs published to `name`, in order."""
        return [(event, payload) for ch, event, payload in self.published if ch == name]

    # ─── Subscription bookkeeping ─────────────────────────

    def _attach(self, channel: MemoryChannel) -> None:
        self._subscribers[channel.name].append(channel)

    def _detach(self, channel: MemoryChannel) -> None:
        if self.record:
            self.releases[channel.name] += 1
        subscribers = self._subscribers.get(channel.name)
        if subscribers and channel in subscribers:
            subscribers.remove(channel)
            if not subscribers:
                del self._subscribers[channel.name]
