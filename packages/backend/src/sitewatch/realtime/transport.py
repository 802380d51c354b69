"""Channel transport — the publish/subscribe contract the core runs on.

Learn: A Channel is one logical subscription to a named topic. Many
independent Channels may share a name; each receives every broadcast sent
to that name while subscribed. Lifecycle:

    PENDING ──subscribe()──→ SUBSCRIBED ──unsubscribe()──→ CLOSED
        └──────────────────→ ERROR

Two kinds of delivery:
1. Broadcasts — ephemeral {event, payload} messages, matched by event tag
2. Row changes — durable-storage INSERT/UPDATE/DELETE, matched by table,
   operation and column-equality filter

Callbacks are plain functions run on the event loop. A failing callback
is logged and never stops delivery to the others.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from sitewatch.events.types import ANY_EVENT, ROW_ANY, ROW_INSERT
from sitewatch.schemas.realtime import BroadcastMessage, RowChange

logger = structlog.get_logger()


class ChannelState(str, Enum):
    PENDING = "pending"
    SUBSCRIBED = "subscribed"
    ERROR = "error"
    CLOSED = "closed"


BroadcastCallback = Callable[[BroadcastMessage], None]
RowChangeCallback = Callable[[RowChange], None]
StateCallback = Callable[[ChannelState, Optional[str]], None]


class TransportError(Exception):
    """Raised when the transport cannot subscribe or publish."""


class ChannelNotSubscribedError(TransportError):
    """Raised on send() before the channel reached SUBSCRIBED."""


def to_wire(payload: Any) -> Any:
    """Convert a payload (models, datetimes, UUIDs) into plain JSON types."""
    return to_jsonable_python(payload)


@dataclass
class RowChangeBinding:
    table: str
    operation: str
    callback: RowChangeCallback
    filter: dict[str, Any] = field(default_factory=dict)

    def matches(self, change: RowChange) -> bool:
        if change.table != self.table:
            return False
        if self.operation != ROW_ANY and change.operation != self.operation:
            return False
        row = change.row or {}
        # Compare as strings: NOTIFY payloads lose the column's Python type
        return all(
            key in row and str(row[key]) == str(value)
            for key, value in self.filter.items()
        )


class Channel(ABC):
    """One subscription to a named topic."""

    def __init__(self, name: str):
        self.name = name
        self.state = ChannelState.PENDING
        self.error: Optional[str] = None
        self._broadcast_bindings: list[tuple[str, BroadcastCallback]] = []
        self._row_bindings: list[RowChangeBinding] = []
        self._state_callbacks: list[StateCallback] = []
        self._released = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.state.value}>"

    @property
    def released(self) -> bool:
        return self._released

    @property
    def wants_row_changes(self) -> bool:
        return bool(self._row_bindings)

    # ─── Registration ─────────────────────────────────────

    def on_broadcast(self, event: str, callback: BroadcastCallback) -> "Channel":
        """Call `callback` for every broadcast tagged `event` ("*" = all)."""
        self._broadcast_bindings.append((event, callback))
        return self

    def on_row_change(
        self,
        table: str,
        callback: RowChangeCallback,
        *,
        operation: str = ROW_INSERT,
        filter: Optional[dict[str, Any]] = None,
    ) -> "Channel":
        """Call `callback` for row changes on `table` matching `filter`."""
        self._row_bindings.append(
            RowChangeBinding(
                table=table,
                operation=operation,
                callback=callback,
                filter=dict(filter or {}),
            )
        )
        return self

    def on_state_change(self, callback: StateCallback) -> "Channel":
        self._state_callbacks.append(callback)
        return self

    # ─── Lifecycle ────────────────────────────────────────

    async def subscribe(self) -> ChannelState:
        """Open the subscription. Returns SUBSCRIBED or ERROR."""
        if self.state is not ChannelState.PENDING:
            return self.state
        try:
            await self._open()
        except TransportError as e:
            logger.warning("realtime.subscribe_failed", channel=self.name, error=str(e))
            self._set_state(ChannelState.ERROR, str(e))
            return self.state

        if not self._released:
            self._set_state(ChannelState.SUBSCRIBED)
        return self.state

    async def send(self, event: str, payload: Any) -> None:
        """Broadcast on this channel. Only valid once SUBSCRIBED."""
        if self.state is not ChannelState.SUBSCRIBED:
            raise ChannelNotSubscribedError(
                f"Channel {self.name} is {self.state.value}, not subscribed"
            )
        await self._publish(event, payload)

    async def unsubscribe(self) -> bool:
        """Release the channel. Returns False if it was already released."""
        if self._released:
            return False
        self._released = True
        self.state = ChannelState.CLOSED
        self._broadcast_bindings.clear()
        self._row_bindings.clear()
        self._state_callbacks.clear()
        await self._close()
        return True

    def fail(self, reason: str) -> None:
        """Move a live channel to ERROR (e.g. connection lost)."""
        if self._released or self.state is ChannelState.ERROR:
            return
        logger.warning("realtime.channel_error", channel=self.name, error=reason)
        self._set_state(ChannelState.ERROR, reason)

    # ─── Delivery (called by transports) ──────────────────

    def deliver_broadcast(self, raw: Any) -> None:
        if self._released or self.state is not ChannelState.SUBSCRIBED:
            return
        try:
            message = BroadcastMessage.model_validate(raw)
        except ValidationError as e:
            logger.warning("realtime.malformed_broadcast", channel=self.name, error=str(e))
            return

        for event, callback in list(self._broadcast_bindings):
            if self._released:
                break
            if event == ANY_EVENT or event == message.event:
                self._invoke(callback, message)

    def deliver_row_change(self, change: RowChange) -> None:
        if self._released or self.state is not ChannelState.SUBSCRIBED:
            return
        for binding in list(self._row_bindings):
            if self._released:
                break
            if binding.matches(change):
                self._invoke(binding.callback, change)

    def _set_state(self, state: ChannelState, reason: Optional[str] = None) -> None:
        self.state = state
        self.error = reason
        for callback in list(self._state_callbacks):
            self._invoke(callback, state, reason)

    def _invoke(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("realtime.callback_failed", channel=self.name)

    # ─── Implementation hooks ─────────────────────────────

    @abstractmethod
    async def _open(self) -> None:
        """Start receiving. Raise TransportError on failure."""

    @abstractmethod
    async def _close(self) -> None:
        """Stop receiving and free resources."""

    @abstractmethod
    async def _publish(self, event: str, payload: Any) -> None:
        """Send one broadcast on this channel's name."""


class Transport(ABC):
    """Factory for channels plus fire-and-forget publishing."""

    @abstractmethod
    def channel(self, name: str) -> Channel:
        """Create a new (PENDING) channel for `name`."""

    @abstractmethod
    async def publish(self, name: str, event: str, payload: Any) -> None:
        """Broadcast to every current subscriber of `name`.

        Acknowledges submission only, not delivery. Raises TransportError.
        """

    async def start(self) -> None:
        """Connect. Default: nothing to do."""

    async def close(self) -> None:
        """Disconnect. Default: nothing to do."""

    async def ping(self) -> bool:
        return True
