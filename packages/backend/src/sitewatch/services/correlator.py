"""Request correlator — match a bridge's reply to the request that caused it.

Learn: Each request listens on its own channel, response-{request_id},
for the first INSERT into the response table whose request_id matches.
Because the channel name is unique per request, two in-flight requests
can never see each other's replies, and correlators share no state.

The timeout timer starts when the subscription is created (not when the
caller starts awaiting). Whatever ends the wait — reply, timeout, or the
caller giving up — the channel is released exactly once.

Two ways to use it:
    record = await correlator.await_response(request_id)

    pending = await correlator.listen(request_id)   # listening now
    ...send the request...
    record = await pending.result()
"""

import asyncio
from typing import Optional

import structlog
from pydantic import ValidationError

from sitewatch.realtime.channels import response_channel
from sitewatch.realtime.transport import Channel, ChannelState, Transport
from sitewatch.schemas.bridge import ResponseRecord
from sitewatch.schemas.realtime import RowChange

logger = structlog.get_logger()

RESPONSE_TABLE = "response"
RESPONSE_TIMEOUT_SECONDS = 30.0


class ResponseError(Exception):
    """Raised when a response row arrives but can't be read."""


class ResponseTimeoutError(ResponseError):
    """Raised when no response arrives before the timeout."""


class ResponseSubscriptionError(ResponseError):
    """Raised when the response channel can't be subscribed."""


class PendingResponse:
    """One in-flight wait for a correlated response."""

    def __init__(self, request_id: str, channel: Channel, timeout: float):
        self.request_id = request_id
        self._channel = channel
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[ResponseRecord] = self._loop.create_future()
        self._timer = self._loop.call_later(timeout, self._expire)
        self._released = False
        self._release_task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def released(self) -> bool:
        return self._released

    async def result(self) -> ResponseRecord:
        """Wait for the response. Raises ResponseTimeoutError/ResponseError."""
        try:
            return await self._future
        finally:
            await self.release()

    async def release(self) -> None:
        """Stop waiting and free the channel. Safe to call repeatedly."""
        if self._released:
            return
        self._released = True
        self._timer.cancel()
        if not self._future.done():
            self._future.cancel()
        await self._channel.unsubscribe()

    # ─── Completion paths ─────────────────────────────────

    def _on_insert(self, change: RowChange) -> None:
        if self._future.done():
            return
        try:
            record = ResponseRecord.model_validate(change.new)
        except ValidationError as e:
            self._future.set_exception(
                ResponseError(f"Malformed response to request {self.request_id}: {e}")
            )
        else:
            self._future.set_result(record)
        self._schedule_release()

    def _expire(self) -> None:
        if self._future.done():
            return
        logger.warning("correlator.timeout", request_id=self.request_id)
        self._future.set_exception(
            ResponseTimeoutError(f"Timeout waiting for response to request {self.request_id}")
        )
        self._schedule_release()

    def _schedule_release(self) -> None:
        # Row-change callbacks and timers are synchronous; release needs I/O
        if not self._released and self._release_task is None:
            self._release_task = self._loop.create_task(self.release())


class ResponseCorrelator:
    """Creates isolated PendingResponse waits on a transport."""

    def __init__(self, transport: Transport, timeout: float = RESPONSE_TIMEOUT_SECONDS):
        self.transport = transport
        self.timeout = timeout

    async def listen(self, request_id: str) -> PendingResponse:
        """Subscribe for the response to `request_id` and start the timer."""
        channel = self.transport.channel(response_channel(request_id))
        pending = PendingResponse(request_id, channel, self.timeout)
        channel.on_row_change(
            RESPONSE_TABLE,
            pending._on_insert,
            filter={"request_id": request_id},
        )

        state = await channel.subscribe()
        if state is not ChannelState.SUBSCRIBED:
            await pending.release()
            raise ResponseSubscriptionError(
                f"Failed to subscribe to response channel for request {request_id}"
            )
        return pending

    async def await_response(self, request_id: str) -> ResponseRecord:
        pending = await self.listen(request_id)
        return await pending.result()
