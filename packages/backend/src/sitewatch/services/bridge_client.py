"""Bridge command client — one remote call per invocation.

Learn: A call is a broadcast on the bridge's well-known channel plus a
correlated wait for its reply:

1. Start listening on response-{request_id} (so no reply can be missed)
2. Subscribe to bridge-{bridge_id} and wait for SUBSCRIBED
3. Broadcast {request_id, path, body, requester_id} with event tag = path
4. Resolve with the bridge's response_body

Three things can finish a call: the reply, the correlator's timeout, or
the bridge channel going to ERROR. They race, so the outcome goes into a
ResultCell — the first writer wins and the call settles exactly once.

Failures are values: call() always returns a BridgeResult and never raises.
Callers branch on result.success.
"""

import asyncio
from typing import Any, Generic, Optional, TypeVar

import structlog

from sitewatch.realtime.channels import bridge_channel, new_request_id
from sitewatch.realtime.identity import get_client_id
from sitewatch.realtime.transport import Channel, ChannelState, Transport, TransportError
from sitewatch.schemas.bridge import BridgeRequest, BridgeResult
from sitewatch.services.correlator import (
    RESPONSE_TIMEOUT_SECONDS,
    PendingResponse,
    ResponseCorrelator,
    ResponseError,
)

logger = structlog.get_logger()

T = TypeVar("T")

SUBSCRIBE_FAILED = "Failed to subscribe to bridge channel"


class ResultCell(Generic[T]):
    """Single-assignment result: the first settle() wins, later ones are ignored."""

    def __init__(self) -> None:
        self._future: asyncio.Future[T] = asyncio.get_running_loop().create_future()

    @property
    def settled(self) -> bool:
        return self._future.done()

    def settle(self, value: T) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    async def wait(self) -> T:
        return await self._future


class BridgeCommandClient:
    """Sends commands to bridges and awaits their correlated replies."""

    def __init__(
        self,
        transport: Transport,
        *,
        timeout: float = RESPONSE_TIMEOUT_SECONDS,
        requester_id: Optional[str] = None,
    ):
        self.transport = transport
        self.correlator = ResponseCorrelator(transport, timeout=timeout)
        self._requester_id = requester_id

    @property
    def requester_id(self) -> str:
        return self._requester_id or get_client_id()

    async def call(
        self,
        bridge_id: int,
        path: str,
        body: Optional[dict[str, Any]] = None,
    ) -> BridgeResult:
        """Run one command on a bridge. Never raises."""
        request_id = new_request_id()
        log = logger.bind(bridge_id=bridge_id, request_id=request_id, path=path)
        try:
            result = await self._call(bridge_id, path, body or {}, request_id)
        except Exception as e:
            log.exception("bridge.call_unexpected_error")
            return BridgeResult.failure(f"Unexpected error: {e}")

        if result.success:
            log.info("bridge.call_succeeded")
        else:
            log.warning("bridge.call_failed", error=result.error)
        return result

    async def _call(
        self,
        bridge_id: int,
        path: str,
        body: dict[str, Any],
        request_id: str,
    ) -> BridgeResult:
        cell: ResultCell[BridgeResult] = ResultCell()

        try:
            pending = await self.correlator.listen(request_id)
        except ResponseError as e:
            return BridgeResult.failure(f"Request failed: {e}")

        request = BridgeRequest(
            request_id=request_id,
            path=path,
            body=body,
            requester_id=self.requester_id,
        )

        def on_state(state: ChannelState, reason: Optional[str]) -> None:
            if state is ChannelState.ERROR:
                cell.settle(BridgeResult.failure(SUBSCRIBE_FAILED))

        channel = self.transport.channel(bridge_channel(bridge_id))
        channel.on_state_change(on_state)
        exchange: Optional[asyncio.Task] = None
        try:
            if await channel.subscribe() is ChannelState.SUBSCRIBED:
                exchange = asyncio.create_task(
                    self._exchange(channel, pending, request, cell)
                )
            else:
                cell.settle(BridgeResult.failure(SUBSCRIBE_FAILED))
            return await cell.wait()
        finally:
            if exchange and not exchange.done():
                exchange.cancel()
            await pending.release()
            await channel.unsubscribe()

    async def _exchange(
        self,
        channel: Channel,
        pending: PendingResponse,
        request: BridgeRequest,
        cell: ResultCell[BridgeResult],
    ) -> None:
        """Send the request and settle `cell` with the reply (or the failure)."""
        try:
            await channel.send(request.path, request.model_dump())
            record = await pending.result()
        except (ResponseError, TransportError) as e:
            cell.settle(BridgeResult.failure(f"Request failed: {e}"))
        except Exception as e:
            logger.exception("bridge.exchange_failed", request_id=request.request_id)
            cell.settle(BridgeResult.failure(f"Unexpected error: {e}"))
        else:
            cell.settle(BridgeResult.from_response(record.response_body))
