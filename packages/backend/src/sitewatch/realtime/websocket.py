"""WebSocket endpoint — realtime channel delivery to browser clients.

Learn: Each client connects to /ws/{channel} (e.g. /ws/alarm-site-7). The
handler:
1. Rejects anything that isn't a public channel (bridge-* and response-*
   never leave the server)
2. Subscribes a transport Channel to every event tag on that name
3. Forwards each broadcast as JSON {"event": ..., "payload": ...}
4. Answers {"type": "ping"} with {"type": "pong"}

Channel callbacks are synchronous, so they hand messages to a bounded
ClientQueue and a sender task does the awaiting. A client that falls
SEND_QUEUE_SIZE messages behind is disconnected with code 4008.
"""

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from sitewatch.events.types import ANY_EVENT
from sitewatch.realtime.channels import is_public_channel
from sitewatch.realtime.hub import get_hub
from sitewatch.realtime.transport import ChannelState
from sitewatch.schemas.realtime import BroadcastMessage

logger = structlog.get_logger()
router = APIRouter()

SEND_QUEUE_SIZE = 256
SLOW_CLIENT_CLOSE_CODE = 4008


class ClientQueue:
    """Per-connection send buffer. Overflow marks the client as too slow."""

    def __init__(self, maxsize: int = SEND_QUEUE_SIZE):
        self._queue: asyncio.Queue[BroadcastMessage] = asyncio.Queue(maxsize=maxsize)
        self.overflowed = asyncio.Event()

    def put(self, message: BroadcastMessage) -> None:
        if self.overflowed.is_set():
            return
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.overflowed.set()

    async def get(self) -> BroadcastMessage:
        return await self._queue.get()


@router.websocket("/ws/{channel_name}")
async def channel_websocket(websocket: WebSocket, channel_name: str):
    """Stream one channel's broadcasts to the client until either side closes."""
    if not is_public_channel(channel_name):
        await websocket.close(code=4003, reason="Channel not available")
        return

    try:
        hub = get_hub()
    except RuntimeError:
        await websocket.close(code=1013, reason="Realtime unavailable")
        return

    await websocket.accept()

    queue = ClientQueue()
    channel = hub.transport.channel(channel_name)
    channel.on_broadcast(ANY_EVENT, queue.put)
    if await channel.subscribe() is not ChannelState.SUBSCRIBED:
        await websocket.close(code=1011, reason="Subscription failed")
        return
    logger.info("ws.subscribed", channel=channel_name)

    async def channel_sender():
        """Forward queued broadcasts to the WebSocket client."""
        try:
            while True:
                message = await queue.get()
                await websocket.send_text(message.model_dump_json())
        except asyncio.CancelledError:
            pass

    async def client_listener():
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    sender_task = asyncio.create_task(channel_sender())
    client_task = asyncio.create_task(client_listener())
    overflow_task = asyncio.create_task(queue.overflowed.wait())

    close_code = 1000
    try:
        done, pending = await asyncio.wait(
            [sender_task, client_task, overflow_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        if overflow_task in done:
            close_code = SLOW_CLIENT_CLOSE_CODE
            logger.warning("ws.client_too_slow", channel=channel_name)
    finally:
        await channel.unsubscribe()
        logger.info("ws.unsubscribed", channel=channel_name)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=close_code)
