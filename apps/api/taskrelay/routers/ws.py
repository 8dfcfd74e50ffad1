"""WebSocket channel forwarding delegation events to browsers."""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..dependencies import get_event_hub
from ..events import EventHub, Subscription
from ..middleware.metrics import track_subscriber_connected, track_subscriber_disconnected


logger = logging.getLogger(__name__)
router = APIRouter(tags=["events"])


@router.websocket("/ws")
async def events_websocket(websocket: WebSocket, hub: EventHub = Depends(get_event_hub)):
    """
    Push channel for task events.

    Clients receive {"type": "connected"} first, then every hub event. Sending
    {"type": "subscribe-task", "taskId": ...} narrows the stream to one task;
    {"type": "unsubscribe-task"} widens it again.
    """
    await websocket.accept()
    subscription = hub.subscribe()
    track_subscriber_connected()
    await websocket.send_json({"type": "connected", "message": "Connected to task event stream"})

    async def forward_events(sub: Subscription):
        async for event in sub:
            await websocket.send_json(event)

    async def read_commands(sub: Subscription):
        while True:
            message = await websocket.receive_json()
            kind = message.get("type") if isinstance(message, dict) else None
            if kind == "subscribe-task":
                sub.task_id = message.get("taskId")
                await websocket.send_json({"type": "subscribed", "taskId": sub.task_id})
            elif kind == "unsubscribe-task":
                sub.task_id = None
                await websocket.send_json({"type": "unsubscribed"})
            else:
                logger.debug(f"Ignoring websocket message: {message!r}")

    forwarder = asyncio.create_task(forward_events(subscription))
    try:
        await read_commands(subscription)
    except WebSocketDisconnect:
        logger.info("Event subscriber disconnected")
    except ValueError as e:
        logger.warning(f"Closing event socket after malformed message: {e}")
    finally:
        forwarder.cancel()
        subscription.close()
        track_subscriber_disconnected()
