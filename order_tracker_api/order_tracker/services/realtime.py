from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, DefaultDict, Dict, List, Optional, Set

from starlette.websockets import WebSocket, WebSocketState

from order_tracker.schemas.realtime import StageChangedEvent, WsEnvelope

logger = logging.getLogger(__name__)

KIOSK_TOPIC = "kiosk"


def _is_closed(websocket: WebSocket) -> bool:
    return WebSocketState.DISCONNECTED in (websocket.application_state, websocket.client_state)


class BroadcastManager:
    """
    In-process fan-out of JSON messages to WebSocket subscribers, keyed by topic.

    Sockets that are closed or fail to receive are dropped from their topic.
    Only the kiosk topic is published today.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, Set[WebSocket]] = defaultdict(set)
        self._locks: DefaultDict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # PUBLIC_INTERFACE
    def subscriber_count(self, topic: str) -> int:
        """Number of sockets currently subscribed to topic."""
        return len(self._subscribers.get(topic, ()))

    # PUBLIC_INTERFACE
    async def connect(self, topic: str, websocket: WebSocket) -> None:
        """Subscribe an accepted websocket to topic."""
        async with self._locks[topic]:
            self._subscribers[topic].add(websocket)
            count = len(self._subscribers[topic])
        logger.info("Socket joined %s (%d subscribed)", topic, count)

    # PUBLIC_INTERFACE
    async def disconnect(self, topic: str, websocket: WebSocket) -> None:
        """Unsubscribe websocket; unknown sockets are ignored."""
        async with self._locks[topic]:
            self._subscribers[topic].discard(websocket)
            count = len(self._subscribers[topic])
        logger.info("Socket left %s (%d subscribed)", topic, count)

    # PUBLIC_INTERFACE
    async def broadcast(self, topic: str, message: Dict[str, Any], exclude: Optional[WebSocket] = None) -> int:
        """
        Send message to every open subscriber of topic.

        Returns:
            Number of sockets that received the message.
        """
        delivered = 0
        async with self._locks[topic]:
            dead: List[WebSocket] = []
            for websocket in list(self._subscribers[topic]):
                if websocket is exclude:
                    continue
                if _is_closed(websocket):
                    dead.append(websocket)
                    continue
                try:
                    await websocket.send_json(message)
                    delivered += 1
                except Exception:
                    logger.exception("Dropping %s subscriber after a failed send", topic)
                    dead.append(websocket)
            self._subscribers[topic].difference_update(dead)
        return delivered

    # PUBLIC_INTERFACE
    async def publish_stage_changed(self, event: StageChangedEvent) -> int:
        """Push a committed item stage change to kiosk displays."""
        envelope = WsEnvelope(type="item.stage_changed", payload=event.model_dump(mode="json", by_alias=True))
        return await self.broadcast(KIOSK_TOPIC, envelope.model_dump(mode="json"))


# Shared by the kiosk route and the stage engine.
broadcast_manager = BroadcastManager()
