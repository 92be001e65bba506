from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from order_tracker.core.logging import log_context
from order_tracker.core.security import get_token_actor
from order_tracker.services.realtime import KIOSK_TOPIC, broadcast_manager

logger = logging.getLogger(__name__)

router = APIRouter()

# Application close code for a missing or rejected token.
CLOSE_UNAUTHORIZED = 4401


# PUBLIC_INTERFACE
@router.websocket("/ws/kiosk")
async def ws_kiosk(websocket: WebSocket) -> None:
    """
    Kiosk feed of item stage changes.

    The 'token' query parameter must hold a valid JWT. The server pushes
    'item.stage_changed' envelopes; a client 'ping' is answered with 'pong'
    and anything else is ignored.
    """
    await websocket.accept()
    actor = get_token_actor(websocket.query_params.get("token") or "")
    if actor is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    with log_context(str(uuid4()), actor.id):
        await broadcast_manager.connect(KIOSK_TOPIC, websocket)
        try:
            while True:
                text = await websocket.receive_text()
                if text.strip().lower() == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Kiosk socket failed")
            await websocket.close()
        finally:
            await broadcast_manager.disconnect(KIOSK_TOPIC, websocket)
