"""Service probes and WebSocket discovery, which OpenAPI cannot describe."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter

from order_tracker.core.settings import get_app_settings
from order_tracker.schemas.common import MessageResponse
from order_tracker.services.realtime import KIOSK_TOPIC, broadcast_manager

router = APIRouter(tags=["Health"])

# Exported into the generated OpenAPI document as x-websocket-endpoints.
WEBSOCKET_ENDPOINTS: List[Dict[str, Any]] = [
    {
        "path": "/ws/kiosk",
        "summary": "Item stage changes pushed to shop-floor kiosk displays.",
        "query": ["token"],
        "messages": {
            "client_to_server": ["ping"],
            "server_to_client": ["item.stage_changed", "pong"],
        },
    }
]


# PUBLIC_INTERFACE
@router.get("/health", response_model=MessageResponse, summary="Liveness probe")
def health_check() -> MessageResponse:
    """
    Report that the process is serving requests.

    The database is not contacted, so this stays green during short outages.
    """
    settings = get_app_settings()
    return MessageResponse(
        message="Healthy",
        details={"version": settings.APP_VERSION, "environment": settings.ENVIRONMENT},
    )


# PUBLIC_INTERFACE
@router.get(
    "/websocket-info",
    response_model=Dict[str, Any],
    summary="Kiosk WebSocket usage",
    tags=["WebSocket"],
)
def websocket_info() -> Dict[str, Any]:
    """Connection details and message shapes for the WebSocket endpoints, with live subscriber counts."""
    return {
        "usage": (
            "Pass a bearer JWT as the 'token' query parameter. Server messages are JSON "
            "envelopes {type, payload, at}; send 'ping' to receive 'pong'."
        ),
        "security": {"token": "Signed with the shared secret; must carry a 'sub' claim."},
        "endpoints": WEBSOCKET_ENDPOINTS,
        "subscribers": {KIOSK_TOPIC: broadcast_manager.subscriber_count(KIOSK_TOPIC)},
    }
