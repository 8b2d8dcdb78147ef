"""Twilio Voice integration.

This module provides:
- Voice webhook (TwiML) that connects the call to a bidirectional media stream.
- The media-stream websocket, bridged to the realtime session.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket, status

from api.dependencies import BridgeFactory, get_bridge_factory
from bridge.legs import StarletteTelephonyLeg
from config.settings import get_settings
from integrations.twilio_streaming import TWILIO_SUBPROTOCOL

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])
stream_router = APIRouter(tags=["twilio"])


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _twiml_connect_stream(*, stream_url: str) -> str:
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


@router.post("/voice")
async def twilio_voice_webhook(request: Request) -> Response:
    settings = get_settings()

    # WebSocket endpoint must be publicly reachable (wss:// recommended).
    if settings.public_base_url:
        base = settings.public_base_url.rstrip("/")
    else:
        # Fallback to request host. This may not work behind proxies; prefer PUBLIC_BASE_URL.
        base = str(request.base_url).rstrip("/")

    return _twiml_response(_twiml_connect_stream(stream_url=_to_ws_url(f"{base}/stream")))


@stream_router.websocket("/stream")
async def twilio_media_stream(
    websocket: WebSocket,
    bridge_factory: BridgeFactory = Depends(get_bridge_factory),
) -> None:
    offered = websocket.scope.get("subprotocols") or []
    if TWILIO_SUBPROTOCOL in offered:
        await websocket.accept(subprotocol=TWILIO_SUBPROTOCOL)
    elif get_settings().require_twilio_subprotocol:
        LOGGER.warning("Rejecting media stream without %s subprotocol: %s", TWILIO_SUBPROTOCOL, offered)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    else:
        await websocket.accept()

    client = websocket.client
    LOGGER.info("Media stream connected from %s", f"{client.host}:{client.port}" if client else "unknown")

    pair = bridge_factory(StarletteTelephonyLeg(websocket))
    await pair.run()
