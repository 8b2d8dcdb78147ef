"""Transport-neutral views of the two legs of a bridged call."""

from __future__ import annotations

import json
from typing import Any, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from bridge.errors import LegClosedError


class TelephonyLeg(Protocol):
    async def receive_text(self) -> str:
        """Return the next inbound message; raise LegClosedError once the leg is gone."""

    async def send_json(self, message: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class RemoteLeg(TelephonyLeg, Protocol):
    async def connect(self) -> None: ...


class StarletteTelephonyLeg:
    """Telephony leg backed by an accepted FastAPI/Starlette websocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    async def receive_text(self) -> str:
        try:
            return await self._ws.receive_text()
        except WebSocketDisconnect as exc:
            raise LegClosedError(f"Telephony websocket disconnected (code={exc.code})") from exc

    async def send_json(self, message: dict[str, Any]) -> None:
        if self._ws.client_state != WebSocketState.CONNECTED:
            raise LegClosedError("Telephony websocket is not connected")
        await self._ws.send_text(json.dumps(message))

    async def close(self) -> None:
        if (
            self._ws.application_state == WebSocketState.CONNECTED
            and self._ws.client_state == WebSocketState.CONNECTED
        ):
            await self._ws.close()
