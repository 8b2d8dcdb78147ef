from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from bridge.errors import ConfigurationError, LegClosedError, RemoteConnectionError

LOGGER = logging.getLogger(__name__)


class RealtimeConnection:
    """WebSocket connection to the remote realtime speech session.

    Implements the ``RemoteLeg`` protocol used by the bridge.
    """

    def __init__(
        self,
        *,
        url: str,
        model: str,
        api_key: str | None,
        connect_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._model = model
        self._api_key = api_key
        self._connect_timeout = connect_timeout
        self._ws: Any = None

    def _ws_url(self) -> str:
        sep = "&" if "?" in self._url else "?"
        return f"{self._url}{sep}{urlencode({'model': self._model})}"

    async def connect(self) -> None:
        if not self._api_key:
            raise ConfigurationError("OPENAI_API_KEY not configured")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(
                    self._ws_url(),
                    additional_headers=headers,
                    ping_interval=20,
                    ping_timeout=20,
                    max_size=16 * 1024 * 1024,
                ),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RemoteConnectionError("Timed out connecting to the realtime session") from exc
        except (OSError, WebSocketException) as exc:
            raise RemoteConnectionError(f"Realtime connect failed: {exc}") from exc

        LOGGER.info("Connected to realtime session model=%s", self._model)

    async def receive_text(self) -> str:
        if self._ws is None:
            raise LegClosedError("Realtime session not connected")
        try:
            message = await self._ws.recv()
        except ConnectionClosed as exc:
            raise LegClosedError(f"Realtime session closed: {exc}") from exc
        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    async def send_json(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise LegClosedError("Realtime session not connected")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            raise LegClosedError(f"Realtime session closed: {exc}") from exc

    async def close(self) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        await ws.close()
