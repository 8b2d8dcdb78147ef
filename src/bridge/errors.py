"""Exceptions raised at the edges of a bridged call.

These exceptions are safe to import from API layers without pulling in the
websocket client.
"""

from __future__ import annotations


class BridgeError(Exception):
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MalformedMessageError(BridgeError):
    default_detail = "Malformed message."


class LegClosedError(BridgeError):
    default_detail = "Connection closed."


class RemoteConnectionError(BridgeError):
    default_detail = "Could not connect to the realtime session."


class ConfigurationError(BridgeError):
    default_detail = "Bridge is not configured."
