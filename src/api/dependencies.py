"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from collections.abc import Callable

from bridge.legs import TelephonyLeg
from bridge.session import BridgePair
from bridge.state import BridgeConfig
from config.settings import get_settings
from realtime.client import RealtimeConnection

BridgeFactory = Callable[[TelephonyLeg], BridgePair]


def build_bridge_pair(telephony: TelephonyLeg) -> BridgePair:
    settings = get_settings()
    remote = RealtimeConnection(
        url=settings.realtime_url,
        model=settings.realtime_model,
        api_key=settings.openai_api_key,
        connect_timeout=settings.remote_connect_timeout_seconds,
    )
    return BridgePair(telephony, remote, BridgeConfig.from_settings(settings))


def get_bridge_factory() -> BridgeFactory:
    return build_bridge_pair
