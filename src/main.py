"""Entry point for the Twilio to realtime speech bridge service."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from api.routes import liveness_router
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from api.twilio_routes import stream_router
from config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Realtime Call Bridge",
    description="Relays Twilio media streams to a realtime speech session.",
)
app.include_router(liveness_router)
app.include_router(api_router, prefix="/api")
app.include_router(twilio_router, prefix="/api")
app.include_router(stream_router)


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
