"""FastAPI routes for service health."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from api.schemas import HealthResponse

router = APIRouter()

# Mounted without a prefix; Twilio and load balancers poll "/".
liveness_router = APIRouter()


@liveness_router.get("/", response_class=PlainTextResponse)
async def liveness() -> str:
    return "OK"


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()
