from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from rndc_bridge.api.deps import get_transport
from rndc_bridge.config import settings
from rndc_bridge.domain.models import WireModel
from rndc_bridge.sync.rndc_client import RndcClient

router = APIRouter(tags=["System"])

PING_TIMEOUT_SECONDS = 10.0


class PingRequest(WireModel):
    ws_url: Optional[str] = None


class PingResponse(WireModel):
    success: bool = True
    status: str
    latency: int = Field(0, description="milliseconds")
    status_code: int = 0


@router.get("/health")
def health():
    return {"status": "ok", "version": settings.app.version}


@router.get("/version")
def version():
    return {"name": settings.app.name, "version": settings.app.version, "environment": settings.rndc.environment}


@router.post("/rndc/ping", response_model=PingResponse)
def ping_rndc(payload: Optional[PingRequest] = None, transport: RndcClient = Depends(get_transport)):
    target = payload.ws_url if payload else None
    result = transport.ping(target, timeout=PING_TIMEOUT_SECONDS)
    return PingResponse(**result)
