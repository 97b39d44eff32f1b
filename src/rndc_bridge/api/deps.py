from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException

from rndc_bridge.batch.processor import BatchProcessor
from rndc_bridge.batch.tracker import BatchTracker
from rndc_bridge.config import settings
from rndc_bridge.data.storage import Database
from rndc_bridge.services.exporter import ResultsExporter
from rndc_bridge.services.query_log import QueryLog
from rndc_bridge.sync.rndc_client import RndcClient

# Global/Cached instances
_db_instance: Optional[Database] = None
_transport_instance: Optional[RndcClient] = None


def reset() -> None:
    global _db_instance, _transport_instance
    _db_instance = None
    _transport_instance = None


def get_db() -> Database:
    global _db_instance
    if _db_instance is None:
        _db_instance = Database(settings.paths.db_path)
    return _db_instance


def get_tracker() -> BatchTracker:
    return BatchTracker(db=get_db())


def get_transport() -> RndcClient:
    global _transport_instance
    if _transport_instance is None:
        rndc = settings.rndc
        _transport_instance = RndcClient(
            ws_url=rndc.active_ws_url,
            timeout=rndc.timeout_seconds,
            max_retries=rndc.max_retries,
            backoff_seconds=rndc.backoff_seconds,
        )
    return _transport_instance


def get_processor() -> BatchProcessor:
    return BatchProcessor(
        tracker=get_tracker(),
        transport=get_transport(),
        pacing_seconds=settings.rndc.pacing_seconds,
    )


def get_exporter() -> ResultsExporter:
    return ResultsExporter(tracker=get_tracker())


def get_query_log() -> QueryLog:
    return QueryLog(db=get_db())


def require_auth(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
):
    token = settings.security.api_token
    if not token:
        return
    if authorization in (f"Bearer {token}", f"Token {token}") or x_api_key == token:
        return
    raise HTTPException(status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})
