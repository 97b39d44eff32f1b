import logging
import re
import time
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse

from rndc_bridge.config import settings

logger = logging.getLogger("rndc_bridge.api")

_BATCH_PATH = re.compile(r"^/batches/([^/]+)")


def batch_id_of(request: Request) -> str | None:
    """Batch a request refers to, from the /batches/{id} path or the batchId query parameter."""
    match = _BATCH_PATH.match(request.url.path)
    if match:
        return match.group(1)
    return request.query_params.get("batchId")


async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or uuid4().hex
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["x-request-id"] = rid
    return response


async def enforce_body_size(request: Request, call_next):
    limit_bytes = settings.security.max_upload_mb * 1024 * 1024
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit_bytes:
        return JSONResponse(
            status_code=413,
            content={
                "success": False,
                "error": "request_too_large",
                "message": f"Max upload size is {settings.security.max_upload_mb}MB",
            },
        )
    return await call_next(request)


async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        logger.info(
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": getattr(response, "status_code", "error"),
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                "request_id": getattr(request.state, "request_id", None),
                "batch_id": batch_id_of(request),
            },
        )
