import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rndc_bridge.api import deps
from rndc_bridge.api.middleware import add_request_id, enforce_body_size, log_requests
from rndc_bridge.api.routers import batches, imports, queries, system
from rndc_bridge.config import settings
from rndc_bridge.exceptions import (
    BatchNotFoundError,
    DataSourceError,
    EmptyBatchError,
    InvalidTransitionError,
    UnsupportedOperationError,
)

# Configure logging
logging.basicConfig(level=getattr(logging, settings.logging.level.upper(), logging.INFO))
logger = logging.getLogger("rndc_bridge.api")


def _error(request: Request, status_code: int, error: str, exc: Exception) -> JSONResponse:
    payload = {"success": False, "error": error, "message": str(exc)}
    rid = getattr(request.state, "request_id", None)
    if rid:
        payload["request_id"] = rid
    return JSONResponse(status_code=status_code, content=payload)


def create_app(db_path: Optional[Path] = None) -> FastAPI:
    """
    Factory to build the FastAPI application.
    A db_path points the shared Database provider at another file (tests use tmp_path).
    """
    if db_path:
        settings.paths.db_path = Path(db_path)
        deps.reset()

    app = FastAPI(title="RNDC Bridge API", version=settings.app.version)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.middleware("http")(add_request_id)
    app.middleware("http")(enforce_body_size)
    if settings.logging.log_requests:
        app.middleware("http")(log_requests)

    app.include_router(system.router)
    app.include_router(imports.router)
    app.include_router(batches.router)
    app.include_router(queries.router)

    @app.exception_handler(DataSourceError)
    async def datasource_exception_handler(request: Request, exc: DataSourceError):
        return _error(request, 422, "invalid_source", exc)

    @app.exception_handler(EmptyBatchError)
    async def empty_batch_handler(request: Request, exc: EmptyBatchError):
        return _error(request, 400, "empty_batch", exc)

    @app.exception_handler(UnsupportedOperationError)
    async def unsupported_operation_handler(request: Request, exc: UnsupportedOperationError):
        return _error(request, 400, "unsupported_operation", exc)

    @app.exception_handler(BatchNotFoundError)
    async def not_found_handler(request: Request, exc: BatchNotFoundError):
        return _error(request, 404, "not_found", exc)

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
        return _error(request, 409, "invalid_transition", exc)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        rid = getattr(request.state, "request_id", None)
        logger.exception("Unhandled error", extra={"path": str(request.url), "request_id": rid})
        payload = {"success": False, "error": "internal_error", "message": "Unexpected server error"}
        if rid:
            payload["request_id"] = rid
        return JSONResponse(status_code=500, content=payload)

    return app


# Module-level app for uvicorn entrypoint
app = create_app()
