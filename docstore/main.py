"""Main FastAPI application for the document store."""
from __future__ import annotations

import os
import time
from typing import Any, Awaitable, Callable

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from docstore.utils.logging import configure_logging, get_logger

# === Initialization ===
load_dotenv()
configure_logging()
logger = get_logger("api")

app = FastAPI(title="Document Store", version="1.0.0")

cors_env = os.getenv("CORS_ALLOW_ORIGINS")
if cors_env:
    origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=False,
    )

# === Routers ===
from docstore import config  # noqa: E402
from docstore.endpoints import documents  # noqa: E402
from docstore.utils import db  # noqa: E402
from docstore.utils import pool as pool_module  # noqa: E402
from docstore.utils.documents import DocumentStore  # noqa: E402
from docstore.utils.errors import (  # noqa: E402
    ConnectionFailed,
    InvalidPayloadError,
    PoolClosed,
    PoolExhausted,
    ReadBackError,
    StoreError,
)


class RootResponse(BaseModel):
    """Schema describing the payload returned by the API root endpoint."""

    ok: bool = Field(..., description="Indicates whether the service is operating normally.")
    message: str = Field(..., description="Short description of the service state.")
    docs_url: str = Field(..., description="Relative URL of the interactive API documentation.")
    openapi_url: str = Field(..., description="Relative URL of the OpenAPI specification document.")


class HealthResponse(BaseModel):
    """Schema describing the payload returned by the health-check endpoint."""

    ok: bool = Field(..., description="Indicates whether the connection pool is open.")
    pool_size: int = Field(0, description="Connections currently open.")
    pool_available: int = Field(0, description="Leases that can be granted without waiting.")


@app.on_event("startup")
def open_database() -> None:
    """Build the shared connection pool and make sure the schema exists."""

    logger.info("Opening connection pool")
    pool = pool_module.initialize(
        config.DATABASE_URL,
        config.DB_POOL_MAX_SIZE,
        timeout=config.DB_POOL_TIMEOUT,
        busy_timeout=config.DB_BUSY_TIMEOUT,
    )
    db.init_db(pool)
    app.state.pool = pool
    app.state.document_store = DocumentStore(pool)
    logger.info("Document store ready")


@app.on_event("shutdown")
def close_database() -> None:
    """Release every pooled connection when the application shuts down."""

    pool = getattr(app.state, "pool", None)
    app.state.document_store = None
    app.state.pool = None
    if pool is not None:
        logger.info("Closing connection pool")
        pool.close()


# === Router registration ===
app.include_router(documents.router)


# === Request logging ===
@app.middleware("http")
async def log_requests(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "Handled request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return response


@app.get("/", response_model=RootResponse, include_in_schema=False)
def root() -> RootResponse:
    """Provide a friendly message at the API root."""

    return RootResponse(
        ok=True,
        message="Document Store API is running.",
        docs_url="/docs",
        openapi_url="/openapi.json",
    )


# === Health check ===
@app.get("/healthz", response_model=HealthResponse)
def healthz(request: Request) -> HealthResponse:
    """Report whether the pool is open and how much capacity is left."""

    pool = getattr(request.app.state, "pool", None)
    if pool is None or pool.closed:
        logger.warning("Health check called without an open pool")
        return HealthResponse(ok=False)
    return HealthResponse(ok=True, pool_size=pool.size, pool_available=pool.available)


# === Error handlers ===
_STATUS_BY_ERROR: tuple[tuple[type[StoreError], int], ...] = (
    (InvalidPayloadError, 422),
    (PoolExhausted, 503),
    (PoolClosed, 503),
    (ConnectionFailed, 503),
)


@app.exception_handler(StoreError)
async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
    """Map persistence failures to a JSON error response."""

    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    context = {"path": request.url.path, "error_kind": exc.kind, "error": str(exc)}
    if isinstance(exc, ReadBackError):
        # Read and write paths disagree; never downgrade this one.
        logger.error("Store consistency fault while handling request", extra=context)
    elif status_code == 422:
        logger.info("Rejected document payload", extra=context)
    elif status_code == 503:
        logger.warning("Store temporarily unavailable", extra=context)
    else:
        logger.error("Store operation failed", extra=context)

    return JSONResponse(status_code=status_code, content={"ok": False, "error": exc.kind})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Return a uniform JSON error response for any unhandled exception."""
    _ = request  # FastAPI requires this argument
    logger.exception("Unhandled exception during request processing: %s", exc)
    return JSONResponse(status_code=500, content={"ok": False, "error": "internal_error"})


# === Custom OpenAPI ===
def custom_openapi() -> dict[str, Any]:
    """Attach metadata and optionally configure the server URL for Swagger UI."""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title="Document Store API",
        version="1.0.0",
        description="Store arbitrary JSON documents under generated identifiers",
        routes=app.routes,
    )

    server_url = os.getenv("OPENAPI_SERVER_URL")
    if server_url:
        openapi_schema["servers"] = [
            {"url": server_url, "description": "Production deployment"}
        ]
        logger.info("Configured OpenAPI server override: %s", server_url)

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi
__all__ = ["app"]
