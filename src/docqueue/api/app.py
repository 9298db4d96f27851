"""FastAPI application factory."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from docqueue import metrics
from docqueue.api.routes import consultation, doctor, health, queue_status, sessions
from docqueue.errors import QueueError
from docqueue.logging import configure_logging, new_correlation_id
from docqueue.presence import InMemoryPresence, RedisPresence
from docqueue.queue.callbacks import InMemoryCallbackQueue, RedisCallbackQueue
from docqueue.service import QueueService
from docqueue.settings import Settings
from docqueue.storage.unit_of_work import InMemoryStorage, PostgresStorage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

__all__ = ["create_app"]

logger = logging.getLogger(__name__)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
}


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Inject correlation_id and record request metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        structlog.contextvars.clear_contextvars()
        cid = new_correlation_id(request.headers.get("x-correlation-id", ""))
        request.state.request_id = cid

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["x-correlation-id"] = cid
        response.headers["x-request-duration-ms"] = f"{duration * 1000:.1f}"

        metrics.record_request(response.status_code)

        return response


def _resolve_request_id(request: Request) -> str:
    state_request_id = getattr(request.state, "request_id", "")
    if state_request_id:
        return state_request_id
    generated = new_correlation_id(request.headers.get("x-correlation-id", ""))
    request.state.request_id = generated
    return generated


def _error_payload(error_code: str, message: str, request_id: str, *, details: Any = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error_code": error_code,
        "message": message,
        "request_id": request_id,
    }
    if details is not None:
        payload["details"] = details
    return payload


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    request_id = _resolve_request_id(request)
    status_code = exc.status_code

    if status_code in _ERROR_CODE_BY_STATUS:
        error_code = _ERROR_CODE_BY_STATUS[status_code]
    elif 400 <= status_code < 500:
        error_code = "INVALID_REQUEST"
    else:
        error_code = "INTERNAL_ERROR"

    message = exc.detail if isinstance(exc.detail, str) else "Request failed"

    return JSONResponse(
        status_code=status_code,
        content=_error_payload(error_code, message, request_id),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = _resolve_request_id(request)
    return JSONResponse(
        status_code=422,
        content=_error_payload(
            "INVALID_REQUEST",
            "Request validation failed",
            request_id,
            details=exc.errors(),
        ),
    )


async def _queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    request_id = _resolve_request_id(request)
    if exc.status_code >= 500:
        logger.warning("Queue operation failed: %s", exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(exc.error_code, exc.message, request_id),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _resolve_request_id(request)
    logger.exception("Unhandled application exception", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=_error_payload("INTERNAL_ERROR", "Internal server error", request_id),
    )


def build_service(settings: Settings, redis_client: Any = None) -> QueueService:
    """Pick PostgreSQL / Redis backends when configured, in-memory otherwise."""
    storage: InMemoryStorage | PostgresStorage
    if settings.pg_dsn:
        storage = PostgresStorage(settings.pg_dsn, lock_timeout=settings.lock_timeout_seconds)
    else:
        logger.warning("DOCQUEUE_PG_DSN not set — using in-memory storage")
        storage = InMemoryStorage(lock_timeout=settings.lock_timeout_seconds)

    if redis_client is not None:
        presence: Any = RedisPresence(redis_client)
        callbacks: Any = RedisCallbackQueue(redis_client)
    else:
        presence = InMemoryPresence()
        callbacks = InMemoryCallbackQueue()

    return QueueService(
        settings=settings,
        storage=storage,
        presence=presence,
        callbacks=callbacks,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Startup
    settings = Settings()
    configure_logging(json_output=settings.log_json, level=settings.log_level)

    redis_client = None
    if settings.redis_url:
        from docqueue.queue.redis import get_redis_client

        redis_client = get_redis_client(settings.redis_url)

    if settings.pg_dsn:
        from docqueue.storage.postgres import ensure_schema, get_connection

        conn = get_connection(settings.pg_dsn)
        try:
            ensure_schema(conn)
        finally:
            conn.close()

    service = build_service(settings, redis_client)
    app.state.settings = settings
    app.state.service = service
    app.state.redis_client = redis_client

    yield

    # Shutdown
    service.storage.close()
    if redis_client:
        redis_client.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="docqueue",
        version="0.1.0",
        description="Token queue control for a doctor's daily consultation session.",
        lifespan=lifespan,
    )
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(QueueError, _queue_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)
    app.add_middleware(ObservabilityMiddleware)
    app.include_router(health.router, tags=["health"])
    app.include_router(consultation.router, tags=["consultation"])
    app.include_router(doctor.router, tags=["doctor"])
    app.include_router(sessions.router, tags=["sessions"])
    app.include_router(queue_status.router, tags=["queue"])
    return app


app = create_app()
