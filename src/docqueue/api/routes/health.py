"""Health, readiness, and metrics endpoints."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request, Response
from starlette.responses import JSONResponse

from docqueue import metrics as counters
from docqueue.healthchecks import check_postgres, check_redis

router = APIRouter()

__all__ = ["router"]


@router.get("/health", summary="Liveness probe", operation_id="health")
async def health() -> dict[str, str]:
    """Liveness: app process is running."""
    return {"status": "ok"}


@router.get("/ready", summary="Readiness probe", operation_id="ready")
async def ready(request: Request) -> JSONResponse:
    """Readiness: configured dependencies reachable.

    Unconfigured backends (in-memory mode) are not probed. Returns 200 when
    all probed checks pass, 503 otherwise.
    """
    settings = request.app.state.settings
    checks: dict[str, bool] = {}
    if settings.pg_dsn:
        checks["postgres"] = await check_postgres(settings.pg_dsn)
    if settings.redis_url:
        checks["redis"] = await check_redis(settings.redis_url)

    all_ok = all(checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"ready": all_ok, "checks": checks},
    )


@router.get("/metrics", summary="Prometheus metrics", operation_id="metrics")
async def metrics() -> Response:
    """Prometheus text exposition format."""
    snap = counters.snapshot()
    uptime = time.time() - snap["start_time"]

    lines = [
        "# HELP docqueue_up Queue service is up",
        "# TYPE docqueue_up gauge",
        "docqueue_up 1",
        "",
        "# HELP docqueue_uptime_seconds Seconds since process start",
        "# TYPE docqueue_uptime_seconds gauge",
        f"docqueue_uptime_seconds {uptime:.1f}",
        "",
        "# HELP docqueue_requests_total Total HTTP requests",
        "# TYPE docqueue_requests_total counter",
        f"docqueue_requests_total {snap['requests_total']}",
        "",
    ]

    # Per-status breakdown
    for status, count in sorted(snap["requests_by_status"].items()):
        lines.append(f'docqueue_requests_total{{status="{status}"}} {count}')

    lines += [
        "",
        "# HELP docqueue_calls_total Resolver outcomes by kind",
        "# TYPE docqueue_calls_total counter",
    ]
    for kind, count in sorted(snap["calls_by_kind"].items()):
        lines.append(f'docqueue_calls_total{{kind="{kind}"}} {count}')

    lines += [
        "",
        "# HELP docqueue_no_shows_total Tokens marked missed",
        "# TYPE docqueue_no_shows_total counter",
        f"docqueue_no_shows_total {snap['no_shows']}",
        "",
        "# HELP docqueue_cursor_retries_total Retries after session-day lock contention",
        "# TYPE docqueue_cursor_retries_total counter",
        f"docqueue_cursor_retries_total {snap['cursor_retries']}",
        "",
    ]

    return Response(content="\n".join(lines), media_type="text/plain; charset=utf-8")
