"""Health and readiness endpoints.

  /health (liveness):  the process answers.  Always 200; ``status`` is
                       "degraded" when a configured backing service fails
                       its check.
  /ready (readiness):  503 while a configured backing service is
                       unreachable, so the load balancer stops routing
                       here without restarting the container.

Unconfigured services (no DATABASE_URL / REDIS_URL) report
"not_configured"; the in-memory fallbacks serve instead.
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from sqlalchemy import text

from progress_service.db.engine import engine
from progress_service.db.redis import redis_pool
from progress_service.services.task_queue import (
    CERTIFICATE_QUEUE,
    PROGRESS_MUTATIONS_QUEUE,
    task_queue,
)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        return "degraded"
    return "ok"


async def _run_checks() -> dict[str, str]:
    return {
        "redis": await _check_redis(),
        "database": await _check_database(),
    }


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus dependency status and queue backlog."""
    checks = await _run_checks()
    overall = "degraded" if "degraded" in checks.values() else "ok"

    queues: dict[str, int | None] = {}
    for name in (PROGRESS_MUTATIONS_QUEUE, CERTIFICATE_QUEUE):
        try:
            queues[name] = await task_queue.queue_length(name)
        except Exception:
            queues[name] = None

    return {"status": overall, "checks": checks, "queues": queues}


@router.get("/ready")
async def ready() -> Response:
    checks = await _run_checks()
    if "degraded" in checks.values():
        return Response(status_code=503)
    return Response(status_code=200)
