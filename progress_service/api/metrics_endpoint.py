"""Prometheus scrape endpoint (text exposition format, not JSON).

Exposes the HTTP metrics plus the progress-specific series:
progress_mutations_total, progress_write_conflicts_total,
cache_operations_total, certificate_attempts_total, task_queue_depth.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
