"""
Operational endpoints.

    GET /health   - pool size, busy and waiting workers, total jobs
    GET /metrics  - Prometheus text format
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from koko_ms.api.dependencies import get_service
from koko_ms.services.synthesis import SynthesisService

router = APIRouter()


@router.get("/health")
def health(service: SynthesisService = Depends(get_service)):
    """
    Health check for load balancers and probes.

    ``status`` is "busy" while callers are queued for a worker, which is
    normal under load but worth alerting on when it persists.
    """
    stats = service.pool.stats()
    return {
        "status": "busy" if stats.waiting else "ok",
        "sample_rate": service.sample_rate,
        "instances": stats.instances,
        "busy": stats.busy,
        "waiting": stats.waiting,
        "total_jobs": stats.total_jobs,
    }


@router.get("/metrics")
def prometheus_metrics(service: SynthesisService = Depends(get_service)):
    """Metrics of the pool this app serves."""
    content, content_type = service.pool.metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
