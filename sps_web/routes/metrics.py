"""Metrics routes. Prefix: /api/metrics; 404 when metrics are disabled."""

from fastapi import APIRouter, Depends

from sps.services.metrics_service import MetricsService

from ..deps import metrics_enabled
from ..errors import utc_timestamp

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


def _ok(data):
    return {"success": True, "data": data, "timestamp": utc_timestamp()}


@router.get("")
def get_metrics(metrics: MetricsService = Depends(metrics_enabled)):
    return _ok(metrics.summary())


@router.get("/requests")
def get_request_metrics(metrics: MetricsService = Depends(metrics_enabled)):
    return _ok(metrics.summary()["requests"])


@router.get("/cache")
def get_cache_metrics(metrics: MetricsService = Depends(metrics_enabled)):
    cache = metrics.summary()["cache"]
    return _ok({**cache, "efficiency": f"{cache['hitRate']}%"})


@router.get("/performance")
def get_performance_metrics(metrics: MetricsService = Depends(metrics_enabled)):
    summary = metrics.summary()
    return _ok({
        "avgResponseTime": f"{summary['performance']['avgResponseTime']}ms",
        "totalResponseTime": f"{summary['performance']['totalResponseTime']}ms",
        "requestsPerSecond": metrics.requests_per_second(summary["requests"]["total"]),
    })


@router.get("/errors")
def get_error_metrics(metrics: MetricsService = Depends(metrics_enabled)):
    summary = metrics.summary()
    total = summary["requests"]["total"]
    errors = summary["errors"]
    return _ok({
        **errors,
        "errorRate": round(errors["total"] / total * 100, 2) if total else 0.0,
    })


@router.get("/pagination")
def get_pagination_metrics(metrics: MetricsService = Depends(metrics_enabled)):
    stats = metrics.pagination_stats()
    return _ok({**stats, "avgQueryTime": f"{stats['avgQueryTime']}ms"})


@router.get("/performance/detailed")
def get_detailed_performance(metrics: MetricsService = Depends(metrics_enabled)):
    summary = metrics.summary()
    stats = metrics.pagination_stats()
    total = summary["requests"]["total"]
    return _ok({
        "responseTime": {
            "avg": f"{summary['performance']['avgResponseTime']}ms",
            "total": f"{summary['performance']['totalResponseTime']}ms",
        },
        "throughput": {
            "requestsPerSecond": metrics.requests_per_second(total),
            "totalRequests": total,
        },
        "pagination": {
            "queries": stats["queries"],
            "avgQueryTime": f"{stats['avgQueryTime']}ms",
        },
        "cache": {
            "hitRate": summary["cache"]["hitRate"],
            "efficiency": f"{summary['cache']['hitRate']}%",
        },
    })


@router.post("/cleanup")
def cleanup_metrics(metrics: MetricsService = Depends(metrics_enabled)):
    return {
        "success": True,
        "message": "Metrics cleanup finished",
        "data": metrics.cleanup(),
        "timestamp": utc_timestamp(),
    }
