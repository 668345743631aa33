from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from sps.services.metrics_service import MetricsService, endpoint_name
from sps_web.main import create_app

from conftest import make_settings


def test_endpoint_names_collapse_ids():
    assert endpoint_name("/api/users/42?x=1") == "_api_users_id"
    assert endpoint_name("/api/users") == "_api_users"


def test_requests_are_counted(client, auth_headers):
    client.get("/api/users", headers=auth_headers)
    client.get("/api/users/999", headers=auth_headers)

    res = client.get("/api/metrics", headers=auth_headers)
    assert res.status_code == 200
    data = res.json()["data"]
    # login + two user reads; the metrics request itself is recorded after it responds
    assert data["requests"]["total"] == 3
    assert data["requests"]["byMethod"]["get"] == 2
    assert data["errors"]["byStatus"]["404"] == 1
    assert data["cache"]["misses"] == 2


def test_cache_and_pagination_metrics(client, auth_headers):
    client.get("/api/users", headers=auth_headers)
    client.get("/api/users", headers=auth_headers)

    cache = client.get("/api/metrics/cache").json()["data"]
    assert (cache["hits"], cache["misses"]) == (1, 1)
    assert cache["hitRate"] == 50.0
    assert cache["efficiency"] == "50.0%"

    stats = client.get("/api/metrics/pagination").json()["data"]
    assert stats["queries"] == 2
    assert stats["cacheHits"] == 1


def test_other_metric_views(client):
    client.get("/api/health")
    assert client.get("/api/metrics/requests").json()["data"]["total"] == 1
    assert client.get("/api/metrics/errors").json()["data"]["errorRate"] == 0.0
    assert client.get("/api/metrics/performance").json()["data"]["avgResponseTime"].endswith("ms")
    detailed = client.get("/api/metrics/performance/detailed").json()["data"]
    assert set(detailed) == {"responseTime", "throughput", "pagination", "cache"}


def test_metrics_disabled_returns_404(backend, clock):
    app = create_app(make_settings(metrics={"enabled": False}), backend=backend, clock=clock)
    with TestClient(app) as client:
        res = client.get("/api/metrics")
        assert res.status_code == 404
        assert client.post("/api/metrics/cleanup").status_code == 404


def test_cleanup_drops_counters_past_retention(backend, clock):
    metrics = MetricsService(backend, retention_days=30, clock=clock)
    metrics.record_cache(True)
    old = (datetime.fromtimestamp(clock(), tz=timezone.utc) - timedelta(days=45)).strftime("%Y-%m-%d")
    backend.set(f"metrics:cache_hits:{old}", 7, 3600)

    assert metrics.cleanup() == {"removed": 1}
    assert backend.get_counter("cache_hits") == 1
    assert backend.get_counter("cache_hits", date=old) == 0
