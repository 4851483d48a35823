import time

from fastapi.testclient import TestClient

from src.backend.app import cache
from src.backend.app.main import app
from src.backend.app.rate_limit import check_and_increment


client = TestClient(app)


def test_health_and_live():
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/live").json() == {"status": "live"}


def test_cache_health_reports_memory_backend_without_redis():
    assert client.get("/cache/health").json() == {"backend": "memory"}


def test_prometheus_exposes_docbot_counters():
    r = client.get("/metrics/prometheus")
    assert r.status_code == 200
    assert "docbot_proxy_requests_total" in r.text or "docbot_proxy_requests" in r.text


def test_rate_limit_allows_burst_then_blocks():
    results = [check_and_increment("10.0.0.9", "unit", max_per_minute=2, burst=1)[0] for _ in range(4)]
    assert results == [True, True, True, False]


def test_proxy_route_rate_limited(monkeypatch):
    monkeypatch.setattr("src.backend.app.main.check_and_increment", lambda *a, **kw: (False, 99))
    r = client.get("/api/proxy", params={"proxyUrl": "https://example.com/"})
    assert r.status_code == 429
    assert r.json() == {"error": "rate_limited"}


def test_memory_cache_sweeps_expired_rate_limit_buckets(monkeypatch):
    clock = {"now": 1_700_000_000.0}
    monkeypatch.setattr(time, "time", lambda: clock["now"])
    monkeypatch.setattr(cache, "_last_sweep", 0.0)
    for _ in range(500):
        check_and_increment("9.9.9.9", "api_proxy")
        clock["now"] += 60
    buckets = [k for k in cache._mem if k.startswith("rl:9.9.9.9:")]
    # only the current minute and the one before it can still be alive
    assert len(buckets) <= 2


def test_memory_cache_drops_unconsumed_state_markers(monkeypatch):
    clock = {"now": 1_700_000_000.0}
    monkeypatch.setattr(time, "time", lambda: clock["now"])
    monkeypatch.setattr(cache, "_last_sweep", 0.0)
    cache.cache_set("oauth_state:jira:abandoned", {"provider": "jira"}, ttl=600)
    clock["now"] += 601
    cache.cache_set("oauth_state:jira:fresh", {"provider": "jira"}, ttl=600)
    assert "oauth_state:jira:abandoned" not in cache._mem
    assert cache.cache_pop("oauth_state:jira:fresh") == {"provider": "jira"}
