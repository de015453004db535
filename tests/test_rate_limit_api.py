from fastapi.testclient import TestClient
import pytest

import workspace_guard.api.main as api_main
from workspace_guard.core.metrics import render_prometheus_metrics, reset_metrics_for_tests
from workspace_guard.core.rate_limit import InMemoryIPRateLimiter, RateLimitDecision, RedisIPRateLimiter


class _StaticLimiter:
    def __init__(self, decision: RateLimitDecision) -> None:
        self._decision = decision

    def check(self, *, ip: str) -> RateLimitDecision:  # noqa: ARG002
        return self._decision


class _BrokenRedis:
    def incr(self, key):  # noqa: ARG002
        raise ConnectionError("redis down")


def test_rate_limit_blocks_request_and_sets_headers(monkeypatch) -> None:
    reset_metrics_for_tests()
    monkeypatch.setattr(api_main.settings, "env", "production")
    monkeypatch.setattr(api_main.settings, "ip_rate_limit_enabled", True)
    monkeypatch.setattr(
        api_main,
        "get_ip_rate_limiter",
        lambda: _StaticLimiter(RateLimitDecision(allowed=False, limit=10, remaining=0, reset_seconds=30)),
    )

    client = TestClient(api_main.app)
    response = client.get("/version")

    assert response.status_code == 429
    assert response.json()["detail"] == "Rate limit exceeded"
    assert response.json()["code"] == "rate_limited"
    assert response.headers["x-rate-limit-limit"] == "10"
    assert response.headers["x-rate-limit-remaining"] == "0"
    assert response.headers["x-rate-limit-reset"] == "30"

    body = render_prometheus_metrics(app_name="workspace_guard", app_version="0.1.0", env="production")
    assert 'workspace_guard_rate_limit_block_total{kind="ip"} 1' in body


def test_rate_limit_allows_request_and_sets_headers(monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "env", "production")
    monkeypatch.setattr(api_main.settings, "ip_rate_limit_enabled", True)
    monkeypatch.setattr(
        api_main,
        "get_ip_rate_limiter",
        lambda: _StaticLimiter(RateLimitDecision(allowed=True, limit=10, remaining=9, reset_seconds=60)),
    )

    client = TestClient(api_main.app)
    response = client.get("/version")

    assert response.status_code == 200
    assert response.headers["x-rate-limit-limit"] == "10"
    assert response.headers["x-rate-limit-remaining"] == "9"
    assert response.headers["x-rate-limit-reset"] == "60"


def test_in_memory_limiter_counts_per_ip() -> None:
    limiter = InMemoryIPRateLimiter(requests_per_window=2, window_seconds=3600)

    assert limiter.check(ip="10.0.0.1").allowed is True
    assert limiter.check(ip="10.0.0.1").remaining == 0
    assert limiter.check(ip="10.0.0.1").allowed is False
    assert limiter.check(ip="10.0.0.2").allowed is True


def test_redis_limiter_fails_open() -> None:
    limiter = RedisIPRateLimiter(requests_per_window=5, window_seconds=60, redis_client=_BrokenRedis())
    decision = limiter.check(ip="10.0.0.1")
    assert decision.allowed is True
    assert decision.remaining == 5


def test_limiter_rejects_invalid_window() -> None:
    with pytest.raises(ValueError):
        InMemoryIPRateLimiter(requests_per_window=0, window_seconds=60)


class _CountingRedis:
    def __init__(self) -> None:
        self.counts = {}
        self.expiries = {}

    def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key, seconds):
        self.expiries[key] = seconds


def test_redis_limiter_uses_namespaced_window_keys() -> None:
    redis = _CountingRedis()
    limiter = RedisIPRateLimiter(requests_per_window=1, window_seconds=60, redis_client=redis)

    assert limiter.check(ip="10.0.0.1").allowed is True
    assert limiter.check(ip="10.0.0.1").allowed is False

    (key,) = redis.counts
    assert key.startswith("workspace_guard:ratelimit:ip:10.0.0.1:")
    assert redis.expiries == {key: 61}
