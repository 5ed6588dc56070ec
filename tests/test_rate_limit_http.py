"""Tests for the rate limiting HTTP layer (identity, headers, 429 responses)."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.rate_limit.base import RateLimitDecision
from app.adapters.rate_limit.in_memory import InMemorySlidingWindowStore
from app.adapters.rate_limit.redis_counter import RedisCounterStore
from app.core.app_factory import create_app
from app.core.config import RateLimitSettings, settings
from app.core.rate_limit import (
    LIMIT_HEADER,
    REMAINING_HEADER,
    RESET_HEADER,
    RETRY_AFTER_HEADER,
    client_identity,
    decorate,
    deny_response,
)
from app.services.rate_limiter import RateLimiter, build_tier_policies

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/v1/public/routes",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "query_string": b"",
    }
    if client is not None:
        scope["client"] = client
    return Request(scope)


def _decision(**overrides) -> RateLimitDecision:
    values = {
        "allowed": False,
        "count": 30,
        "remaining": 0,
        "limit": 30,
        "reset_at": NOW + timedelta(seconds=41.2),
        "message": "Too many search requests, please slow down",
    }
    values.update(overrides)
    return RateLimitDecision(**values)


class TestClientIdentity:
    """Identity sources are consulted in priority order; first match wins."""

    def test_forwarded_for_first_hop_wins(self) -> None:
        request = _request(
            {
                "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
                "X-Real-IP": "198.51.100.2",
                "X-Client-IP": "198.51.100.3",
            }
        )
        assert client_identity(request) == "203.0.113.7"

    def test_real_ip_before_client_ip(self) -> None:
        request = _request({"X-Real-IP": "198.51.100.2", "X-Client-IP": "198.51.100.3"})
        assert client_identity(request) == "198.51.100.2"

    def test_client_ip_header(self) -> None:
        assert client_identity(_request({"X-Client-IP": "198.51.100.3"})) == "198.51.100.3"

    def test_peer_address_fallback(self) -> None:
        assert client_identity(_request()) == "10.0.0.9"

    def test_unknown_when_nothing_available(self) -> None:
        assert client_identity(_request(client=None)) == "unknown"

    def test_blank_headers_are_skipped(self) -> None:
        request = _request({"X-Forwarded-For": " ", "X-Real-IP": ""})
        assert client_identity(request) == "10.0.0.9"


class TestHeaders:
    def test_decorate_returns_new_mapping(self) -> None:
        original = {"Content-Type": "application/json"}

        decorated = decorate(original, _decision(allowed=True, remaining=12))

        assert original == {"Content-Type": "application/json"}
        assert decorated[LIMIT_HEADER] == "30"
        assert decorated[REMAINING_HEADER] == "12"
        assert decorated[RESET_HEADER] == str(int((NOW + timedelta(seconds=41.2)).timestamp()))
        assert decorated["Content-Type"] == "application/json"

    def test_deny_response_shape(self) -> None:
        response = deny_response(_decision(remaining=3), now=NOW)

        assert response.status_code == 429
        assert response.headers[RETRY_AFTER_HEADER] == "42"
        assert response.headers[REMAINING_HEADER] == "0"
        assert response.headers[LIMIT_HEADER] == "30"

        body = json.loads(response.body)
        assert body["success"] is False
        assert body["error"]["code"] == "rate_limit_exceeded"
        assert body["error"]["message"] == "Too many search requests, please slow down"
        assert body["error"]["statusCode"] == 429
        assert body["error"]["details"]["retryAfter"] == 42
        assert body["error"]["details"]["rateLimit"]["maxRequests"] == 30

    def test_retry_after_never_negative(self) -> None:
        response = deny_response(_decision(reset_at=NOW - timedelta(seconds=5)), now=NOW)

        assert response.headers[RETRY_AFTER_HEADER] == "0"


@pytest.fixture
def limited_client(memory_store):
    """App with tiny budgets: PUBLIC 2, SEARCH 1, OPERATOR 1."""

    rate_settings = RateLimitSettings(
        public_max_requests=2,
        search_max_requests=1,
        operator_max_requests=1,
        admin_max_requests=1,
    )
    limiter = RateLimiter(InMemorySlidingWindowStore(), build_tier_policies(rate_settings))
    app = create_app(store=memory_store, cache=RedisCache(), rate_limiter=limiter)
    with TestClient(app) as client:
        yield client


class TestEnforcement:
    def test_allowed_responses_carry_quota_headers(self, limited_client) -> None:
        first = limited_client.get("/v1/public/routes")
        second = limited_client.get("/v1/public/routes")

        assert first.status_code == 200
        assert first.headers[LIMIT_HEADER] == "2"
        assert first.headers[REMAINING_HEADER] == "1"
        assert second.headers[REMAINING_HEADER] == "0"

    def test_over_quota_returns_429(self, limited_client) -> None:
        limited_client.get("/v1/public/routes")
        limited_client.get("/v1/public/routes")

        resp = limited_client.get("/v1/public/routes")

        assert resp.status_code == 429
        assert int(resp.headers[RETRY_AFTER_HEADER]) > 0
        assert resp.headers[REMAINING_HEADER] == "0"
        body = resp.json()
        assert body["error"]["message"] == "Too many requests from this IP, please try again later"
        assert body["error"]["request_id"] == resp.headers["X-Request-ID"]

    def test_search_tier_has_its_own_budget(self, limited_client) -> None:
        assert limited_client.get("/v1/public/search/routes", params={"q": "colombo"}).status_code == 200

        denied = limited_client.get("/v1/public/search/routes", params={"q": "colombo"})
        assert denied.status_code == 429
        assert denied.json()["error"]["message"] == "Too many search requests, please slow down"

        assert limited_client.get("/v1/public/routes").status_code == 200

    def test_clients_are_isolated_by_forwarded_ip(self, limited_client) -> None:
        headers_a = {"X-Forwarded-For": "203.0.113.7"}
        headers_b = {"X-Forwarded-For": "198.51.100.1"}

        limited_client.get("/v1/public/search/routes", params={"q": "kandy"}, headers=headers_a)

        assert limited_client.get("/v1/public/search/routes", params={"q": "kandy"}, headers=headers_a).status_code == 429
        assert limited_client.get("/v1/public/search/routes", params={"q": "kandy"}, headers=headers_b).status_code == 200

    def test_limit_is_checked_before_authentication(self, limited_client) -> None:
        assert limited_client.get("/v1/operator/buses").status_code == 401
        assert limited_client.get("/v1/operator/buses").status_code == 429

    def test_health_is_never_limited(self, limited_client) -> None:
        for _ in range(5):
            assert limited_client.get("/health").status_code == 200

    def test_disabled_rate_limiting(self, limited_client, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "enabled", False)

        for _ in range(5):
            resp = limited_client.get("/v1/public/routes")
            assert resp.status_code == 200
            assert LIMIT_HEADER not in resp.headers

    def test_header_bookkeeping_failure_does_not_block_handler(self, limited_client, operator_headers, caplog) -> None:
        caplog.set_level(logging.ERROR, logger="app.core.rate_limit")

        with patch("app.core.rate_limit.decorate", side_effect=RuntimeError("header write failed")):
            resp = limited_client.get("/v1/operator/buses", headers=operator_headers)

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert LIMIT_HEADER not in resp.headers
        failures = [r for r in caplog.records if r.getMessage() == "rate_limit.bookkeeping_failed"]
        assert failures and failures[0].levelno == logging.ERROR
        assert failures[0].tier == "OPERATOR"

    def test_bookkeeping_failure_on_cacheable_response(self, limited_client, caplog) -> None:
        caplog.set_level(logging.ERROR, logger="app.core.rate_limit")

        with patch("app.core.rate_limit.decorate", side_effect=RuntimeError("header write failed")):
            resp = limited_client.get("/v1/public/routes")

        assert resp.status_code == 200
        assert resp.json()["data"] == []
        assert LIMIT_HEADER not in resp.headers
        assert "rate_limit.bookkeeping_failed" in [r.getMessage() for r in caplog.records]

    def test_headers_can_be_switched_off(self, limited_client, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "include_headers", False)

        resp = limited_client.get("/v1/public/routes")

        assert resp.status_code == 200
        assert LIMIT_HEADER not in resp.headers


@pytest.fixture
def shared_counter_client(memory_store, redis_cache):
    """App whose SEARCH budget (1) is counted in the fake Redis."""

    limiter = RateLimiter(
        RedisCounterStore(redis_cache),
        build_tier_policies(RateLimitSettings(search_max_requests=1)),
    )
    app = create_app(store=memory_store, cache=redis_cache, rate_limiter=limiter)
    with TestClient(app) as client:
        yield client


class TestSharedCounters:
    def test_redis_backed_limits(self, shared_counter_client, fake_redis) -> None:
        params = {"q": "galle"}

        assert shared_counter_client.get("/v1/public/search/routes", params=params).status_code == 200
        assert shared_counter_client.get("/v1/public/search/routes", params=params).status_code == 429
        assert fake_redis.data["rate_limit:SEARCH:testclient"] == "1"

    def test_redis_outage_fails_open(self, shared_counter_client, fake_redis) -> None:
        fake_redis.fail = True

        for _ in range(3):
            resp = shared_counter_client.get("/v1/public/search/routes", params={"q": "galle"})
            assert resp.status_code == 200
