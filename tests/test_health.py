"""Tests for the health endpoint and OpenAPI customizations."""

from __future__ import annotations


def test_health_without_redis(client) -> None:
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["service"] == "bus-tracking-api"
    assert body["cache"] == "not_configured"
    assert body["rate_limit_backend"] == "memory"
    assert body["store_backend"] == "memory"


def test_health_with_redis(cached_client) -> None:
    body = cached_client.get("/health").json()

    assert body["cache"] == "connected"
    assert body["rate_limit_backend"] == "redis"


def test_health_reports_redis_outage(cached_client, fake_redis) -> None:
    fake_redis.fail = True

    resp = cached_client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["cache"] == "disconnected"


def test_openapi_security(client) -> None:
    schema = client.get("/openapi.json").json()

    assert "BearerAuth" in schema["components"]["securitySchemes"]
    assert schema["paths"]["/health"]["get"]["security"] == []
    assert schema["paths"]["/v1/public/routes"]["get"]["security"] == []
    assert schema["security"] == [{"BearerAuth": []}]
    assert "security" not in schema["paths"]["/v1/operator/buses"]["get"]
    assert {"Public", "Search", "Operator", "Admin", "Health"} <= {t["name"] for t in schema["tags"]}
