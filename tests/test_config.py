"""Tests for settings parsing."""

from app.core.config import AppSettings, AuthSettings, CacheSettings, RateLimitSettings, StoreSettings


def test_cache_configured_by_url_or_host(monkeypatch) -> None:
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("REDIS_HOST", raising=False)

    assert CacheSettings().configured is False
    assert CacheSettings(url="redis://localhost:6379/0").configured is True
    assert CacheSettings(host="cache.internal").configured is True


def test_cache_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("REDIS_HOST", "cache.internal")
    monkeypatch.setenv("REDIS_PORT", "6380")

    cache = CacheSettings()

    assert cache.host == "cache.internal"
    assert cache.port == 6380


def test_rate_limit_defaults(monkeypatch) -> None:
    for name in ("WINDOW_SECONDS", "PUBLIC_MAX_REQUESTS", "SEARCH_MAX_REQUESTS"):
        monkeypatch.delenv(f"RATE_LIMIT_{name}", raising=False)

    rate = RateLimitSettings()

    assert rate.window_seconds == 60
    assert rate.public_max_requests == 100
    assert rate.search_max_requests == 30


def test_comma_separated_lists() -> None:
    assert AuthSettings(jwt_algorithms="HS256, RS256,").algorithms == ["HS256", "RS256"]
    assert AppSettings(cors_origins="https://a.example, https://b.example").cors_origins_list == [
        "https://a.example",
        "https://b.example",
    ]


def test_store_table_names(monkeypatch) -> None:
    monkeypatch.setenv("STORE_BUSES_TABLE", "Buses-staging")

    assert StoreSettings().buses_table == "Buses-staging"
    assert StoreSettings().routes_table == "BusRoutes"
