"""Fail-safe Redis cache façade.

Every public coroutine returns normally: backend errors, timeouts and an
unconfigured target all degrade to a miss (reads) or ``False``/``None``
(writes and counters). Callers therefore always fall back to the document
store, which stays the source of truth.

Connection handling:
- The client is created lazily on first use and reused afterwards.
- Before each operation, if not connected, one reconnect (PING) is attempted;
  concurrent callers wait for and share a single attempt.
- Any failed operation marks the façade disconnected; the next call retries.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import redis.asyncio as redis

from app.core.config import CacheSettings
from app.core.logging import redact_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[], "redis.Redis"]


class ConnectionState(str, Enum):
    """Observable connection state of the cache façade."""

    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class RedisCache:
    """Redis-backed key-value cache that never raises.

    Attributes:
        configured: Whether a connection target (URL or host) was provided.
        state: Current ConnectionState.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        host: str | None = None,
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
        socket_timeout: float = 2.0,
        connect_timeout: float = 2.0,
        operation_timeout: float = 2.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._url = url or None
        self._host = host or None
        self._port = port
        self._db = db
        self._password = password
        self._socket_timeout = socket_timeout
        self._connect_timeout = connect_timeout
        self._operation_timeout = operation_timeout
        self._client_factory = client_factory or self._build_client
        self._client: redis.Redis | None = None
        self._state = ConnectionState.UNINITIALIZED
        self._connect_lock = asyncio.Lock()
        self._connect_attempts = 0

        if not self.configured:
            logger.info(
                "cache.not_configured",
                extra={"reason": "no REDIS_URL or REDIS_HOST", "mode": "always_miss"},
            )

    @classmethod
    def from_settings(cls, cache_settings: CacheSettings) -> RedisCache:
        """Build the façade from CacheSettings."""

        return cls(
            url=cache_settings.url,
            host=cache_settings.host,
            port=cache_settings.port,
            db=cache_settings.db,
            password=cache_settings.password,
            socket_timeout=cache_settings.socket_timeout_seconds,
            connect_timeout=cache_settings.connect_timeout_seconds,
            operation_timeout=cache_settings.operation_timeout_seconds,
        )

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"RedisCache(target={self.target!r}, state={self._state.value})"

    @property
    def configured(self) -> bool:
        return bool(self._url or self._host)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def target(self) -> str:
        """Connection target safe for logging (credentials masked)."""

        if self._url:
            return redact_url(self._url)
        if self._host:
            return f"{self._host}:{self._port}/{self._db}"
        return "none"

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _build_client(self) -> redis.Redis:
        options: dict[str, Any] = {
            "decode_responses": True,
            "socket_timeout": self._socket_timeout,
            "socket_connect_timeout": self._connect_timeout,
        }
        if self._url:
            return redis.from_url(self._url, **options)
        return redis.Redis(
            host=self._host,
            port=self._port,
            db=self._db,
            password=self._password,
            **options,
        )

    def _usable(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._client is not None

    async def _ensure_connected(self) -> bool:
        """Connect (or reconnect) if needed. Returns True when usable.

        Concurrent callers share one attempt: whoever waited on the lock while
        another caller pinged takes that outcome instead of pinging again.
        """

        if not self.configured:
            return False
        if self._usable():
            return True

        attempt = self._connect_attempts
        async with self._connect_lock:
            if self._connect_attempts != attempt:
                return self._usable()

            try:
                if self._client is None:
                    self._client = self._client_factory()
                await asyncio.wait_for(self._client.ping(), timeout=self._operation_timeout)
            except Exception as exc:
                self._connect_attempts += 1
                self._state = ConnectionState.DISCONNECTED
                logger.warning(
                    "cache.connect_failed",
                    extra={
                        "target": self.target,
                        "error_type": type(exc).__name__,
                        "error_msg": str(exc),
                    },
                )
                return False

            self._connect_attempts += 1
            previous = self._state
            self._state = ConnectionState.CONNECTED
            logger.info(
                "cache.connected",
                extra={"target": self.target, "reconnect": previous is ConnectionState.DISCONNECTED},
            )
            return True

    def _mark_disconnected(self, operation: str, key: str, exc: BaseException) -> None:
        was_connected = self._state is ConnectionState.CONNECTED
        self._state = ConnectionState.DISCONNECTED
        logger.warning(
            "cache.operation_failed",
            extra={
                "operation": operation,
                "cache_key": key,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        if was_connected:
            logger.warning("cache.disconnected", extra={"target": self.target})

    async def _execute(
        self,
        operation: str,
        key: str,
        command: Callable[[redis.Redis], Awaitable[T]],
        default: T,
    ) -> T:
        """Run one backend command under the never-raise contract."""

        if not await self._ensure_connected():
            if self.configured:
                logger.warning(
                    "cache.unavailable",
                    extra={"operation": operation, "cache_key": key, "target": self.target},
                )
            else:
                logger.debug(
                    "cache.skipped",
                    extra={"operation": operation, "cache_key": key, "reason": "not_configured"},
                )
            return default

        assert self._client is not None
        try:
            return await asyncio.wait_for(command(self._client), timeout=self._operation_timeout)
        except Exception as exc:
            self._mark_disconnected(operation, key, exc)
            return default

    async def ping(self) -> bool:
        """Return True when the backend answers a PING."""

        async def _ping(client: redis.Redis) -> bool:
            return bool(await client.ping())

        return await self._execute("ping", "", _ping, False)

    async def close(self) -> None:
        """Close the connection pool. Safe to call repeatedly."""

        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as exc:
            logger.warning(
                "cache.close_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
        self._state = ConnectionState.DISCONNECTED
        logger.info("cache.disconnected", extra={"target": self.target, "reason": "closed"})

    # ------------------------------------------------------------------
    # Key-value operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        """Return the cached value, or None on miss, expiry or outage."""

        async def _get(client: redis.Redis) -> str | None:
            return await client.get(key)

        value = await self._execute("get", key, _get, None)
        logger.debug("cache.get", extra={"cache_key": key, "hit": value is not None})
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """Store a value, optionally expiring after ttl_seconds.

        Returns:
            True when the backend acknowledged the write, False otherwise
            (including a non-positive ttl_seconds, which Redis would reject).
        """

        if ttl_seconds is not None and ttl_seconds <= 0:
            logger.warning("cache.invalid_ttl", extra={"cache_key": key, "ttl_s": ttl_seconds})
            return False

        async def _set(client: redis.Redis) -> bool:
            if ttl_seconds is not None:
                return bool(await client.set(key, value, ex=int(ttl_seconds)))
            return bool(await client.set(key, value))

        stored = await self._execute("set", key, _set, False)
        logger.debug("cache.set", extra={"cache_key": key, "ttl_s": ttl_seconds, "stored": stored})
        return stored

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True only if the key existed."""

        async def _delete(client: redis.Redis) -> bool:
            return (await client.delete(key)) > 0

        deleted = await self._execute("delete", key, _delete, False)
        logger.debug("cache.delete", extra={"cache_key": key, "deleted": deleted})
        return deleted

    async def exists(self, key: str) -> bool:
        async def _exists(client: redis.Redis) -> bool:
            return (await client.exists(key)) == 1

        return await self._execute("exists", key, _exists, False)

    async def delete_many(self, *keys: str) -> int:
        """Delete several exact keys in one round trip. Returns the number removed."""

        if not keys:
            return 0

        async def _delete_many(client: redis.Redis) -> int:
            return int(await client.delete(*keys))

        return await self._execute("delete_many", ",".join(keys), _delete_many, 0)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (uses SCAN, not KEYS)."""

        async def _delete_pattern(client: redis.Redis) -> int:
            matched = [key async for key in client.scan_iter(match=pattern, count=100)]
            if not matched:
                return 0
            return int(await client.delete(*matched))

        removed = await self._execute("delete_pattern", pattern, _delete_pattern, 0)
        logger.debug("cache.delete_pattern", extra={"pattern": pattern, "removed": removed})
        return removed

    # ------------------------------------------------------------------
    # Counter primitives (shared rate-limit counters)
    # ------------------------------------------------------------------

    async def incr(self, key: str) -> int | None:
        """Atomically increment a counter. Returns the new value, or None on failure."""

        async def _incr(client: redis.Redis) -> int:
            return int(await client.incr(key))

        return await self._execute("incr", key, _incr, None)

    async def decr(self, key: str) -> int | None:
        """Atomically decrement a counter. Returns the new value, or None on failure."""

        async def _decr(client: redis.Redis) -> int:
            return int(await client.decr(key))

        return await self._execute("decr", key, _decr, None)

    async def expire(self, key: str, seconds: int) -> bool:
        async def _expire(client: redis.Redis) -> bool:
            return bool(await client.expire(key, int(seconds)))

        return await self._execute("expire", key, _expire, False)

    async def ttl(self, key: str) -> int | None:
        """Remaining time-to-live in seconds.

        Returns:
            Seconds left, -1 if the key has no expiry, -2 if it is absent,
            or None when the backend could not be reached.
        """

        async def _ttl(client: redis.Redis) -> int:
            return int(await client.ttl(key))

        return await self._execute("ttl", key, _ttl, None)

    # ------------------------------------------------------------------
    # JSON helpers for handler payloads
    # ------------------------------------------------------------------

    async def get_json(self, key: str) -> Any | None:
        """Return a decoded JSON payload; undecodable values count as a miss."""

        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cache.decode_failed", extra={"cache_key": key})
            return None

    async def set_json(self, key: str, payload: Any, ttl_seconds: int | None = None) -> bool:
        return await self.set(key, json.dumps(payload, default=str), ttl_seconds)
