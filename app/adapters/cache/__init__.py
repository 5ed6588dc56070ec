"""Cache adapters.

The only backend is Redis, wrapped in a façade that degrades to "miss" when
the backend is absent or failing.
"""

from app.adapters.cache.redis_cache import ConnectionState, RedisCache

__all__ = ["ConnectionState", "RedisCache"]
