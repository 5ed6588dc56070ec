"""Rate limiting counter stores.

Two interchangeable strategies behind ``AbstractCounterStore``: shared Redis
counters (tumbling window) and a per-process sliding-window fallback used
when no Redis target is configured.
"""
