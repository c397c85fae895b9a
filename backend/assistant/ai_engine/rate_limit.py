# assistant/ai_engine/rate_limit.py
"""
Per-user, per-endpoint fixed-window rate limiting for AI-backed endpoints.

Each endpoint class owns a (window_ms, max_requests) budget. A window opens
on the first request and is reset lazily: the first request that arrives
after the window elapsed starts a new one with a count of 1. No timers.

Known limitations
-----------------
- With ``InMemoryRateLimitStore`` every process keeps its own counters, so
  the effective global limit is ``max_requests x process count``. Use
  ``CacheRateLimitStore`` (Redis) to share budgets.
- Fixed windows allow a burst of up to ``2 x max_requests`` straddling a
  window boundary. Accepted for an abuse-prevention heuristic.
"""

from __future__ import annotations

import functools
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from django.conf import settings
from django.core.cache import caches

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000

# Sweep cadence for idle in-memory entries.
SWEEP_INTERVAL_MS = 5 * MINUTE_MS


@dataclass(frozen=True)
class RateLimit:
    window_ms: int
    max_requests: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in_ms: int

    @property
    def retry_after(self) -> int:
        """Seconds until the window resets, rounded up, as sent in Retry-After."""
        return max(0, math.ceil(self.reset_in_ms / 1000))


# Generation-heavy classes get tighter budgets than read or apply operations.
DEFAULT_LIMITS: Dict[str, RateLimit] = {
    "chat": RateLimit(MINUTE_MS, 20),
    "decompose": RateLimit(MINUTE_MS, 10),
    "enrich": RateLimit(MINUTE_MS, 10),
    "research": RateLimit(MINUTE_MS, 10),
    "draft": RateLimit(MINUTE_MS, 10),
    "similar-tasks": RateLimit(MINUTE_MS, 15),
    "apply-enrichment": RateLimit(MINUTE_MS, 20),
    "insights": RateLimit(MINUTE_MS, 30),
}


class InMemoryRateLimitStore:
    """
    Process-local counters: ``{(identity, endpoint): (count, window_start_ms, window_ms)}``.

    Entries idle for more than twice their window are swept opportunistically
    from ``hit``; dropping an entry can only reset a budget early.
    """

    def __init__(self, sweep_interval_ms: int = SWEEP_INTERVAL_MS):
        self._entries: Dict[Tuple[str, str], Tuple[int, int, int]] = {}
        self._lock = threading.Lock()
        self._sweep_interval_ms = sweep_interval_ms
        self._last_sweep_ms: Optional[int] = None

    def hit(self, key: Tuple[str, str], limit: RateLimit, now_ms: int) -> RateLimitDecision:
        with self._lock:
            self._maybe_sweep(now_ms)

            entry = self._entries.get(key)
            if entry is None or now_ms - entry[1] >= limit.window_ms:
                self._entries[key] = (1, now_ms, limit.window_ms)
                return RateLimitDecision(True, limit.max_requests - 1, limit.window_ms)

            count, window_start, _ = entry
            reset_in = window_start + limit.window_ms - now_ms
            if count >= limit.max_requests:
                return RateLimitDecision(False, 0, reset_in)

            self._entries[key] = (count + 1, window_start, limit.window_ms)
            return RateLimitDecision(True, limit.max_requests - count - 1, reset_in)

    def _maybe_sweep(self, now_ms: int) -> None:
        if self._last_sweep_ms is None:
            self._last_sweep_ms = now_ms
            return
        if now_ms - self._last_sweep_ms < self._sweep_interval_ms:
            return
        self._last_sweep_ms = now_ms
        stale = [k for k, (_, start, window) in self._entries.items() if now_ms - start >= window * 2]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug(f"Rate limit sweep removed {len(stale)} idle entries")

    def __len__(self) -> int:
        return len(self._entries)


class CacheRateLimitStore:
    """
    Shared counters on the Django cache (Redis in production).

    The window start is derived from the key's creation: ``cache.add`` opens
    the window with a TTL of one window, ``cache.incr`` counts inside it, and
    expiry performs the lazy reset. Cache failures fail open.
    """

    def __init__(self, cache_alias: str = "default", prefix: str = "ratelimit"):
        self.cache_alias = cache_alias
        self.prefix = prefix

    def _key(self, key: Tuple[str, str]) -> str:
        identity, endpoint = key
        return f"{self.prefix}:{endpoint}:{identity}"

    def hit(self, key: Tuple[str, str], limit: RateLimit, now_ms: int) -> RateLimitDecision:
        cache = caches[self.cache_alias]
        base = self._key(key)
        count_key = f"{base}:count"
        timeout = max(1, math.ceil(limit.window_ms / 1000))
        try:
            if cache.add(f"{base}:start", now_ms, timeout=timeout):
                cache.set(count_key, 1, timeout=timeout)
                return RateLimitDecision(True, limit.max_requests - 1, limit.window_ms)

            # incr is atomic, so concurrent hits each see their own position
            try:
                count = cache.incr(count_key)
            except ValueError:
                # count key expired before the window key
                if cache.add(count_key, 1, timeout=timeout):
                    count = 1
                else:
                    count = cache.incr(count_key)

            window_start = cache.get(f"{base}:start", now_ms)
            reset_in = max(0, window_start + limit.window_ms - now_ms)
            if count > limit.max_requests:
                return RateLimitDecision(False, 0, reset_in)
            return RateLimitDecision(True, limit.max_requests - count, reset_in)
        except Exception as e:
            logger.error(f"Rate limit cache failure for {base}: {str(e)}")
            return RateLimitDecision(True, limit.max_requests, limit.window_ms)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """
    ``check(identity, endpoint_class)`` answers whether one more request fits
    the current window. The store and the clock are injected so tests can use
    a fake clock and deployments can share state through the cache.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimit]] = None,
        store=None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.limits = dict(DEFAULT_LIMITS)
        if limits:
            self.limits.update(limits)
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock or _wall_clock_ms

    def check(self, identity: str, endpoint_class: str) -> RateLimitDecision:
        try:
            limit = self.limits[endpoint_class]
        except KeyError:
            raise ValueError(f"Unknown rate limit class: {endpoint_class}")

        decision = self.store.hit((str(identity), endpoint_class), limit, self.clock())
        if not decision.allowed:
            logger.info(
                f"Rate limit reached for user {identity} on '{endpoint_class}' "
                f"(retry in {decision.retry_after}s)"
            )
        return decision


def _limits_from_settings() -> Dict[str, RateLimit]:
    overrides = getattr(settings, "AI_RATE_LIMITS", None) or {}
    return {name: RateLimit(int(window), int(maximum)) for name, (window, maximum) in overrides.items()}


@functools.lru_cache(maxsize=None)
def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter built from settings. ``cache_clear()`` rebuilds it."""
    if getattr(settings, "AI_RATE_LIMIT_STORE", "memory") == "cache":
        store = CacheRateLimitStore()
    else:
        store = InMemoryRateLimitStore()
    return RateLimiter(limits=_limits_from_settings(), store=store)
