"""
api/limiter.py -- Fixed-window rate limiter over the `limits` library.

Import the shared RateLimiter from app.state.rate_limiter in route handlers
and call limiter.hit(key, limit, window_seconds) before doing any work.

Keys are composed by the route (e.g. "login-request:<ip>:<email>"), because
several limits depend on values from the request body and cannot be
expressed as a decorator keyed on the remote address alone.

Counter storage:
  LimitsCounterStore wraps a `limits` storage (the layer slowapi is built on)
  with its FixedWindowRateLimiter strategy. RATE_LIMIT_STORAGE_URI picks the
  backend: "memory://" (default) keeps counters per process, so N workers
  allow up to N x limit; redis://host:6379 shares them across instances.

A single RateLimiter instance is created in the lifespan and attached to
app.state. If each module built its own, each would get an isolated counter
and limits would never trigger.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Protocol

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from core.errors import RateLimited

# ---------------------------------------------------------------------------
# Limits used by the routes: (limit, window_seconds)
# ---------------------------------------------------------------------------

WEBHOOK_LIMIT = (120, 60)
LOGIN_REQUEST_LIMIT = (5, 15 * 60)
LOGIN_VERIFY_LIMIT = (10, 15 * 60)
ADMIN_LOGIN_LIMIT = (10, 15 * 60)
ADMIN_REGISTER_IP_LIMIT = (30, 15 * 60)
ADMIN_REGISTER_EMAIL_LIMIT = (5, 15 * 60)


@dataclass(frozen=True)
class RateLimitOutcome:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds when the current window ends


class CounterStore(Protocol):
    def increment(self, key: str, limit: int, window_seconds: int) -> RateLimitOutcome: ...


# ---------------------------------------------------------------------------
# Counter store
# ---------------------------------------------------------------------------


class LimitsCounterStore:
    """Counter store backed by a `limits` storage URI (memory://, redis://, ...)."""

    def __init__(self, storage_uri: str = "memory://") -> None:
        self._storage = storage_from_string(storage_uri or "memory://")
        self._strategy = FixedWindowRateLimiter(self._storage)

    def increment(self, key: str, limit: int, window_seconds: int) -> RateLimitOutcome:
        item = RateLimitItemPerSecond(limit, window_seconds)
        allowed = self._strategy.hit(item, key)
        stats = self._strategy.get_window_stats(item, key)
        return RateLimitOutcome(allowed=allowed, remaining=stats.remaining, reset_at=float(stats.reset_time))

    def clear(self, key: str, limit: int, window_seconds: int) -> None:
        """Drop the current window for key."""
        self._strategy.clear(RateLimitItemPerSecond(limit, window_seconds), key)

    def reset(self) -> None:
        """Drop every counter the storage holds."""
        self._storage.reset()


# ---------------------------------------------------------------------------
# Limiter facade
# ---------------------------------------------------------------------------


class RateLimiter:
    def __init__(self, store: CounterStore) -> None:
        self.store = store

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitOutcome:
        """Count one attempt against key. Raises RateLimited when exhausted."""
        outcome = self.store.increment(key, limit, window_seconds)
        if not outcome.allowed:
            raise RateLimited(reset_at=outcome.reset_at)
        return outcome


def build_rate_limiter(storage_uri: str = "memory://") -> RateLimiter:
    return RateLimiter(LimitsCounterStore(storage_uri))


def retry_after_seconds(reset_at: float, now: float | None = None) -> int:
    current = now if now is not None else time.time()
    return max(1, math.ceil(reset_at - current))


def client_ip(request: Request) -> str:
    """First X-Forwarded-For entry, else the socket peer, else "unknown".

    Deployments must sit behind a proxy that overwrites X-Forwarded-For;
    otherwise a client can pick its own rate-limit bucket.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
