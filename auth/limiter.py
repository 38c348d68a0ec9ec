"""
auth/limiter.py -- Fixed-window rate limiter keyed by (action, client identifier).

Built on the asyncio API of the `limits` library (the engine underneath
slowapi) rather than the slowapi decorator: the gateway must consult the
limiter before it parses or validates the request body, and a route decorator
only runs after FastAPI has already resolved the body.

Algorithm (limits.aio FixedWindowRateLimiter):
  - The window for a key starts at its first hit and lasts window_seconds.
  - Each check increments the counter; the request is allowed while
    count <= limit.
  - Once the window expires the storage backend drops the key, so the next
    hit starts a fresh window. Expired keys are evicted lazily on access and
    by the memory backend's periodic expiry sweep.

Only async storage backends are accepted ("async+memory://",
"async+redis://..."). A check is awaited from the request task, so a network
backend suspends that task instead of blocking the event loop.

The increment-and-compare is a single storage operation guarded by a per-key
lock in the memory backend (an atomic INCR on redis), so two in-flight
requests sharing a key can never both observe the last free slot. Different
keys never contend.

A burst straddling two windows can reach 2x the limit. The target is abuse
throttling, not exact quota enforcement.

One RateLimiter instance is created in the API lifespan and held on
app.state. If each module created its own, counters would never be shared
and limits would never trigger.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits import parse as parse_rate_limit
from limits.aio.storage import Storage as AsyncStorage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string

from auth.models import Action, RateLimitKey
from core.config import Settings

logger = logging.getLogger("authgate.auth.limiter")

DEFAULT_STORAGE_URI = "async+memory://"


@dataclass(frozen=True)
class RateLimitPreset:
    """How many requests one client may make per window for one action."""

    limit: int
    window_seconds: int

    @classmethod
    def from_expression(cls, expression: str) -> RateLimitPreset:
        """Build a preset from limits notation, e.g. "5/minute" or "10 per 15 minutes"."""
        item = parse_rate_limit(expression)
        return cls(limit=item.amount, window_seconds=item.get_expiry())


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int  # seconds; 0 when allowed
    reset_at: float  # epoch seconds when the current window ends


def presets_from_settings(settings: Settings) -> dict[Action, RateLimitPreset]:
    """Login, registration and OAuth initiation share one preset; reset has its own."""
    auth = RateLimitPreset.from_expression(settings.auth_rate_limit)
    reset = RateLimitPreset.from_expression(settings.reset_rate_limit)
    return {
        Action.LOGIN: auth,
        Action.REGISTER: auth,
        Action.OAUTH_INITIATE: auth,
        Action.RESET_PASSWORD: reset,
    }


class RateLimiter:
    """Per-(action, client) fixed-window limiter.

    Usage:
        limiter = RateLimiter(presets_from_settings(get_settings()))
        decision = await limiter.check_action(Action.LOGIN, "203.0.113.7")
        if not decision.allowed:
            ...  # respond 429 with Retry-After: decision.retry_after
    """

    def __init__(
        self,
        presets: dict[Action, RateLimitPreset],
        storage_uri: str = DEFAULT_STORAGE_URI,
    ) -> None:
        missing = [a.value for a in Action if a not in presets]
        if missing:
            raise ValueError(f"No rate limit preset for: {', '.join(missing)}")
        storage = storage_from_string(storage_uri)
        if not isinstance(storage, AsyncStorage):
            raise ValueError(f"Rate limit storage must be an async backend (async+...): {storage_uri!r}")
        self.presets = dict(presets)
        self._storage = storage
        self._strategy = FixedWindowRateLimiter(storage)

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        return cls(presets_from_settings(settings), storage_uri=settings.rate_limit_storage_uri)

    async def check(self, key: RateLimitKey, limit: int, window_seconds: int) -> RateLimitDecision:
        """Count one request against key and decide whether it may proceed."""
        if limit < 1 or window_seconds < 1:
            raise ValueError("limit and window_seconds must both be positive")
        item = RateLimitItemPerSecond(limit, window_seconds)
        identifiers = (key.action.value, key.client_identifier)

        allowed = await self._strategy.hit(item, *identifiers)
        stats = await self._strategy.get_window_stats(item, *identifiers)

        now = time.time()
        retry_after = 0
        if not allowed:
            retry_after = max(1, math.ceil(stats.reset_time - now))
        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=stats.remaining,
            retry_after=retry_after,
            reset_at=stats.reset_time,
        )

    async def check_action(self, action: Action, client_identifier: str) -> RateLimitDecision:
        """check() using the configured preset for action."""
        preset = self.presets[action]
        return await self.check(RateLimitKey(action, client_identifier), preset.limit, preset.window_seconds)

    async def reset(self) -> None:
        """Drop every counter. Used by tests and operational tooling."""
        await self._storage.reset()
        logger.info("Rate limit counters reset")
