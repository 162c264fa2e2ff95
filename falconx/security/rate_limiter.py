"""Fixed-window rate limiting with a hard block once a window is exceeded.

Each tier keeps an independent counter per ``tier:identifier`` key. When a key
goes over its limit it is blocked for the tier's block duration, counted from
the moment the limit was crossed.

Two backends share the same contract:

- ``MemoryRateLimiter``: per-process dict. The check does not await between
  read and write, so it is safe on a single event loop.
- ``RedisRateLimiter``: one atomic Lua script per check, for deployments with
  more than one API process.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

import structlog

if TYPE_CHECKING:
    from fastapi import Request
    from redis.asyncio import Redis

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]

MAX_USER_AGENT_CHARS = 50


class RateLimitTier(StrEnum):
    PUBLIC = "public"  # anonymous detection pings
    PROTECTED = "protected"  # authenticated dashboard calls
    CRITICAL = "critical"  # sensitive reads (plan usage)


@dataclass(frozen=True)
class TierConfig:
    max_requests: int
    window_seconds: float
    block_seconds: float


TIER_CONFIGS: dict[RateLimitTier, TierConfig] = {
    RateLimitTier.PUBLIC: TierConfig(max_requests=50, window_seconds=60, block_seconds=5 * 60),
    RateLimitTier.PROTECTED: TierConfig(max_requests=200, window_seconds=60, block_seconds=2 * 60),
    RateLimitTier.CRITICAL: TierConfig(max_requests=10, window_seconds=60, block_seconds=10 * 60),
}


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single check.

    ``reset_time`` is an epoch timestamp: end of the current window when
    allowed, end of the block when denied.
    """

    allowed: bool
    reset_time: float
    remaining: int
    limit: int

    def retry_after(self, now: float) -> int:
        return max(1, int(round(self.reset_time - now)))


@dataclass
class _Entry:
    count: int
    reset_time: float
    blocked: bool = False


class RateLimiter(Protocol):
    """Contract shared by both backends."""

    clock: Clock

    async def check_limit(
        self, identifier: str, tier: RateLimitTier = RateLimitTier.PUBLIC
    ) -> RateLimitResult: ...

    async def reset_identifier(
        self, identifier: str, tier: RateLimitTier = RateLimitTier.PUBLIC
    ) -> None: ...

    async def sweep(self) -> int: ...

    async def stats(self) -> dict[str, int]: ...


def _key(identifier: str, tier: RateLimitTier) -> str:
    return f"{tier.value}:{identifier}"


class MemoryRateLimiter:
    """In-process limiter. Construct one per application."""

    def __init__(
        self,
        configs: dict[RateLimitTier, TierConfig] | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.configs = configs or dict(TIER_CONFIGS)
        self.clock = clock
        self._entries: dict[str, _Entry] = {}

    async def check_limit(
        self, identifier: str, tier: RateLimitTier = RateLimitTier.PUBLIC
    ) -> RateLimitResult:
        # No awaits below: the read-modify-write must not interleave.
        config = self.configs[tier]
        key = _key(identifier, tier)
        now = self.clock()
        entry = self._entries.get(key)

        if entry is not None and entry.blocked:
            block_end = entry.reset_time + config.block_seconds
            if now < block_end:
                return RateLimitResult(
                    allowed=False, reset_time=block_end, remaining=0, limit=config.max_requests
                )
            entry = None

        if entry is None or now >= entry.reset_time:
            entry = _Entry(count=1, reset_time=now + config.window_seconds)
            self._entries[key] = entry
            return RateLimitResult(
                allowed=True,
                reset_time=entry.reset_time,
                remaining=config.max_requests - 1,
                limit=config.max_requests,
            )

        if entry.count >= config.max_requests:
            entry.blocked = True
            entry.reset_time = now
            logger.warning(
                "rate_limit_exceeded",
                identifier=identifier,
                tier=tier.value,
                count=entry.count,
                limit=config.max_requests,
            )
            return RateLimitResult(
                allowed=False,
                reset_time=now + config.block_seconds,
                remaining=0,
                limit=config.max_requests,
            )

        entry.count += 1
        return RateLimitResult(
            allowed=True,
            reset_time=entry.reset_time,
            remaining=config.max_requests - entry.count,
            limit=config.max_requests,
        )

    async def reset_identifier(
        self, identifier: str, tier: RateLimitTier = RateLimitTier.PUBLIC
    ) -> None:
        self._entries.pop(_key(identifier, tier), None)

    async def sweep(self) -> int:
        """Drop entries whose window and block have both elapsed."""
        now = self.clock()
        expired = []
        for key, entry in self._entries.items():
            config = self.configs.get(RateLimitTier(key.split(":", 1)[0]))
            if config and now > entry.reset_time + config.block_seconds:
                expired.append(key)
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("rate_limiter_sweep", removed=len(expired))
        return len(expired)

    async def stats(self) -> dict[str, int]:
        return {
            "total_entries": len(self._entries),
            "blocked_entries": sum(1 for e in self._entries.values() if e.blocked),
        }


# KEYS[1] = bucket key
# ARGV = now, window, block, max_requests
# Returns {allowed, reset_time, remaining}
_CHECK_SCRIPT = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local block = tonumber(ARGV[3])
local max_requests = tonumber(ARGV[4])
local ttl = math.ceil(window + block)

local data = redis.call('HMGET', KEYS[1], 'count', 'reset', 'blocked')
local count = tonumber(data[1])
local reset = tonumber(data[2])
local blocked = data[3] == '1'

if count and blocked then
  if now < reset + block then
    return {0, tostring(reset + block), 0}
  end
  count = nil
end

if (not count) or now >= reset then
  reset = now + window
  redis.call('HSET', KEYS[1], 'count', 1, 'reset', tostring(reset), 'blocked', '0')
  redis.call('EXPIRE', KEYS[1], ttl)
  return {1, tostring(reset), max_requests - 1}
end

if count >= max_requests then
  redis.call('HSET', KEYS[1], 'reset', tostring(now), 'blocked', '1')
  redis.call('EXPIRE', KEYS[1], ttl)
  return {0, tostring(now + block), 0}
end

count = redis.call('HINCRBY', KEYS[1], 'count', 1)
return {1, tostring(reset), max_requests - count}
"""


class RedisRateLimiter:
    """Shared limiter backed by Redis hashes; expiry is handled by key TTLs."""

    KEY_PREFIX = "falconx:ratelimit:"

    def __init__(
        self,
        redis: Redis,
        configs: dict[RateLimitTier, TierConfig] | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.redis = redis
        self.configs = configs or dict(TIER_CONFIGS)
        self.clock = clock
        self._script = redis.register_script(_CHECK_SCRIPT)

    async def check_limit(
        self, identifier: str, tier: RateLimitTier = RateLimitTier.PUBLIC
    ) -> RateLimitResult:
        config = self.configs[tier]
        result: list[Any] = await self._script(
            keys=[self.KEY_PREFIX + _key(identifier, tier)],
            args=[self.clock(), config.window_seconds, config.block_seconds, config.max_requests],
        )
        allowed, reset_time, remaining = int(result[0]), float(result[1]), int(result[2])
        if not allowed:
            logger.warning("rate_limit_exceeded", identifier=identifier, tier=tier.value)
        return RateLimitResult(
            allowed=bool(allowed),
            reset_time=reset_time,
            remaining=max(0, remaining),
            limit=config.max_requests,
        )

    async def reset_identifier(
        self, identifier: str, tier: RateLimitTier = RateLimitTier.PUBLIC
    ) -> None:
        await self.redis.delete(self.KEY_PREFIX + _key(identifier, tier))

    async def sweep(self) -> int:
        # Keys expire on their own.
        return 0

    async def stats(self) -> dict[str, int]:
        total = blocked = 0
        async for key in self.redis.scan_iter(match=self.KEY_PREFIX + "*"):
            total += 1
            if await self.redis.hget(key, "blocked") in ("1", b"1"):
                blocked += 1
        return {"total_entries": total, "blocked_entries": blocked}


def get_client_ip(request: Request) -> str:
    """Get client IP, handling proxies."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # First IP is the original client
        ip: str = forwarded.split(",")[0].strip()
        return ip
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def get_request_identifier(request: Request) -> str:
    """Limiter key: client IP plus a truncated user agent.

    Distinct browsers behind one NAT get separate buckets.
    """
    user_agent = request.headers.get("User-Agent") or "unknown"
    return f"{get_client_ip(request)}:{user_agent[:MAX_USER_AGENT_CHARS]}"


def build_rate_limiter(backend: str, redis_url: str | None = None) -> RateLimiter:
    """Create the limiter for the configured backend."""
    if backend == "redis":
        if not redis_url:
            raise RuntimeError("RATE_LIMIT_BACKEND=redis requires REDIS_URL")
        import redis.asyncio as aioredis

        return RedisRateLimiter(aioredis.from_url(redis_url, decode_responses=True))
    return MemoryRateLimiter()
