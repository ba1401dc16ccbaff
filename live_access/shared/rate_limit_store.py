"""
Redis-backed rate limit store.

The consume step (refill window, spend a point, set a block) runs as a single
Lua script, so it is atomic across every process sharing the Redis instance.
State lives in one hash per (policy, key) and expires with its window or block.
Timestamps come from the wall clock because processes do not share a monotonic
clock.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger
from redis.asyncio import Redis

from live_access.services.rate_limiter import RateLimitDecision, RateLimitPolicy

_LUA_SCRIPT = """
local key = KEYS[1]

local points = tonumber(ARGV[1])
local duration = tonumber(ARGV[2])
local block = tonumber(ARGV[3])
local now = tonumber(ARGV[4])

local fields = redis.call('HMGET', key, 'remaining', 'window_start', 'blocked_until')
local remaining = fields[1] and tonumber(fields[1])
local window_start = fields[2] and tonumber(fields[2])
local blocked_until = fields[3] and tonumber(fields[3])

if blocked_until and now < blocked_until then
    return {0, 0, tostring(blocked_until - now)}
end

if blocked_until or not window_start or now - window_start >= duration then
    remaining = points
    window_start = now
    blocked_until = nil
end

local allowed = 0
local retry_after = 0
if remaining > 0 then
    allowed = 1
    remaining = remaining - 1
    redis.call('HSET', key, 'remaining', remaining, 'window_start', window_start)
    redis.call('HDEL', key, 'blocked_until')
else
    if block > 0 then
        blocked_until = now + block
    else
        blocked_until = window_start + duration
    end
    retry_after = blocked_until - now
    redis.call('HSET', key, 'remaining', 0, 'window_start', window_start, 'blocked_until', blocked_until)
end

local expire_at = math.max(window_start + duration, blocked_until or 0)
redis.call('PEXPIRE', key, math.ceil((expire_at - now) * 1000))

return {allowed, remaining, tostring(retry_after)}
"""


class RedisRateLimitStore:
    """Shared store for `RateLimiter`, keyed `<prefix>:rl:<policy>:{<key>}`."""

    def __init__(
        self,
        redis_client: Redis,
        *,
        prefix: str = "live-access",
        now: Callable[[], float] | None = None,
    ) -> None:
        self._redis_client = redis_client
        self._prefix = prefix
        self._clock = now or time.time

    def _make_key(self, policy: RateLimitPolicy, key: str) -> str:
        return f"{self._prefix}:rl:{policy.name}:{{{key}}}"

    async def consume(self, policy: RateLimitPolicy, key: str) -> RateLimitDecision:
        now = float(self._clock())
        try:
            result = await self._redis_client.eval(
                _LUA_SCRIPT,
                1,
                self._make_key(policy, key),
                policy.points,
                policy.duration_seconds,
                policy.block_duration_seconds,
                now,
            )
        except Exception as exc:
            # Fail open while Redis is unreachable.
            logger.error(
                "Rate limit consume failed: policy={} key={} error={}",
                policy.name,
                key,
                exc,
            )
            return RateLimitDecision(True, policy.points)

        if not isinstance(result, (list, tuple)) or len(result) != 3:
            raise ValueError(f"Unexpected Lua response: {result}")

        allowed_raw, remaining_raw, retry_raw = result
        return RateLimitDecision(
            allowed=bool(int(float(allowed_raw))),
            remaining_points=int(float(remaining_raw)),
            retry_after_seconds=float(retry_raw),
        )

    async def retry_after(self, policy: RateLimitPolicy, key: str) -> float:
        blocked_until = await self._redis_client.hget(self._make_key(policy, key), "blocked_until")
        if blocked_until is None:
            return 0.0
        return max(0.0, float(blocked_until) - float(self._clock()))

    async def reset(self, policy: RateLimitPolicy, key: str) -> None:
        await self._redis_client.delete(self._make_key(policy, key))
