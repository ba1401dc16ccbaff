"""
Redis-backed live session store.

Each live session is one hash `<prefix>:live:<live_id>` holding its channel,
host, liveness flags and viewer counter. Counter updates run as Lua scripts so
concurrent joins and leaves never lose an update and the count never drops
below zero.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from loguru import logger
from redis.asyncio import Redis

from live_access.domain.live.viewer.viewer_models import ViewerSession, channel_for_live
from live_access.utils.app_errors import NotFoundError

_INCREMENT_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
return redis.call('HINCRBY', KEYS[1], 'viewer_count', 1)
"""

_DECREMENT_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local count = tonumber(redis.call('HGET', KEYS[1], 'viewer_count') or '0')
if count <= 0 then
    redis.call('HSET', KEYS[1], 'viewer_count', 0)
    return 0
end
return redis.call('HINCRBY', KEYS[1], 'viewer_count', -1)
"""

_SET_COUNT_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
redis.call('HSET', KEYS[1], 'viewer_count', ARGV[1])
return tonumber(ARGV[1])
"""


def _decode(value: Any) -> Any:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RedisLiveSessionStore:
    """Session lookup plus the atomic viewer counter used by `ViewerAccountant`."""

    def __init__(self, redis_client: Redis, *, prefix: str = "live-access") -> None:
        self._redis_client = redis_client
        self._prefix = prefix

    def _make_key(self, live_id: str) -> str:
        return f"{self._prefix}:live:{live_id}"

    async def start_live(self, live_id: str, *, host_identity: str | None = None) -> ViewerSession:
        session = ViewerSession(
            live_id=live_id,
            channel=channel_for_live(live_id),
            host_identity=host_identity,
            viewer_count=0,
            is_live=True,
            started_at=_utc_now(),
        )
        mapping = {
            "live_id": session.live_id,
            "channel": session.channel,
            "viewer_count": 0,
            "is_live": 1,
            "started_at": session.started_at.isoformat(),
        }
        if host_identity:
            mapping["host_identity"] = host_identity

        await self._redis_client.hset(self._make_key(live_id), mapping=mapping)
        await self._redis_client.hdel(self._make_key(live_id), "ended_at")
        logger.info("Live session started: live_id={}", live_id)
        return session

    async def end_live(self, live_id: str) -> ViewerSession:
        session = await self.get_live(live_id)
        if session is None:
            raise NotFoundError(f"Live session not found: {live_id}")

        session.is_live = False
        session.ended_at = _utc_now()
        await self._redis_client.hset(
            self._make_key(live_id),
            mapping={"is_live": 0, "ended_at": session.ended_at.isoformat()},
        )
        logger.info("Live session ended: live_id={}", live_id)
        return session

    async def get_live(self, live_id: str) -> ViewerSession | None:
        raw = await self._redis_client.hgetall(self._make_key(live_id))
        if not raw:
            return None

        data = {_decode(k): _decode(v) for k, v in raw.items()}
        return ViewerSession(
            live_id=data.get("live_id", live_id),
            channel=data.get("channel") or channel_for_live(live_id),
            host_identity=data.get("host_identity") or None,
            viewer_count=max(0, int(data.get("viewer_count") or 0)),
            is_live=data.get("is_live") == "1",
            started_at=data.get("started_at") or None,
            ended_at=data.get("ended_at") or None,
        )

    async def _run_counter_script(self, script: str, live_id: str, *args: Any) -> int:
        result = int(await self._redis_client.eval(script, 1, self._make_key(live_id), *args))
        if result < 0:
            raise NotFoundError(f"Live session not found: {live_id}")
        return result

    async def increment(self, live_id: str) -> int:
        return await self._run_counter_script(_INCREMENT_LUA, live_id)

    async def decrement(self, live_id: str) -> int:
        return await self._run_counter_script(_DECREMENT_LUA, live_id)

    async def set_count(self, live_id: str, count: int) -> int:
        return await self._run_counter_script(_SET_COUNT_LUA, live_id, max(0, count))
