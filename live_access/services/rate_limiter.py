"""
Per-key rate limiting with named policies.

A policy grants `points` requests per `duration_seconds` window. The request
that finds the window exhausted blocks the key for `block_duration_seconds`
(or until the window ends when no block is configured). Every consume during
a block is rejected with the time left on the block.

Stores:
- `MemoryRateLimitStore` keeps state in this process (default). With several
  worker processes every process enforces its own quota.
- `live_access.shared.rate_limit_store.RedisRateLimitStore` keeps state in
  Redis so all processes share one quota.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger

from live_access.utils.app_errors import RateLimitExceeded

GENERAL = "general"
AUTH = "auth"
ISSUANCE = "issuance"
MESSAGING = "messaging"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Validated policy parameters."""

    name: str
    points: int
    duration_seconds: float
    block_duration_seconds: float = 0

    @staticmethod
    def from_dict(name: str, data: Mapping[str, Any]) -> "RateLimitPolicy":
        try:
            points = int(data["points"])
            duration = float(data["duration_seconds"])
            block = float(data.get("block_duration_seconds", 0))
        except KeyError as exc:
            raise ValueError(f"Missing rate limit parameter for {name}: {exc.args[0]}") from exc
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid rate limit parameter for {name}: {exc}") from exc

        if points <= 0:
            raise ValueError(f"points must be > 0 (got {points})")
        if duration <= 0:
            raise ValueError(f"duration_seconds must be > 0 (got {duration})")
        if block < 0:
            raise ValueError(f"block_duration_seconds must be >= 0 (got {block})")

        return RateLimitPolicy(
            name=name,
            points=points,
            duration_seconds=duration,
            block_duration_seconds=block,
        )


DEFAULT_POLICIES: dict[str, RateLimitPolicy] = {
    GENERAL: RateLimitPolicy(GENERAL, points=100, duration_seconds=15 * 60, block_duration_seconds=60),
    AUTH: RateLimitPolicy(AUTH, points=5, duration_seconds=15 * 60, block_duration_seconds=15 * 60),
    ISSUANCE: RateLimitPolicy(ISSUANCE, points=20, duration_seconds=60, block_duration_seconds=5 * 60),
    MESSAGING: RateLimitPolicy(MESSAGING, points=10, duration_seconds=60, block_duration_seconds=2 * 60),
}


def build_policies(overrides: Mapping[str, Mapping[str, Any]] | None = None) -> dict[str, RateLimitPolicy]:
    """Default policies with per-policy parameter overrides applied."""
    policies = dict(DEFAULT_POLICIES)
    for name, params in (overrides or {}).items():
        base = policies.get(name)
        merged: dict[str, Any] = {}
        if base is not None:
            merged = {
                "points": base.points,
                "duration_seconds": base.duration_seconds,
                "block_duration_seconds": base.block_duration_seconds,
            }
        merged.update(params)
        policies[name] = RateLimitPolicy.from_dict(name, merged)
    return policies


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining_points: int
    retry_after_seconds: float = 0.0


@dataclass
class RateLimitState:
    remaining_points: int
    window_start: float
    window_end: float
    blocked_until: float | None = None

    def expired(self, now: float) -> bool:
        return now >= max(self.window_end, self.blocked_until or 0.0)


def consume_point(
    state: RateLimitState | None,
    policy: RateLimitPolicy,
    now: float,
) -> tuple[RateLimitState, RateLimitDecision]:
    """Apply one consume to `state` and return the new state and the decision."""
    if state is not None and state.blocked_until is not None:
        if now < state.blocked_until:
            return state, RateLimitDecision(False, 0, state.blocked_until - now)
        state = None

    if state is None or now >= state.window_end:
        state = RateLimitState(
            remaining_points=policy.points,
            window_start=now,
            window_end=now + policy.duration_seconds,
        )

    if state.remaining_points > 0:
        state.remaining_points -= 1
        return state, RateLimitDecision(True, state.remaining_points)

    if policy.block_duration_seconds > 0:
        state.blocked_until = now + policy.block_duration_seconds
    else:
        state.blocked_until = state.window_end
    return state, RateLimitDecision(False, 0, state.blocked_until - now)


class RateLimitStore(Protocol):
    async def consume(self, policy: RateLimitPolicy, key: str) -> RateLimitDecision: ...

    async def retry_after(self, policy: RateLimitPolicy, key: str) -> float: ...

    async def reset(self, policy: RateLimitPolicy, key: str) -> None: ...


class MemoryRateLimitStore:
    """In-process store; consume is atomic per (policy, key)."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, purge_every: int = 1000) -> None:
        self._clock = clock
        self._purge_every = purge_every
        self._states: dict[tuple[str, str], RateLimitState] = {}
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._consumed = 0

    def _lock_for(self, slot: tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(slot)
            if lock is None:
                lock = self._locks[slot] = threading.Lock()
            return lock

    def consume_sync(self, policy: RateLimitPolicy, key: str) -> RateLimitDecision:
        slot = (policy.name, key)
        with self._lock_for(slot):
            now = self._clock()
            state, decision = consume_point(self._states.get(slot), policy, now)
            self._states[slot] = state

        self._consumed += 1
        if self._purge_every and self._consumed % self._purge_every == 0:
            self.purge_expired()
        return decision

    async def consume(self, policy: RateLimitPolicy, key: str) -> RateLimitDecision:
        return self.consume_sync(policy, key)

    async def retry_after(self, policy: RateLimitPolicy, key: str) -> float:
        slot = (policy.name, key)
        with self._registry_lock:
            lock = self._locks.get(slot)
        # Slots are only created by consume
        if lock is None:
            return 0.0

        with lock:
            state = self._states.get(slot)
            if state is None or state.blocked_until is None:
                return 0.0
            return max(0.0, state.blocked_until - self._clock())

    async def reset(self, policy: RateLimitPolicy, key: str) -> None:
        slot = (policy.name, key)
        with self._lock_for(slot):
            self._states.pop(slot, None)

    def purge_expired(self) -> int:
        """Drop states whose window and block are both over, with their locks.

        Returns the number of states dropped.
        """
        now = self._clock()
        with self._registry_lock:
            slots = set(self._states) | set(self._locks)

        dropped = 0
        for slot in slots:
            with self._lock_for(slot):
                state = self._states.get(slot)
                if state is not None and state.expired(now):
                    del self._states[slot]
                    dropped += 1
                    state = None
                if state is None:
                    with self._registry_lock:
                        self._locks.pop(slot, None)

        if dropped:
            logger.debug("Purged {} expired rate limit states", dropped)
        return dropped

    def __len__(self) -> int:
        return len(self._states)


class RateLimiter:
    """Named-policy rate limiter; the caller chooses the key (address or identity)."""

    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy] | None = None,
        store: RateLimitStore | None = None,
    ) -> None:
        self._policies = dict(policies if policies is not None else DEFAULT_POLICIES)
        self._store: RateLimitStore = store if store is not None else MemoryRateLimitStore()

    def policy(self, name: str) -> RateLimitPolicy:
        try:
            return self._policies[name]
        except KeyError:
            raise ValueError(f"Unknown rate limit policy: {name}") from None

    @property
    def policies(self) -> dict[str, RateLimitPolicy]:
        return dict(self._policies)

    async def consume(self, policy_name: str, key: str) -> RateLimitDecision:
        policy = self.policy(policy_name)
        decision = await self._store.consume(policy, key)
        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded: policy={} key={} retry_after={:.1f}s",
                policy_name,
                key,
                decision.retry_after_seconds,
            )
        return decision

    async def enforce(self, policy_name: str, key: str) -> RateLimitDecision:
        """Consume one point or raise `RateLimitExceeded`."""
        decision = await self.consume(policy_name, key)
        if not decision.allowed:
            raise RateLimitExceeded(policy_name, decision.retry_after_seconds)
        return decision

    async def retry_after(self, policy_name: str, key: str) -> float:
        """Seconds left on an active block for the key, 0 when not blocked."""
        return await self._store.retry_after(self.policy(policy_name), key)

    async def reset(self, policy_name: str, key: str) -> None:
        await self._store.reset(self.policy(policy_name), key)
