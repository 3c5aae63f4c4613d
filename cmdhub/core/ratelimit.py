# cmdhub/core/ratelimit.py
"""Fixed-window mutation budget backed by Redis.

Counters are keyed by (action, identifier). The window starts with the
first increment and is never extended by later ones. When Redis is
unavailable the limiter fails open and reports the decision as bypassed.
"""

import logging
import math
from dataclasses import dataclass
from enum import StrEnum

from redis.asyncio import Redis
from redis.exceptions import RedisError

from cmdhub.core.errors import RateLimited

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "cmdhub:ratelimit:"
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_WINDOW_SECONDS = 3600


class DecisionKind(StrEnum):
    ALLOWED = "allowed"
    DENIED = "denied"
    BYPASSED = "bypassed"  # counter store unavailable, failing open


@dataclass
class RateLimitDecision:
    """Outcome of a rate limit check.

    Attributes:
        kind: allowed, denied, or bypassed when the store is unavailable.
        remaining: Attempts left in the current window.
        reset_in: Seconds until the window closes.
        message: Human readable reason when denied.
    """

    kind: DecisionKind
    remaining: int
    reset_in: int
    message: str | None = None

    @property
    def allowed(self) -> bool:
        return self.kind is not DecisionKind.DENIED


@dataclass
class CounterSnapshot:
    """Current state of one active counter."""

    action: str
    identifier: str
    count: int
    remaining: int
    reset_in: int
    blocked: bool


class RateLimiter:
    """Redis-backed fixed-window rate limiter.

    Example:
        >>> limiter = RateLimiter(redis_client)
        >>> decision = await limiter.check("deploy", application_id)
        >>> if decision.allowed:
        ...     await do_deploy()
        ...     await limiter.increment("deploy", application_id)
    """

    def __init__(
        self,
        redis: Redis,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        self._redis = redis
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    @staticmethod
    def key(action: str, identifier: str) -> str:
        return f"{RATE_LIMIT_PREFIX}{action}:{identifier}"

    async def check(self, action: str, identifier: str = "system") -> RateLimitDecision:
        """Check whether the action may run. Never modifies the counter.

        Args:
            action: Action namespace (e.g. "update", "sync", "deploy").
            identifier: Command name or application ID the quota belongs to.

        Returns:
            RateLimitDecision for the pair.
        """
        key = self.key(action, identifier)
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.get(key)
                pipe.ttl(key)
                current, ttl = await pipe.execute()
        except RedisError as e:
            logger.error("Rate limit check failed for %s (%s): %s", action, identifier, e)
            return RateLimitDecision(
                kind=DecisionKind.BYPASSED,
                remaining=self.max_attempts,
                reset_in=self.window_seconds,
            )

        count = int(current) if current else 0
        reset_in = ttl if ttl and ttl > 0 else self.window_seconds

        if count >= self.max_attempts:
            logger.warning(
                "Rate limit reached: %s (%s)", action, identifier, extra={"action": action}
            )
            return RateLimitDecision(
                kind=DecisionKind.DENIED,
                remaining=0,
                reset_in=reset_in,
                message=(
                    "Rate limit reached. Try again in "
                    f"{math.ceil(reset_in / 60)} minutes."
                ),
            )

        return RateLimitDecision(
            kind=DecisionKind.ALLOWED,
            remaining=self.max_attempts - count,
            reset_in=reset_in,
        )

    async def enforce(self, action: str, identifier: str = "system") -> RateLimitDecision:
        """Check and raise when denied.

        Raises:
            RateLimited: If the quota for the pair is exhausted.
        """
        decision = await self.check(action, identifier)
        if not decision.allowed:
            raise RateLimited(
                decision.message or "Rate limit reached",
                reset_in=decision.reset_in,
                remaining=decision.remaining,
            )
        return decision

    async def increment(self, action: str, identifier: str = "system") -> int:
        """Count one attempt against the pair's window.

        The window is created with its TTL and incremented inside a single
        MULTI/EXEC transaction, so concurrent callers cannot both observe a
        counter below the limit.

        Returns:
            The new count, or 0 if the counter store is unavailable.
        """
        key = self.key(action, identifier)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=self.window_seconds, nx=True)
                pipe.incr(key)
                _, count = await pipe.execute()
        except RedisError as e:
            logger.error(
                "Rate limit increment failed for %s (%s): %s", action, identifier, e
            )
            return 0

        logger.debug("Rate limit: %s (%s) -> %d/%d", action, identifier, count, self.max_attempts)
        return int(count)

    async def reset(self, action: str, identifier: str = "system") -> None:
        """Drop the counter for the pair."""
        try:
            await self._redis.delete(self.key(action, identifier))
            logger.info("Rate limit reset: %s (%s)", action, identifier)
        except RedisError as e:
            logger.error("Rate limit reset failed for %s: %s", action, e)

    async def active_counters(self) -> list[CounterSnapshot]:
        """List every live counter in the namespace.

        Returns:
            Snapshots ordered by key, empty if the store is unavailable.
        """
        snapshots: list[CounterSnapshot] = []
        try:
            async for key in self._redis.scan_iter(match=f"{RATE_LIMIT_PREFIX}*"):
                key = key.decode() if isinstance(key, bytes) else key
                current = await self._redis.get(key)
                if current is None:
                    continue
                ttl = await self._redis.ttl(key)
                action, _, identifier = key[len(RATE_LIMIT_PREFIX):].partition(":")
                count = int(current)
                snapshots.append(
                    CounterSnapshot(
                        action=action,
                        identifier=identifier,
                        count=count,
                        remaining=max(0, self.max_attempts - count),
                        reset_in=max(ttl, 0),
                        blocked=count >= self.max_attempts,
                    )
                )
        except RedisError as e:
            logger.error("Failed to read rate limit counters: %s", e)
            return []
        return sorted(snapshots, key=lambda s: (s.action, s.identifier))
