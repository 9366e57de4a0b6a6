# users/services/rate_limit_service.py
"""
Fixed-window rate limiting shared by every app process.

Counters live in the database (default) or Redis. Either way a hit is
recorded and read back in one atomic step, so two racing requests can never
both observe "not yet limited".
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from users.models import RateLimitBucket
from users.otp_config import DEFAULT_RATE_LIMITS
from users.utils.network import UNKNOWN_NETWORK_KEY

logger = logging.getLogger("users.security")

TELEMETRY_RETENTION_SECONDS = 24 * 60 * 60


class RateLimitStorageError(Exception):
    """Counter store could not be reached or written."""


@dataclass(frozen=True)
class RateLimitDecision:
    limited: bool
    retry_after_seconds: Optional[int] = None
    hits: int = 0
    scope: str = ""


def window_start_for(now: datetime, window_seconds: int) -> datetime:
    epoch = int(now.timestamp())
    return datetime.fromtimestamp(epoch - (epoch % window_seconds), tz=dt_timezone.utc)


class DatabaseRateLimitBackend:
    """RateLimitBucket rows; one row lock per increment."""

    def increment(self, scope: str, key: str, window_start: datetime, window_seconds: int) -> int:
        try:
            with transaction.atomic():
                bucket, _ = RateLimitBucket.objects.select_for_update().get_or_create(
                    scope=scope,
                    key=key,
                    window_start=window_start,
                )
                RateLimitBucket.objects.filter(pk=bucket.pk).update(
                    hits=F("hits") + 1,
                    updated_at=timezone.now(),
                )
                return RateLimitBucket.objects.filter(pk=bucket.pk).values_list("hits", flat=True).get()
        except DatabaseError as e:
            raise RateLimitStorageError(str(e)) from e

    def scope_hits_since(self, since: datetime, limit: int) -> List[Tuple[str, int]]:
        try:
            rows = (
                RateLimitBucket.objects.filter(updated_at__gte=since)
                .values("scope")
                .annotate(total=Sum("hits"))
                .order_by("-total", "scope")[:limit]
            )
            return [(row["scope"], int(row["total"] or 0)) for row in rows]
        except DatabaseError as e:
            raise RateLimitStorageError(str(e)) from e


class RedisRateLimitBackend:
    """
    INCR + EXPIRE in one MULTI block.

    Keys are kept for 24h (or the window, if longer) so telemetry can still
    sum recent hits per scope.
    """

    KEY_PREFIX = "ratelimit"

    def __init__(self, redis=None):
        self._redis = redis

    @property
    def client(self):
        if self._redis is None:
            from users.services.redis_service import redis_service
            return redis_service.client
        return self._redis

    def _get_key(self, scope: str, key: str, window_start: datetime) -> str:
        # key goes last: emails and IPv6 addresses may contain separators
        return f"{self.KEY_PREFIX}|{scope}|{int(window_start.timestamp())}|{key}"

    def increment(self, scope: str, key: str, window_start: datetime, window_seconds: int) -> int:
        import redis

        redis_key = self._get_key(scope, key, window_start)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(redis_key)
            pipe.expire(redis_key, max(window_seconds, TELEMETRY_RETENTION_SECONDS))
            hits, _ = pipe.execute()
            return int(hits)
        except redis.RedisError as e:
            raise RateLimitStorageError(str(e)) from e

    def scope_hits_since(self, since: datetime, limit: int) -> List[Tuple[str, int]]:
        import redis

        cutoff = int(since.timestamp())
        totals = {}
        try:
            for redis_key in self.client.scan_iter(match=f"{self.KEY_PREFIX}|*"):
                parts = redis_key.split("|", 3)
                if len(parts) != 4:
                    continue
                _, scope, window_epoch, _ = parts
                # a window that started before the cutoff may still have recent hits
                if int(window_epoch) + TELEMETRY_RETENTION_SECONDS < cutoff:
                    continue
                totals[scope] = totals.get(scope, 0) + int(self.client.get(redis_key) or 0)
        except redis.RedisError as e:
            raise RateLimitStorageError(str(e)) from e

        ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        return ordered[:limit]


class RateLimitService:
    """
    Production-grade rate limiting over a pluggable counter store.
    """

    def __init__(self, backend=None, clock=None):
        self._backend = backend
        self._clock = clock or timezone.now

    @property
    def backend(self):
        if self._backend is not None:
            return self._backend
        if getattr(settings, "RATE_LIMIT_BACKEND", "database") == "redis":
            return RedisRateLimitBackend()
        return DatabaseRateLimitBackend()

    def limits_for(self, scope: str) -> Tuple[int, int]:
        """(window_minutes, max_hits) for a scope."""
        limits = getattr(settings, "OTP_RATE_LIMITS", None) or {}
        return limits.get(scope) or DEFAULT_RATE_LIMITS[scope]

    def check_and_increment(
        self,
        scope: str,
        key: str,
        window_minutes: Optional[int] = None,
        max_hits: Optional[int] = None,
    ) -> RateLimitDecision:
        """
        Record one hit and report whether the bucket is now over its limit.

        Raises:
            RateLimitStorageError: counter store unavailable
        """
        if window_minutes is None or max_hits is None:
            default_window, default_max = self.limits_for(scope)
            if window_minutes is None:
                window_minutes = default_window
            if max_hits is None:
                max_hits = default_max

        window_seconds = int(window_minutes) * 60
        if window_seconds <= 0:
            raise ValueError(f"Rate limit window for {scope} must be positive, got {window_minutes}")
        now = self._clock()
        window_start = window_start_for(now, window_seconds)

        hits = self.backend.increment(scope, key, window_start, window_seconds)
        if hits <= max_hits:
            return RateLimitDecision(limited=False, hits=hits, scope=scope)

        window_end = window_start + timedelta(seconds=window_seconds)
        retry_after = max(1, math.ceil((window_end - now).total_seconds()))
        logger.info(f"Rate limit hit on {scope} ({hits}/{max_hits})")
        return RateLimitDecision(
            limited=True,
            retry_after_seconds=retry_after,
            hits=hits,
            scope=scope,
        )

    def check_many(self, checks: Iterable[Tuple[str, str]]) -> RateLimitDecision:
        """
        Apply every (scope, key) bucket; limited if ANY bucket is over.

        All buckets are incremented even after one trips. Keys that are empty
        or the unknown-network sentinel are skipped.
        """
        strictest = None
        for scope, key in checks:
            if not key or key == UNKNOWN_NETWORK_KEY:
                continue
            decision = self.check_and_increment(scope, key)
            if decision.limited and (
                strictest is None or decision.retry_after_seconds > strictest.retry_after_seconds
            ):
                strictest = decision

        return strictest or RateLimitDecision(limited=False)

    def scope_hits_since(self, since: datetime, limit: int = 20) -> List[Tuple[str, int]]:
        return self.backend.scope_hits_since(since, limit)


# Singleton instance
rate_limit_service = RateLimitService()
