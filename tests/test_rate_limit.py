# tests/test_rate_limit.py
"""
Fixed-window rate limiting on both counter stores.
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

import fakeredis
from django.test import TestCase, override_settings

from users.models import RateLimitBucket
from users.services.rate_limit_service import (
    DatabaseRateLimitBackend,
    RateLimitService,
    RateLimitStorageError,
    RedisRateLimitBackend,
    window_start_for,
)


# ==============================================================================
# HELPERS
# ==============================================================================

class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def _at(hour=0, minute=5, second=0):
    return datetime(2026, 1, 1, hour, minute, second, tzinfo=dt_timezone.utc)


# ==============================================================================
# WINDOWS
# ==============================================================================

class TestWindowStart(TestCase):

    def test_window_is_floored(self):
        self.assertEqual(window_start_for(_at(0, 14, 59), 15 * 60), _at(0, 0))
        self.assertEqual(window_start_for(_at(0, 15, 0), 15 * 60), _at(0, 15))
        self.assertEqual(window_start_for(_at(3, 59, 59), 60 * 60), _at(3, 0))


# ==============================================================================
# DATABASE BACKEND
# ==============================================================================

class TestDatabaseRateLimiter(TestCase):

    def setUp(self):
        self.clock = FrozenClock(_at(0, 5))
        self.limiter = RateLimitService(backend=DatabaseRateLimitBackend(), clock=self.clock)

    def test_allows_up_to_max_hits(self):
        for expected in range(1, 4):
            decision = self.limiter.check_and_increment("otp_request:email", "a@b.com", 15, 3)
            self.assertFalse(decision.limited)
            self.assertEqual(decision.hits, expected)

        decision = self.limiter.check_and_increment("otp_request:email", "a@b.com", 15, 3)
        self.assertTrue(decision.limited)
        self.assertEqual(decision.hits, 4)
        # window 00:00-00:15, now 00:05
        self.assertEqual(decision.retry_after_seconds, 600)

    def test_one_row_per_bucket(self):
        for _ in range(5):
            self.limiter.check_and_increment("otp_request:email", "a@b.com", 15, 3)

        bucket = RateLimitBucket.objects.get()
        self.assertEqual(bucket.hits, 5)
        self.assertEqual(bucket.window_start, _at(0, 0))

    def test_next_window_starts_fresh(self):
        for _ in range(4):
            self.limiter.check_and_increment("otp_request:email", "a@b.com", 15, 3)

        self.clock.advance(minutes=10)
        decision = self.limiter.check_and_increment("otp_request:email", "a@b.com", 15, 3)

        self.assertFalse(decision.limited)
        self.assertEqual(decision.hits, 1)
        self.assertEqual(RateLimitBucket.objects.count(), 2)

    def test_keys_and_scopes_are_independent(self):
        for _ in range(3):
            self.limiter.check_and_increment("otp_request:email", "a@b.com", 15, 3)

        self.assertFalse(self.limiter.check_and_increment("otp_request:email", "c@d.com", 15, 3).limited)
        self.assertFalse(self.limiter.check_and_increment("otp_verify:email", "a@b.com", 15, 3).limited)

    @override_settings(OTP_RATE_LIMITS={"otp_request:email": (15, 1)})
    def test_limits_come_from_settings(self):
        self.assertEqual(self.limiter.limits_for("otp_request:email"), (15, 1))
        # scopes missing from settings fall back to the defaults
        self.assertEqual(self.limiter.limits_for("otp_verify_hourly:ip"), (60, 150))

        self.assertFalse(self.limiter.check_and_increment("otp_request:email", "a@b.com").limited)
        self.assertTrue(self.limiter.check_and_increment("otp_request:email", "a@b.com").limited)

    @override_settings(OTP_RATE_LIMITS={"otp_request:email": (15, 5)})
    def test_explicit_zero_max_hits_is_kept(self):
        decision = self.limiter.check_and_increment("otp_request:email", "a@b.com", max_hits=0)

        self.assertTrue(decision.limited)
        self.assertEqual(decision.hits, 1)

    def test_zero_window_is_rejected(self):
        with self.assertRaises(ValueError):
            self.limiter.check_and_increment("otp_request:email", "a@b.com", window_minutes=0, max_hits=3)

        self.assertFalse(RateLimitBucket.objects.exists())

    @override_settings(OTP_RATE_LIMITS={"otp_verify:email": (15, 1), "otp_verify_hourly:email": (60, 1)})
    def test_check_many_returns_strictest_limit(self):
        checks = [("otp_verify:email", "a@b.com"), ("otp_verify_hourly:email", "a@b.com")]
        self.limiter.check_many(checks)

        decision = self.limiter.check_many(checks)

        self.assertTrue(decision.limited)
        self.assertEqual(decision.scope, "otp_verify_hourly:email")
        # hourly window 00:00-01:00, now 00:05
        self.assertEqual(decision.retry_after_seconds, 55 * 60)

    def test_check_many_increments_every_bucket(self):
        self.limiter.check_many([
            ("otp_request:email", "a@b.com"),
            ("otp_request:ip", "5.6.7.8"),
            ("otp_request:subnet", "5.6.7.0/24"),
        ])
        self.assertEqual(RateLimitBucket.objects.count(), 3)

    def test_unknown_network_keys_are_skipped(self):
        decision = self.limiter.check_many([
            ("otp_request:email", "a@b.com"),
            ("otp_request:ip", "unknown"),
            ("otp_request:subnet", "unknown"),
        ])

        self.assertFalse(decision.limited)
        self.assertEqual(
            list(RateLimitBucket.objects.values_list("scope", flat=True)),
            ["otp_request:email"],
        )

    def test_scope_hits_since(self):
        for _ in range(3):
            self.limiter.check_and_increment("otp_verify:ip", "5.6.7.8", 15, 100)
        self.limiter.check_and_increment("otp_request:ip", "5.6.7.8", 15, 100)
        self.limiter.check_and_increment("otp_request:email", "a@b.com", 15, 100)

        hits = self.limiter.scope_hits_since(_at(0, 0) - timedelta(days=1))

        self.assertEqual(hits[0], ("otp_verify:ip", 3))
        # ties ordered by scope name
        self.assertEqual(hits[1:], [("otp_request:email", 1), ("otp_request:ip", 1)])

    def test_database_errors_are_wrapped(self):
        from django.db import DatabaseError

        with mock.patch.object(
            RateLimitBucket.objects, "select_for_update", side_effect=DatabaseError("down")
        ):
            with self.assertRaises(RateLimitStorageError):
                self.limiter.check_and_increment("otp_request:email", "a@b.com", 15, 3)


# ==============================================================================
# REDIS BACKEND
# ==============================================================================

class TestRedisRateLimiter(TestCase):

    def setUp(self):
        self.redis = fakeredis.FakeRedis(decode_responses=True)
        self.redis.flushall()
        self.clock = FrozenClock(_at(0, 5))
        self.limiter = RateLimitService(
            backend=RedisRateLimitBackend(redis=self.redis),
            clock=self.clock,
        )

    def test_allows_up_to_max_hits(self):
        for _ in range(3):
            self.assertFalse(self.limiter.check_and_increment("otp_verify:ip", "5.6.7.8", 15, 3).limited)

        decision = self.limiter.check_and_increment("otp_verify:ip", "5.6.7.8", 15, 3)
        self.assertTrue(decision.limited)
        self.assertEqual(decision.retry_after_seconds, 600)

    def test_keys_expire(self):
        self.limiter.check_and_increment("otp_verify:ip", "2001:db8::1", 15, 3)

        (key,) = self.redis.keys("ratelimit|*")
        self.assertTrue(key.endswith("|2001:db8::1"))
        self.assertGreater(self.redis.ttl(key), 0)

    def test_scope_hits_since(self):
        for _ in range(2):
            self.limiter.check_and_increment("otp_verify:ip", "5.6.7.8", 15, 100)
        self.limiter.check_and_increment("otp_request:email", "odd|name@b.com", 15, 100)

        hits = self.limiter.scope_hits_since(_at(0, 0) - timedelta(hours=1))

        self.assertEqual(hits, [("otp_verify:ip", 2), ("otp_request:email", 1)])

    @override_settings(RATE_LIMIT_BACKEND="redis")
    def test_backend_selected_from_settings(self):
        self.assertIsInstance(RateLimitService().backend, RedisRateLimitBackend)

    def test_backend_defaults_to_database(self):
        self.assertIsInstance(RateLimitService().backend, DatabaseRateLimitBackend)
