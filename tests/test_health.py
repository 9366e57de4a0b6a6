# tests/test_health.py

from unittest import mock

from django.test import TestCase, override_settings
from rest_framework.test import APIClient


class TestHealthChecks(TestCase):

    def setUp(self):
        self.client = APIClient()

    def test_health(self):
        response = self.client.get("/health/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "healthy", "checks": {"database": "ok"}})
        self.assertIn("X-Request-ID", response)
        self.assertEqual(response["X-Frame-Options"], "DENY")

    @override_settings(RATE_LIMIT_BACKEND="redis", USE_FAKE_REDIS=True)
    def test_health_with_redis(self):
        from users.services.redis_service import redis_service

        redis_service.reset()
        response = self.client.get("/health/")

        self.assertEqual(response.json()["checks"]["redis"], "ok")

    @override_settings(RATE_LIMIT_BACKEND="redis")
    def test_redis_down(self):
        with mock.patch("users.services.redis_service.redis_service.ping", return_value=False):
            response = self.client.get("/health/")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["status"], "unhealthy")

    def test_ready_and_live(self):
        self.assertEqual(self.client.get("/health/ready/").json(), {"status": "ready"})
        self.assertEqual(self.client.get("/health/live/").status_code, 200)
