# FILE: core/views.py

"""
CORE VIEWS

Health checks for the auth service.
"""

import logging
from django.conf import settings
from django.db import connection, DatabaseError
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny

logger = logging.getLogger(__name__)


def _database_ok():
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        return True
    except DatabaseError as e:
        logger.error(f"Database health check failed: {e}")
        return False


class HealthCheckView(APIView):
    """
    Checks the database and, when it backs rate limiting, Redis.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        health_status = {
            "status": "healthy",
            "checks": {}
        }

        if _database_ok():
            health_status["checks"]["database"] = "ok"
        else:
            health_status["checks"]["database"] = "error"
            health_status["status"] = "unhealthy"

        if settings.RATE_LIMIT_BACKEND == "redis":
            from users.services.redis_service import redis_service

            if redis_service.ping():
                health_status["checks"]["redis"] = "ok"
            else:
                health_status["checks"]["redis"] = "error"
                health_status["status"] = "unhealthy"

        status_code = 200 if health_status["status"] == "healthy" else 503
        return Response(health_status, status=status_code)


class ReadinessCheckView(APIView):
    """
    Returns 200 if the service is ready to accept traffic.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        if _database_ok():
            return Response({"status": "ready"})
        return Response({"status": "not ready"}, status=503)


class LivenessCheckView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response({"status": "alive"})
