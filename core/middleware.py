# FILE: core/middleware.py

"""
CUSTOM MIDDLEWARE

Request/response processing middleware for:
- Request logging with request ids
- Security headers
- Unhandled error responses
"""

import time
import uuid
import logging
from django.utils.deprecation import MiddlewareMixin
from django.http import JsonResponse

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1500


class RequestLoggingMiddleware(MiddlewareMixin):
    """
    Log all incoming requests with timing information.

    Query strings are never logged: magic-link tokens travel there.
    """

    def process_request(self, request):
        request.request_id = uuid.uuid4().hex[:8]
        request.start_time = time.monotonic()

        logger.info(f"[{request.request_id}] {request.method} {request.path}")

    def process_response(self, request, response):
        if hasattr(request, "start_time"):
            duration_ms = (time.monotonic() - request.start_time) * 1000

            logger.info(
                f"[{getattr(request, 'request_id', 'unknown')}] "
                f"Response: {response.status_code} ({duration_ms:.2f}ms)"
            )

            if duration_ms > SLOW_REQUEST_MS:
                logger.warning(
                    f"Slow request: {request.method} {request.path} "
                    f"took {duration_ms:.2f}ms"
                )

        if hasattr(request, "request_id"):
            response["X-Request-ID"] = request.request_id

        return response


class SecurityHeadersMiddleware(MiddlewareMixin):
    """
    Add security headers to all responses.
    """

    def process_response(self, request, response):
        response["X-Frame-Options"] = "DENY"
        response["X-Content-Type-Options"] = "nosniff"
        response["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response["Permissions-Policy"] = (
            "accelerometer=(), camera=(), geolocation=(), "
            "gyroscope=(), magnetometer=(), microphone=(), "
            "payment=(), usb=()"
        )
        return response


class ExceptionHandlerMiddleware(MiddlewareMixin):
    """
    Global exception handler for unhandled errors.
    """

    def process_exception(self, request, exception):
        logger.exception(
            f"Unhandled exception in {request.method} {request.path}: {exception}"
        )

        return JsonResponse(
            {
                "success": False,
                "error": "server_error",
                "message": "Unexpected error. Please try again later.",
                "request_id": getattr(request, "request_id", None),
            },
            status=500,
        )
