# FILE: core/exceptions.py

"""
CUSTOM EXCEPTIONS

Auth-facing API errors with deliberately generic client messages.
The precise failure reason is only ever written to the security audit log.
"""

from rest_framework.exceptions import APIException
from rest_framework import status


class AuthRequestException(APIException):
    """Base exception for malformed auth requests"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request."
    default_code = "invalid_request"


class UnsupportedActionException(AuthRequestException):
    default_detail = "Unsupported action. Use requestOtp or verifyOtp."
    default_code = "unsupported_action"


class MissingEmailException(AuthRequestException):
    default_detail = "Missing email"
    default_code = "invalid_request"


class MissingOtpFieldsException(AuthRequestException):
    default_detail = "Missing email or OTP code"
    default_code = "invalid_request"


class InvalidEmailException(AuthRequestException):
    default_detail = "Invalid email"
    default_code = "invalid_email"


class InvalidOtpCodeException(AuthRequestException):
    """Code is malformed (not merely wrong)"""
    default_detail = "OTP code must be 6 digits"
    default_code = "invalid_code"


class OtpAuthenticationFailed(APIException):
    """
    Wrong, expired, exhausted or throttled code.

    All of these share one response so callers cannot tell them apart.
    """
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid or expired OTP code"
    default_code = "invalid_or_expired"


class AdminRequiredException(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Unauthorized"
    default_code = "unauthorized"


class RateLimitException(APIException):
    """Rate limit exceeded"""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many requests. Please try again later."
    default_code = "rate_limited"

    def __init__(self, retry_after_seconds=None, detail=None, code=None):
        super().__init__(detail=detail, code=code)
        self.retry_after_seconds = retry_after_seconds


class DatabaseUnavailableException(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Database is required for OTP login"
    default_code = "db_unavailable"


class DeliveryUnavailableException(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Email delivery is not available right now"
    default_code = "delivery_unavailable"


class DeliveryFailedException(APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Could not send the login email"
    default_code = "delivery_failed"


class TelemetryUnavailableException(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Security telemetry is unavailable"
    default_code = "db_unavailable"


# Exception handler for DRF
def custom_exception_handler(exc, context):
    """
    Custom exception handler for consistent error responses.
    """
    from rest_framework.views import exception_handler

    response = exception_handler(exc, context)

    if response is not None:
        if isinstance(response.data, dict) and "detail" in response.data:
            response.data = {
                "success": False,
                "error": str(response.data["detail"]),
                "error_code": getattr(exc, "default_code", "error"),
            }

        retry_after = getattr(exc, "retry_after_seconds", None)
        if retry_after:
            response.data["retry_after_seconds"] = retry_after
            response["Retry-After"] = str(retry_after)

        response["Cache-Control"] = "no-store"

    return response
