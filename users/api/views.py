# users/api/views.py
import hmac
import logging

from django.conf import settings
from django.http import HttpResponseRedirect
from django.utils.decorators import method_decorator
from django.views.decorators.cache import never_cache
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import (
    AuthRequestException,
    DatabaseUnavailableException,
    DeliveryFailedException,
    DeliveryUnavailableException,
    InvalidEmailException,
    InvalidOtpCodeException,
    MissingEmailException,
    MissingOtpFieldsException,
    OtpAuthenticationFailed,
    RateLimitException,
    UnsupportedActionException,
)
from security.services import audit_service
from users.decorators.response_timing import response_timing_floor
from users.otp_config import (
    EVENT_OTP_REQUEST,
    EVENT_OTP_VERIFY,
    OUTCOME_DB_UNAVAILABLE,
    OUTCOME_DELIVERY_FAILED,
    OUTCOME_DELIVERY_UNAVAILABLE,
    OUTCOME_INVALID_CODE,
    OUTCOME_INVALID_EMAIL,
    OUTCOME_INVALID_OR_EXPIRED,
    OUTCOME_INVALID_REQUEST,
    OUTCOME_NOT_ALLOWED,
    OUTCOME_RATE_LIMITED,
)
from users.services import otp_service, session_service
from users.services.session_service import VISITOR_SESSION
from users.utils.network import resolve_network_fingerprint
from users.utils.security import otp_security
from users.validators import normalize_email

from .serializers import (
    ACTION_REQUEST_OTP,
    ACTION_VERIFY_OTP,
    SessionActionSerializer,
    SessionSerializer,
)

logger = logging.getLogger("users.security")

MAGIC_LINK_VIA = "magic_link"

REQUEST_FAILURES = {
    OUTCOME_INVALID_EMAIL: InvalidEmailException,
    OUTCOME_DB_UNAVAILABLE: DatabaseUnavailableException,
    OUTCOME_DELIVERY_UNAVAILABLE: DeliveryUnavailableException,
    OUTCOME_DELIVERY_FAILED: DeliveryFailedException,
}

VERIFY_FAILURES = {
    OUTCOME_INVALID_EMAIL: InvalidEmailException,
    OUTCOME_INVALID_CODE: InvalidOtpCodeException,
    OUTCOME_DB_UNAVAILABLE: DatabaseUnavailableException,
}


def resolve_lang(value) -> str:
    if value in settings.SUPPORTED_LANGUAGES:
        return value
    return settings.DEFAULT_LANGUAGE


# ============================================================
# SESSION
# ============================================================

@method_decorator(never_cache, name="dispatch")
class SessionView(APIView):
    """
    GET: current session. POST: requestOtp / verifyOtp. DELETE: sign out.
    """
    permission_classes = [AllowAny]

    def get(self, request):
        session = request.user or VISITOR_SESSION
        return Response(SessionSerializer(session).data)

    def post(self, request):
        payload = request.data if isinstance(request.data, dict) else {}
        serializer = SessionActionSerializer(data=payload)
        if not serializer.is_valid():
            raise AuthRequestException()

        data = serializer.validated_data
        action = data.get("action")
        fingerprint = resolve_network_fingerprint(request)

        if action == ACTION_REQUEST_OTP:
            return self.request_otp(request, data, fingerprint)
        if action == ACTION_VERIFY_OTP:
            return self.verify_otp(request, data, fingerprint)

        raise UnsupportedActionException()

    def delete(self, request):
        response = Response({"ok": True, "role": session_service.ROLE_VISITOR})
        return session_service.clear_role_cookie(response)

    # --------------------------------------------------------

    @response_timing_floor
    def request_otp(self, request, data, fingerprint):
        state = otp_security.generate_state()
        try:
            response = self._request_otp(request, data, fingerprint, state)
        except APIException as exc:
            response = self.handle_exception(exc)

        # a fresh state on every attempt, whatever the outcome
        return session_service.set_magic_state_cookie(response, state)

    def _request_otp(self, request, data, fingerprint, state):
        email = data.get("email")
        if not email:
            audit_service.record(
                event_type=EVENT_OTP_REQUEST,
                outcome=OUTCOME_INVALID_REQUEST,
                network_fingerprint=fingerprint,
            )
            raise MissingEmailException()

        context = otp_service.OtpRequestContext(
            lang=resolve_lang(data.get("lang")),
            app_origin=request.build_absolute_uri("/").rstrip("/"),
            magic_link_state=state,
        )
        result = otp_service.request_otp(email, fingerprint, context)

        # not_allowed must look exactly like success
        if result.ok or result.reason == OUTCOME_NOT_ALLOWED:
            return Response({"ok": True, "email": result.email or normalize_email(email)})

        if result.reason == OUTCOME_RATE_LIMITED:
            raise RateLimitException(retry_after_seconds=result.retry_after_seconds)

        raise REQUEST_FAILURES.get(result.reason, DatabaseUnavailableException)()

    def verify_otp(self, request, data, fingerprint):
        email = data.get("email")
        code = data.get("otpCode")
        trust_device = bool(data.get("trustDevice"))

        if not email or not code:
            audit_service.record(
                event_type=EVENT_OTP_VERIFY,
                outcome=OUTCOME_INVALID_REQUEST,
                target_email=email or None,
                network_fingerprint=fingerprint,
            )
            raise MissingOtpFieldsException()

        result = otp_service.verify_login_otp(email, code, fingerprint, via="api")
        if not result.ok:
            raise VERIFY_FAILURES.get(result.reason, OtpAuthenticationFailed)()

        response = Response(
            {
                "ok": True,
                "role": result.role,
                "authMethod": session_service.AUTH_METHOD_OTP,
                "email": result.email,
                "trustDevice": trust_device,
            },
            status=status.HTTP_200_OK,
        )
        cookie_value = session_service.create_role_session_value(result.role, result.email)
        return session_service.set_role_cookie(response, cookie_value, persistent=trust_device)


# ============================================================
# MAGIC LINK
# ============================================================

@method_decorator(never_cache, name="dispatch")
class MagicLinkView(APIView):
    """
    One-click login. Always redirects to the language home page; the role
    cookie is only set when the link verifies.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        fingerprint = resolve_network_fingerprint(request)
        lang = resolve_lang(request.query_params.get("lang"))
        token = request.query_params.get("token") or ""
        response = HttpResponseRedirect(f"/{lang}")

        if not token.strip():
            audit_service.record(
                event_type=EVENT_OTP_VERIFY,
                outcome=OUTCOME_INVALID_REQUEST,
                network_fingerprint=fingerprint,
                metadata={"via": MAGIC_LINK_VIA},
            )
            return response

        resolution = otp_service.resolve_otp_magic_link_token(token)
        if not resolution.ok:
            audit_service.record(
                event_type=EVENT_OTP_VERIFY,
                outcome=OUTCOME_INVALID_OR_EXPIRED,
                network_fingerprint=fingerprint,
                metadata={"via": MAGIC_LINK_VIA},
            )
            return response

        # the link only works in the browser that asked for it
        cookie_state = request.COOKIES.get(settings.MAGIC_LINK_STATE_COOKIE_NAME) or ""
        if not hmac.compare_digest(cookie_state.encode(), resolution.magic_link_state.encode()):
            audit_service.record(
                event_type=EVENT_OTP_VERIFY,
                outcome=OUTCOME_INVALID_REQUEST,
                target_email=resolution.email,
                network_fingerprint=fingerprint,
                metadata={"via": MAGIC_LINK_VIA, "reason": "state_mismatch"},
            )
            return response

        result = otp_service.verify_login_otp(
            resolution.email,
            resolution.otp_code,
            fingerprint,
            via=MAGIC_LINK_VIA,
        )
        if not result.ok:
            return response

        cookie_value = session_service.create_role_session_value(result.role, result.email)
        session_service.set_role_cookie(response, cookie_value, persistent=False)
        return session_service.clear_magic_state_cookie(response)
