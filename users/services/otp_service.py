# users/services/otp_service.py
"""
Passwordless email login.

Per email there is at most one active code:
    no code -> issued -> consumed | expired | exhausted

Every branch records an audit event with the true outcome; callers only
see the coarse result.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from security.services import audit_service
from users.otp_config import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_OTP_TTL_MINUTES,
    EVENT_OTP_REQUEST,
    EVENT_OTP_VERIFY,
    OUTCOME_DB_UNAVAILABLE,
    OUTCOME_DELIVERY_FAILED,
    OUTCOME_DELIVERY_UNAVAILABLE,
    OUTCOME_INVALID_CODE,
    OUTCOME_INVALID_EMAIL,
    OUTCOME_INVALID_OR_EXPIRED,
    OUTCOME_NOT_ALLOWED,
    OUTCOME_OK,
    OUTCOME_RATE_LIMITED,
    SCOPE_REQUEST_EMAIL,
    SCOPE_REQUEST_IP,
    SCOPE_REQUEST_SUBNET,
    SCOPE_VERIFY_EMAIL,
    SCOPE_VERIFY_HOURLY_EMAIL,
    SCOPE_VERIFY_HOURLY_IP,
    SCOPE_VERIFY_IP,
    SCOPE_VERIFY_SUBNET,
)
from users.services import otp_store, session_service, user_directory
from users.services.otp_mailer import REASON_PROVIDER_UNAVAILABLE, otp_mailer
from users.services.rate_limit_service import RateLimitStorageError, rate_limit_service
from users.utils.network import UNKNOWN_FINGERPRINT, NetworkFingerprint
from users.utils.security import otp_security
from users.validators import (
    is_strict_email,
    is_valid_otp_code,
    normalize_email,
    normalize_otp_code,
)

logger = logging.getLogger("users.security")

MAGIC_LINK_PATH = "/api/auth/session/magic/"

STORAGE_ERRORS = (DatabaseError, RateLimitStorageError)


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass(frozen=True)
class OtpRequestContext:
    lang: Optional[str] = None
    app_origin: Optional[str] = None
    magic_link_state: Optional[str] = None


@dataclass(frozen=True)
class OtpRequestResult:
    ok: bool
    reason: Optional[str] = None
    email: Optional[str] = None
    expires_at: Optional[datetime] = None
    retry_after_seconds: Optional[int] = None


@dataclass(frozen=True)
class OtpVerifyResult:
    ok: bool
    reason: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class MagicLinkResolution:
    ok: bool
    email: Optional[str] = None
    otp_code: Optional[str] = field(default=None, repr=False)
    magic_link_state: Optional[str] = field(default=None, repr=False)


# ============================================================
# SERVICE
# ============================================================

class AuthOtpService:
    """Issues and verifies emailed login codes."""

    def __init__(self, rate_limiter=None, mailer=None, clock=None):
        self.rate_limiter = rate_limiter or rate_limit_service
        self.mailer = mailer or otp_mailer
        self.clock = clock or timezone.now

    @property
    def ttl_minutes(self) -> int:
        return int(getattr(settings, "OTP_TTL_MINUTES", DEFAULT_OTP_TTL_MINUTES))

    @property
    def max_attempts(self) -> int:
        return int(getattr(settings, "OTP_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))

    def _audit(self, event_type, outcome, email, network_fingerprint, metadata=None, proven=False):
        # the claimed email only becomes the actor once the code proved it
        audit_service.record(
            event_type=event_type,
            outcome=outcome,
            actor_email=(email or None) if proven else None,
            target_email=email or None,
            network_fingerprint=network_fingerprint,
            metadata=metadata,
        )

    def _resolve_lang(self, lang) -> str:
        if lang in settings.SUPPORTED_LANGUAGES:
            return lang
        return settings.DEFAULT_LANGUAGE

    def _build_magic_link_url(self, email, code, context: OtpRequestContext) -> Optional[str]:
        if not context.app_origin or not context.magic_link_state:
            return None

        token = session_service.create_magic_link_token(email, code, context.magic_link_state)
        query = urlencode({"lang": self._resolve_lang(context.lang), "token": token})
        return f"{context.app_origin.rstrip('/')}{MAGIC_LINK_PATH}?{query}"

    # --------------------------------------------------------
    # REQUEST
    # --------------------------------------------------------

    def request_otp(
        self,
        email,
        network_fingerprint: Optional[NetworkFingerprint] = None,
        context: Optional[OtpRequestContext] = None,
    ) -> OtpRequestResult:
        fingerprint = network_fingerprint or UNKNOWN_FINGERPRINT
        context = context or OtpRequestContext()
        normalized = normalize_email(email)

        if not is_strict_email(normalized):
            self._audit(EVENT_OTP_REQUEST, OUTCOME_INVALID_EMAIL, normalized, fingerprint)
            return OtpRequestResult(ok=False, reason=OUTCOME_INVALID_EMAIL)

        try:
            decision = self.rate_limiter.check_many([
                (SCOPE_REQUEST_EMAIL, normalized),
                (SCOPE_REQUEST_IP, fingerprint.ip_key),
                (SCOPE_REQUEST_SUBNET, fingerprint.subnet_key),
            ])
            if decision.limited:
                self._audit(
                    EVENT_OTP_REQUEST,
                    OUTCOME_RATE_LIMITED,
                    normalized,
                    fingerprint,
                    {"scope": decision.scope, "retryAfterSeconds": decision.retry_after_seconds},
                )
                return OtpRequestResult(
                    ok=False,
                    reason=OUTCOME_RATE_LIMITED,
                    retry_after_seconds=decision.retry_after_seconds,
                )

            entry = user_directory.lookup(normalized)
            if entry is None or not entry.can_sign_in:
                self._audit(
                    EVENT_OTP_REQUEST,
                    OUTCOME_NOT_ALLOWED,
                    normalized,
                    fingerprint,
                    {"inactive": entry is not None},
                )
                return OtpRequestResult(ok=False, reason=OUTCOME_NOT_ALLOWED)

            code = otp_security.generate_otp()
            code_hash = otp_security.hash_otp(normalized, code)
            record = otp_store.issue(normalized, code_hash, self.ttl_minutes, now=self.clock())
        except STORAGE_ERRORS as e:
            logger.error(f"OTP request storage failure: {e}")
            self._audit(EVENT_OTP_REQUEST, OUTCOME_DB_UNAVAILABLE, normalized, fingerprint)
            return OtpRequestResult(ok=False, reason=OUTCOME_DB_UNAVAILABLE)

        magic_link_url = self._build_magic_link_url(normalized, code, context)
        mail = self.mailer.send(
            normalized,
            code,
            self.ttl_minutes,
            magic_link_url=magic_link_url,
            lang=self._resolve_lang(context.lang),
        )

        if not mail.ok:
            # no undeliverable code may stay active
            try:
                otp_store.discard(normalized, code_hash)
            except DatabaseError as e:
                logger.error(f"Could not discard undelivered OTP: {e}")

            outcome = (
                OUTCOME_DELIVERY_UNAVAILABLE
                if mail.reason == REASON_PROVIDER_UNAVAILABLE
                else OUTCOME_DELIVERY_FAILED
            )
            self._audit(EVENT_OTP_REQUEST, outcome, normalized, fingerprint, {"mailReason": mail.reason})
            return OtpRequestResult(ok=False, reason=outcome)

        self._audit(
            EVENT_OTP_REQUEST,
            OUTCOME_OK,
            normalized,
            fingerprint,
            {"magicLink": magic_link_url is not None, "ttlMinutes": self.ttl_minutes},
        )
        return OtpRequestResult(ok=True, email=normalized, expires_at=record.expires_at)

    # --------------------------------------------------------
    # VERIFY
    # --------------------------------------------------------

    def _check_code(self, email: str, code: str) -> Optional[str]:
        """
        Match the code against the active record in one locked transaction.

        Returns None on success (record consumed) or the failure reason.
        """
        with transaction.atomic():
            record = otp_store.load_for_update(email)
            if record is None:
                return "missing"
            if record.is_expired(self.clock()):
                return "expired"
            if record.is_exhausted(self.max_attempts):
                return "exhausted"
            if not otp_security.verify_otp(email, code, record.code_hash):
                otp_store.register_failure(record)
                return "mismatch"

            otp_store.consume(record)
            return None

    def verify_login_otp(
        self,
        email,
        code,
        network_fingerprint: Optional[NetworkFingerprint] = None,
        via: str = "api",
    ) -> OtpVerifyResult:
        fingerprint = network_fingerprint or UNKNOWN_FINGERPRINT
        normalized = normalize_email(email)

        if not is_strict_email(normalized):
            self._audit(EVENT_OTP_VERIFY, OUTCOME_INVALID_EMAIL, normalized, fingerprint, {"via": via})
            return OtpVerifyResult(ok=False, reason=OUTCOME_INVALID_EMAIL)

        candidate = normalize_otp_code(code)

        try:
            decision = self.rate_limiter.check_many([
                (SCOPE_VERIFY_EMAIL, normalized),
                (SCOPE_VERIFY_IP, fingerprint.ip_key),
                (SCOPE_VERIFY_SUBNET, fingerprint.subnet_key),
                (SCOPE_VERIFY_HOURLY_EMAIL, normalized),
                (SCOPE_VERIFY_HOURLY_IP, fingerprint.ip_key),
            ])
            if decision.limited:
                self._audit(
                    EVENT_OTP_VERIFY,
                    OUTCOME_RATE_LIMITED,
                    normalized,
                    fingerprint,
                    {"via": via, "scope": decision.scope, "retryAfterSeconds": decision.retry_after_seconds},
                )
                return OtpVerifyResult(ok=False, reason=OUTCOME_INVALID_OR_EXPIRED)

            if not is_valid_otp_code(candidate):
                self._audit(EVENT_OTP_VERIFY, OUTCOME_INVALID_CODE, normalized, fingerprint, {"via": via})
                return OtpVerifyResult(ok=False, reason=OUTCOME_INVALID_CODE)

            failure = self._check_code(normalized, candidate)
            if failure is not None:
                self._audit(
                    EVENT_OTP_VERIFY,
                    OUTCOME_INVALID_OR_EXPIRED,
                    normalized,
                    fingerprint,
                    {"via": via, "reason": failure},
                )
                return OtpVerifyResult(ok=False, reason=OUTCOME_INVALID_OR_EXPIRED)

            # role may have changed since the code was issued
            entry = user_directory.lookup(normalized)
        except STORAGE_ERRORS as e:
            logger.error(f"OTP verify storage failure: {e}")
            self._audit(EVENT_OTP_VERIFY, OUTCOME_DB_UNAVAILABLE, normalized, fingerprint, {"via": via})
            return OtpVerifyResult(ok=False, reason=OUTCOME_DB_UNAVAILABLE)

        if entry is None or not entry.can_sign_in:
            self._audit(EVENT_OTP_VERIFY, OUTCOME_NOT_ALLOWED, normalized, fingerprint, {"via": via})
            return OtpVerifyResult(ok=False, reason=OUTCOME_INVALID_OR_EXPIRED)

        self._audit(
            EVENT_OTP_VERIFY, OUTCOME_OK, normalized, fingerprint, {"via": via, "role": entry.role}, proven=True
        )
        return OtpVerifyResult(ok=True, role=entry.role, email=normalized)

    # --------------------------------------------------------
    # MAGIC LINK
    # --------------------------------------------------------

    def resolve_otp_magic_link_token(self, token) -> MagicLinkResolution:
        payload = session_service.load_magic_link_token(token, max_age_seconds=self.ttl_minutes * 60)
        if payload is None:
            return MagicLinkResolution(ok=False)
        return MagicLinkResolution(
            ok=True,
            email=payload.email,
            otp_code=payload.otp_code,
            magic_link_state=payload.magic_link_state,
        )


# Singleton instance
auth_otp_service = AuthOtpService()


def request_otp(email, network_fingerprint=None, context=None) -> OtpRequestResult:
    return auth_otp_service.request_otp(email, network_fingerprint, context)


def verify_login_otp(email, code, network_fingerprint=None, via="api") -> OtpVerifyResult:
    return auth_otp_service.verify_login_otp(email, code, network_fingerprint, via=via)


def resolve_otp_magic_link_token(token) -> MagicLinkResolution:
    return auth_otp_service.resolve_otp_magic_link_token(token)
