"""
Security utilities for OTP system.
"""
import hmac
import hashlib
import logging
import secrets

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from users.otp_config import (
    MIN_AUTH_SECRET_LENGTH,
    OTP_CODE_LENGTH,
    OTP_HASH_SEPARATOR,
    WEAK_AUTH_SECRETS,
)

logger = logging.getLogger("users.security")

_runtime_secret = None
_warned_secret = False


def _is_weak_secret(value: str) -> bool:
    return len(value) < MIN_AUTH_SECRET_LENGTH or value.lower() in WEAK_AUTH_SECRETS


def get_auth_secret() -> str:
    """
    Server-held HMAC key.

    Production refuses to run with a missing or weak AUTH_SECRET. Elsewhere a
    warning is logged once and a weak secret is still used; a missing one is
    replaced by a per-process random key (codes then only verify on the
    process that issued them).
    """
    global _runtime_secret, _warned_secret

    configured = (getattr(settings, "AUTH_SECRET", "") or "").strip()
    if not settings.DEBUG and not getattr(settings, "TESTING", False):
        if not configured:
            raise ImproperlyConfigured("AUTH_SECRET must be set in production")
        if _is_weak_secret(configured):
            raise ImproperlyConfigured(
                f"AUTH_SECRET must be at least {MIN_AUTH_SECRET_LENGTH} characters "
                "and not a well-known placeholder"
            )
        return configured

    if configured:
        if _is_weak_secret(configured) and not _warned_secret:
            logger.warning("AUTH_SECRET is weak; use at least 32 random characters")
            _warned_secret = True
        return configured

    if not _warned_secret:
        logger.warning("AUTH_SECRET is not set; using a per-process random secret")
        _warned_secret = True
    if _runtime_secret is None:
        _runtime_secret = secrets.token_hex(32)
    return _runtime_secret


class OTPSecurity:
    """Cryptographic utilities for OTP."""

    def __init__(self, code_length: int = OTP_CODE_LENGTH):
        self.code_length = code_length

    def generate_otp(self) -> str:
        """Generate cryptographically secure OTP."""
        otp_int = secrets.randbelow(10 ** self.code_length)
        return str(otp_int).zfill(self.code_length)

    def generate_state(self) -> str:
        """Random value binding a magic link to the browser that asked for it."""
        return secrets.token_urlsafe(24)

    def hash_otp(self, email: str, otp: str) -> str:
        """HMAC-SHA256 over "email|code"."""
        message = f"{email}{OTP_HASH_SEPARATOR}{otp}".encode()
        return hmac.new(get_auth_secret().encode(), message, hashlib.sha256).hexdigest()

    def verify_otp(self, email: str, otp: str, stored_hash: str) -> bool:
        """Verify OTP using constant-time comparison."""
        computed_hash = self.hash_otp(email, otp)
        return hmac.compare_digest(computed_hash.encode(), (stored_hash or "").encode())

    def hash_network_key(self, value: str) -> str:
        return hmac.new(get_auth_secret().encode(), value.encode(), hashlib.sha256).hexdigest()


# Global instance
otp_security = OTPSecurity()
