# users/services/session_service.py
"""
Cookie and link values: the signed role session and the encrypted
one-click magic link.

The role cookie is a django.core.signing payload. The magic-link token is a
Fernet token, so the code and the browser state it carries stay unreadable
to whoever holds the link. Both are keyed by AUTH_SECRET under separate salts.
"""
import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings
from django.core import signing

from users.models import User
from users.utils.security import get_auth_secret
from users.validators import is_strict_email, is_valid_otp_code, normalize_email

logger = logging.getLogger("users.security")

ROLE_SESSION_SALT = "users.session.role"
MAGIC_LINK_SALT = "users.session.magic-link"
ROLE_SESSION_VERSION = 2

ROLE_VISITOR = "visitor"
AUTH_METHOD_OTP = "otp"


@dataclass(frozen=True)
class RoleSession:
    role: str = ROLE_VISITOR
    auth_method: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.role != ROLE_VISITOR

    def as_dict(self):
        return {"role": self.role, "authMethod": self.auth_method, "email": self.email}


VISITOR_SESSION = RoleSession()


@dataclass(frozen=True)
class MagicLinkPayload:
    email: str
    otp_code: str
    magic_link_state: str


# ============================================================
# ROLE SESSION
# ============================================================

def create_role_session_value(role: str, email: str) -> str:
    payload = {
        "v": ROLE_SESSION_VERSION,
        "role": role,
        "authMethod": AUTH_METHOD_OTP,
        "email": normalize_email(email),
    }
    return signing.dumps(payload, key=get_auth_secret(), salt=ROLE_SESSION_SALT, compress=True)


def resolve_role_session(value) -> RoleSession:
    """Decode a role cookie. Anything tampered, stale or unknown is a visitor."""
    if not value:
        return VISITOR_SESSION

    try:
        payload = signing.loads(value, key=get_auth_secret(), salt=ROLE_SESSION_SALT)
    except signing.BadSignature:
        logger.info("Rejected role cookie with a bad signature")
        return VISITOR_SESSION

    if not isinstance(payload, dict) or payload.get("v") != ROLE_SESSION_VERSION:
        return VISITOR_SESSION

    role = payload.get("role")
    email = payload.get("email")
    if (
        role not in User.Role.values
        or payload.get("authMethod") != AUTH_METHOD_OTP
        or not is_strict_email(email)
    ):
        return VISITOR_SESSION

    return RoleSession(role=role, auth_method=AUTH_METHOD_OTP, email=normalize_email(email))


# ============================================================
# MAGIC LINK
# ============================================================

def _get_magic_link_fernet() -> Fernet:
    derived = hmac.new(
        get_auth_secret().encode("utf-8"), MAGIC_LINK_SALT.encode("utf-8"), hashlib.sha256
    ).digest()
    return Fernet(base64.urlsafe_b64encode(derived))


def create_magic_link_token(email: str, otp_code: str, magic_link_state: str) -> str:
    payload = json.dumps({"e": email, "c": otp_code, "s": magic_link_state}, separators=(",", ":"))
    return _get_magic_link_fernet().encrypt(payload.encode("utf-8")).decode("ascii")


def load_magic_link_token(token, max_age_seconds: int) -> Optional[MagicLinkPayload]:
    if not isinstance(token, str) or not token.strip():
        return None

    try:
        plain = _get_magic_link_fernet().decrypt(token.strip().encode("utf-8"), ttl=max_age_seconds)
        payload = json.loads(plain)
    except (InvalidToken, ValueError):
        # expired, tampered or sealed under another secret
        return None

    if not isinstance(payload, dict):
        return None

    email, code, state = payload.get("e"), payload.get("c"), payload.get("s")
    if not is_strict_email(email) or not isinstance(code, str) or not is_valid_otp_code(code):
        return None
    if not isinstance(state, str) or not state:
        return None

    return MagicLinkPayload(email=normalize_email(email), otp_code=code, magic_link_state=state)


# ============================================================
# COOKIES
# ============================================================

def _cookie_options():
    return {
        "httponly": True,
        "secure": not settings.DEBUG,
        "samesite": "Lax",
        "path": "/",
    }


def set_role_cookie(response, value: str, persistent: bool):
    max_age = settings.ROLE_COOKIE_MAX_AGE_SECONDS if persistent else None
    response.set_cookie(settings.ROLE_COOKIE_NAME, value, max_age=max_age, **_cookie_options())
    return response


def clear_role_cookie(response):
    response.delete_cookie(settings.ROLE_COOKIE_NAME, path="/", samesite="Lax")
    return response


def set_magic_state_cookie(response, state: str):
    response.set_cookie(
        settings.MAGIC_LINK_STATE_COOKIE_NAME,
        state,
        max_age=settings.OTP_TTL_MINUTES * 60,
        **_cookie_options(),
    )
    return response


def clear_magic_state_cookie(response):
    response.delete_cookie(settings.MAGIC_LINK_STATE_COOKIE_NAME, path="/", samesite="Lax")
    return response
