# users/validators.py
"""
Input normalization for the login flow.
"""
import re

from users.otp_config import OTP_CODE_LENGTH

MAX_EMAIL_LENGTH = 320
MAX_LOCAL_PART_LENGTH = 64
MAX_DOMAIN_PART_LENGTH = 255

LOCAL_PART_PATTERN = re.compile(r"^[a-z0-9.!#$%&'*+/=?^_`{|}~-]+$", re.IGNORECASE)
DOMAIN_PATTERN = re.compile(r"^[a-z0-9-]+(\.[a-z0-9-]+)+$", re.IGNORECASE)
OTP_CODE_PATTERN = re.compile(r"[0-9]{%d}" % OTP_CODE_LENGTH)


def normalize_email(value) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def is_strict_email(value) -> bool:
    """Conservative address check; rejects anything a mail provider might rewrite."""
    email = normalize_email(value)
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return False

    if email.count("@") != 1:
        return False

    local, domain = email.split("@")
    if not local or not domain:
        return False
    if len(local) > MAX_LOCAL_PART_LENGTH or len(domain) > MAX_DOMAIN_PART_LENGTH:
        return False

    if local.startswith(".") or local.endswith(".") or ".." in local:
        return False
    if not LOCAL_PART_PATTERN.fullmatch(local) or not DOMAIN_PATTERN.fullmatch(domain):
        return False

    labels = domain.split(".")
    if any(not label or label.startswith("-") or label.endswith("-") for label in labels):
        return False

    return True


def normalize_otp_code(value) -> str:
    """Strip all whitespace so "123 456" from a copy-paste still verifies."""
    if not isinstance(value, str):
        return ""
    return re.sub(r"\s+", "", value)


def is_valid_otp_code(value: str) -> bool:
    return bool(OTP_CODE_PATTERN.fullmatch(value or ""))


def redact_email(value):
    """first-char***@domain"""
    if not value:
        return None
    local, sep, domain = value.partition("@")
    if not sep or not domain:
        return value
    visible = local[0] if local else ""
    return f"{visible}***@{domain}"
