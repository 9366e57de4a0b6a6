# users/otp_config.py
"""
OTP login constants.

Tunables that operators change per deployment (TTL, rate limits, timing
floor) live in settings; everything here is fixed protocol.
"""

# ============================================================
# OTP CODE
# ============================================================
OTP_CODE_LENGTH = 6  # numeric
OTP_HASH_SEPARATOR = "|"  # HMAC message is "email|code"
DEFAULT_OTP_TTL_MINUTES = 10
DEFAULT_MAX_ATTEMPTS = 5  # failed verifies before a code is exhausted

# ============================================================
# AUTH SECRET
# ============================================================
MIN_AUTH_SECRET_LENGTH = 32
WEAK_AUTH_SECRETS = {
    "changeme",
    "change-me",
    "secret",
    "password",
    "test-secret",
    "auth-secret",
}

# ============================================================
# AUDIT VOCABULARY
# ============================================================
EVENT_OTP_REQUEST = "auth.otp.request"
EVENT_OTP_VERIFY = "auth.otp.verify"

OUTCOME_OK = "ok"
OUTCOME_INVALID_REQUEST = "invalid_request"
OUTCOME_INVALID_EMAIL = "invalid_email"
OUTCOME_INVALID_CODE = "invalid_code"
OUTCOME_INVALID_OR_EXPIRED = "invalid_or_expired"
OUTCOME_RATE_LIMITED = "rate_limited"
OUTCOME_NOT_ALLOWED = "not_allowed"
OUTCOME_DB_UNAVAILABLE = "db_unavailable"
OUTCOME_DELIVERY_UNAVAILABLE = "delivery_unavailable"
OUTCOME_DELIVERY_FAILED = "delivery_failed"

# ============================================================
# RATE LIMIT SCOPES
# ============================================================
SCOPE_REQUEST_EMAIL = "otp_request:email"
SCOPE_REQUEST_IP = "otp_request:ip"
SCOPE_REQUEST_SUBNET = "otp_request:subnet"
SCOPE_VERIFY_EMAIL = "otp_verify:email"
SCOPE_VERIFY_IP = "otp_verify:ip"
SCOPE_VERIFY_SUBNET = "otp_verify:subnet"
SCOPE_VERIFY_HOURLY_EMAIL = "otp_verify_hourly:email"
SCOPE_VERIFY_HOURLY_IP = "otp_verify_hourly:ip"

# Used when settings.OTP_RATE_LIMITS omits a scope: (window_minutes, max_hits)
DEFAULT_RATE_LIMITS = {
    SCOPE_REQUEST_EMAIL: (15, 5),
    SCOPE_REQUEST_IP: (15, 20),
    SCOPE_REQUEST_SUBNET: (15, 60),
    SCOPE_VERIFY_EMAIL: (15, 10),
    SCOPE_VERIFY_IP: (15, 40),
    SCOPE_VERIFY_SUBNET: (15, 120),
    SCOPE_VERIFY_HOURLY_EMAIL: (60, 25),
    SCOPE_VERIFY_HOURLY_IP: (60, 150),
}

# ============================================================
# ANTI-ENUMERATION
# ============================================================
DEFAULT_RESPONSE_FLOOR_MS = 320
DEFAULT_RESPONSE_JITTER_MS = 120
