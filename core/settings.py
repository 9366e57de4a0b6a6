# core/settings.py
from pathlib import Path
import os
import sys
from dotenv import load_dotenv

# =============================================================================
# BASE DIR & ENV
# =============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

# =============================================================================
# SECURITY
# =============================================================================

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY")
if not SECRET_KEY:
    raise RuntimeError("DJANGO_SECRET_KEY is not set")

DEBUG = os.getenv("DEBUG", "False").lower() == "true"

ALLOWED_HOSTS = os.getenv(
    "ALLOWED_HOSTS", "127.0.0.1,localhost"
).split(",")

# HMAC key for OTP hashes, magic-link tokens and role cookies (>= 32 chars)
AUTH_SECRET = os.getenv("AUTH_SECRET", "")

# =============================================================================
# APPLICATIONS
# =============================================================================

INSTALLED_APPS = [
    # Django core
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Third-party
    "rest_framework",
    "drf_spectacular",

    # Local apps
    "core.apps.CoreConfig",
    "users.apps.UsersConfig",
    "security.apps.SecurityConfig",
]

# =============================================================================
# MIDDLEWARE
# =============================================================================

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "core.middleware.RequestLoggingMiddleware",
    "core.middleware.SecurityHeadersMiddleware",
    "core.middleware.ExceptionHandlerMiddleware",
]

# =============================================================================
# URLS & TEMPLATES
# =============================================================================

ROOT_URLCONF = "core.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "core.wsgi.application"

# =============================================================================
# DATABASE (POSTGRESQL)
# =============================================================================

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("POSTGRES_DB", "infiuba_housing"),
        "USER": os.getenv("POSTGRES_USER", "postgres"),
        "PASSWORD": os.getenv("POSTGRES_PASSWORD"),
        "HOST": os.getenv("POSTGRES_HOST", "127.0.0.1"),
        "PORT": os.getenv("POSTGRES_PORT", "5432"),
        "CONN_MAX_AGE": 600,
        "OPTIONS": {"connect_timeout": 10},
    }
}

if not DATABASES["default"]["PASSWORD"]:
    raise RuntimeError("POSTGRES_PASSWORD is not set")

# =============================================================================
# I18N
# =============================================================================

LANGUAGE_CODE = "es"
TIME_ZONE = "America/Argentina/Buenos_Aires"
USE_I18N = True
USE_TZ = True

SUPPORTED_LANGUAGES = ["es", "en", "fr", "de", "pt", "it", "no"]
DEFAULT_LANGUAGE = "es"

# =============================================================================
# STATIC
# =============================================================================

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# =============================================================================
# REST FRAMEWORK
# =============================================================================

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "users.authentication.RoleCookieAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "core.exceptions.custom_exception_handler",
    "UNAUTHENTICATED_USER": None,
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Infiuba Housing Auth API",
    "DESCRIPTION": "Passwordless email OTP login, magic links and security telemetry.",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "SCHEMA_PATH_PREFIX": "/api/",
}

# =============================================================================
# TEST MODE
# =============================================================================

TESTING = "test" in sys.argv

# =============================================================================
# SESSION COOKIES
# =============================================================================

ROLE_COOKIE_NAME = "infiuba_role"
ROLE_COOKIE_MAX_AGE_SECONDS = 60 * 60 * 24 * 120  # 120 days
MAGIC_LINK_STATE_COOKIE_NAME = "infiuba_magic_state"

SESSION_COOKIE_SECURE = not DEBUG
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = "Lax"

CSRF_COOKIE_SECURE = not DEBUG
CSRF_COOKIE_HTTPONLY = True
CSRF_COOKIE_SAMESITE = "Lax"

if not DEBUG:
    SECURE_HSTS_SECONDS = 31536000  # 1 year
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"

# =============================================================================
# NETWORK FINGERPRINT
# =============================================================================

# Only this header is trusted for client addresses; the entry
# TRUSTED_PROXY_HOPS positions from the right end of its chain is used.
if os.getenv("TRUSTED_PROXY_HEADER"):
    TRUSTED_PROXY_HEADER = os.getenv("TRUSTED_PROXY_HEADER")
TRUSTED_PROXY_HOPS = int(os.getenv("TRUSTED_PROXY_HOPS", "1"))

# =============================================================================
# RATE LIMITING
# =============================================================================

RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "database")

USE_FAKE_REDIS = os.getenv("USE_FAKE_REDIS", "False").lower() == "true"
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))

# scope -> (window_minutes, max_hits)
OTP_RATE_LIMITS = {
    "otp_request:email": (15, 5),
    "otp_request:ip": (15, 20),
    "otp_request:subnet": (15, 60),
    "otp_verify:email": (15, 10),
    "otp_verify:ip": (15, 40),
    "otp_verify:subnet": (15, 120),
    "otp_verify_hourly:email": (60, 25),
    "otp_verify_hourly:ip": (60, 150),
}

# =============================================================================
# OTP
# =============================================================================

OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "10"))
OTP_MAX_ATTEMPTS = 5

OTP_RESPONSE_TIMING_ENABLED = not TESTING
OTP_RESPONSE_FLOOR_MS = 320
OTP_RESPONSE_JITTER_MS = 120

# =============================================================================
# OTP EMAIL DELIVERY
# =============================================================================

OTP_EMAIL_PROVIDER = os.getenv("OTP_EMAIL_PROVIDER", "" if not DEBUG else "console")
OTP_EMAIL_TIMEOUT_SECONDS = float(os.getenv("OTP_EMAIL_TIMEOUT_SECONDS", "8"))
OTP_CONSOLE_ONLY_EMAIL = os.getenv("OTP_CONSOLE_ONLY_EMAIL", "" if not DEBUG else "mock@email.com")
OTP_FROM_EMAIL = os.getenv("OTP_FROM_EMAIL", "")
OTP_EMAIL_LOGO_URL = os.getenv("OTP_EMAIL_LOGO_URL", "")

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "")
BREVO_API_KEY = os.getenv("BREVO_API_KEY", "")
BREVO_FROM_EMAIL = os.getenv("BREVO_FROM_EMAIL", "")

EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.smtp.EmailBackend")
EMAIL_TIMEOUT = OTP_EMAIL_TIMEOUT_SECONDS
DEFAULT_FROM_EMAIL = OTP_FROM_EMAIL or "Infiuba Housing Hub <no-reply@localhost>"

# =============================================================================
# LOGGING
# =============================================================================

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "[{levelname}] {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.getenv("LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "users.security": {
            "handlers": ["console"],
            "level": "DEBUG" if DEBUG else "INFO",
            "propagate": False,
        },
        "security": {
            "handlers": ["console"],
            "level": "DEBUG" if DEBUG else "INFO",
            "propagate": False,
        },
    },
}
