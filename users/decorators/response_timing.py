# users/decorators/response_timing.py
"""
Response timing floor for endpoints that must not leak which branch ran.
"""

import random
import time
from functools import wraps

from django.conf import settings

from users.otp_config import DEFAULT_RESPONSE_FLOOR_MS, DEFAULT_RESPONSE_JITTER_MS


def _target_duration_seconds() -> float:
    floor_ms = getattr(settings, "OTP_RESPONSE_FLOOR_MS", DEFAULT_RESPONSE_FLOOR_MS)
    jitter_ms = getattr(settings, "OTP_RESPONSE_JITTER_MS", DEFAULT_RESPONSE_JITTER_MS)
    return (floor_ms + random.SystemRandom().uniform(0, jitter_ms)) / 1000


def response_timing_floor(func):
    """
    Pad the wrapped view so it never returns faster than the floor plus a
    random jitter, whether it returns a response or raises.

    Usage:
        class SessionView(APIView):
            @response_timing_floor
            def request_otp(self, request):
                ...
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not getattr(settings, "OTP_RESPONSE_TIMING_ENABLED", True):
            return func(*args, **kwargs)

        target = _target_duration_seconds()
        started = time.monotonic()
        try:
            return func(*args, **kwargs)
        finally:
            remaining = target - (time.monotonic() - started)
            if remaining > 0:
                time.sleep(remaining)

    return wrapper
