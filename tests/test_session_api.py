# tests/test_session_api.py
"""
/api/auth/session/ and /api/auth/session/magic/ end to end.
"""

import base64
import re
from unittest import mock
from urllib.parse import parse_qs, urlparse

from django.conf import settings
from django.core import mail
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from security.models import SecurityAuditEvent
from users.models import EmailOTP, User
from users.otp_config import DEFAULT_RATE_LIMITS
from users.services.session_service import create_role_session_value

SESSION_URL = "/api/auth/session/"
MAGIC_URL = "/api/auth/session/magic/"
EMAIL = "student@fi.uba.ar"
ADMIN_EMAIL = "admin@fi.uba.ar"

MAGIC_LINK_PATTERN = re.compile(r"^http://testserver(/api/auth/session/magic/\?\S+)$", re.MULTILINE)


def _code_from(message):
    return message.subject.rsplit(": ", 1)[1]


def _magic_path_from(message):
    return MAGIC_LINK_PATTERN.search(message.body).group(1)


class SessionApiTestCase(TestCase):

    def setUp(self):
        self.client = APIClient(HTTP_X_FORWARDED_FOR="5.6.7.8")
        self.user = User.objects.create(email=EMAIL, role=User.Role.WHITELISTED)
        self.admin = User.objects.create(email=ADMIN_EMAIL, role=User.Role.ADMIN)

    def request_otp(self, email=EMAIL, client=None, **extra):
        payload = {"action": "requestOtp", "email": email, **extra}
        return (client or self.client).post(SESSION_URL, payload, format="json")

    def verify_otp(self, code, email=EMAIL, trust_device=False, client=None):
        payload = {"action": "verifyOtp", "email": email, "otpCode": code, "trustDevice": trust_device}
        return (client or self.client).post(SESSION_URL, payload, format="json")

    def sign_in(self, email=EMAIL, trust_device=False):
        self.request_otp(email)
        response = self.verify_otp(_code_from(mail.outbox[-1]), email=email, trust_device=trust_device)
        self.assertEqual(response.status_code, 200, response.content)
        return response


# ==============================================================================
# REQUEST OTP
# ==============================================================================

class TestRequestOtpEndpoint(SessionApiTestCase):

    def test_known_and_unknown_emails_look_the_same(self):
        known = self.request_otp(EMAIL)
        unknown = self.request_otp("stranger@example.com")

        self.assertEqual(known.status_code, 200)
        self.assertEqual(unknown.status_code, 200)
        self.assertEqual(known.json(), {"ok": True, "email": EMAIL})
        self.assertEqual(unknown.json(), {"ok": True, "email": "stranger@example.com"})
        self.assertEqual(len(mail.outbox), 1)

        for response in (known, unknown):
            self.assertIn(settings.MAGIC_LINK_STATE_COOKIE_NAME, response.cookies)
            self.assertEqual(response["Cache-Control"].count("no-store"), 1)

    def test_state_cookie_is_fresh_each_time(self):
        first = self.request_otp().cookies[settings.MAGIC_LINK_STATE_COOKIE_NAME].value
        second = self.request_otp().cookies[settings.MAGIC_LINK_STATE_COOKIE_NAME].value

        self.assertTrue(first)
        self.assertNotEqual(first, second)

    def test_email_is_normalized(self):
        response = self.request_otp("  Student@FI.UBA.AR ")

        self.assertEqual(response.json()["email"], EMAIL)
        self.assertTrue(EmailOTP.objects.filter(email=EMAIL).exists())

    def test_unsupported_action(self):
        response = self.client.post(SESSION_URL, {"action": "login"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Unsupported action. Use requestOtp or verifyOtp.")

    def test_missing_email(self):
        response = self.client.post(SESSION_URL, {"action": "requestOtp"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing email")
        self.assertIn(settings.MAGIC_LINK_STATE_COOKIE_NAME, response.cookies)
        event = SecurityAuditEvent.objects.get()
        self.assertEqual((event.event_type, event.outcome), ("auth.otp.request", "invalid_request"))

    def test_invalid_email(self):
        response = self.request_otp("not-an-email")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error_code"], "invalid_email")

    @override_settings(OTP_RATE_LIMITS={**DEFAULT_RATE_LIMITS, "otp_request:email": (15, 1)})
    def test_rate_limited(self):
        self.request_otp()
        response = self.request_otp()

        self.assertEqual(response.status_code, 429)
        body = response.json()
        self.assertEqual(body["error_code"], "rate_limited")
        self.assertGreater(body["retry_after_seconds"], 0)
        self.assertEqual(response["Retry-After"], str(body["retry_after_seconds"]))

    @override_settings(OTP_EMAIL_PROVIDER="resend", RESEND_API_KEY="")
    def test_delivery_unavailable(self):
        response = self.request_otp()

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error_code"], "delivery_unavailable")
        self.assertFalse(EmailOTP.objects.exists())

    def test_delivery_failed(self):
        from users.services.otp_mailer import MailResult

        with mock.patch(
            "users.services.otp_mailer.otp_mailer.send",
            return_value=MailResult(ok=False, reason="send_failed"),
        ):
            response = self.request_otp()

        self.assertEqual(response.status_code, 502)

    def test_db_unavailable(self):
        from django.db import DatabaseError

        with mock.patch("users.services.user_directory.lookup", side_effect=DatabaseError("down")):
            response = self.request_otp()

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "Database is required for OTP login")

    @override_settings(OTP_RESPONSE_TIMING_ENABLED=True, OTP_RESPONSE_FLOOR_MS=320, OTP_RESPONSE_JITTER_MS=0)
    def test_request_is_padded_to_the_floor(self):
        with mock.patch("users.decorators.response_timing.time.sleep") as sleep:
            self.request_otp("stranger@example.com")

        sleep.assert_called_once()
        self.assertLessEqual(sleep.call_args[0][0], 0.32)
        self.assertGreater(sleep.call_args[0][0], 0)


# ==============================================================================
# VERIFY OTP
# ==============================================================================

class TestVerifyOtpEndpoint(SessionApiTestCase):

    def test_sign_in_sets_session_cookie(self):
        response = self.sign_in()

        self.assertEqual(response.json(), {
            "ok": True,
            "role": "whitelisted",
            "authMethod": "otp",
            "email": EMAIL,
            "trustDevice": False,
        })
        cookie = response.cookies[settings.ROLE_COOKIE_NAME]
        self.assertTrue(cookie.value)
        self.assertTrue(cookie["httponly"])
        self.assertEqual(cookie["max-age"], "")

    def test_trust_device_makes_cookie_persistent(self):
        response = self.sign_in(trust_device=True)

        self.assertTrue(response.json()["trustDevice"])
        self.assertEqual(
            response.cookies[settings.ROLE_COOKIE_NAME]["max-age"],
            settings.ROLE_COOKIE_MAX_AGE_SECONDS,
        )

    def test_wrong_code(self):
        self.request_otp()
        code = _code_from(mail.outbox[-1])
        wrong = "000000" if code != "000000" else "111111"

        response = self.verify_otp(wrong)

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Invalid or expired OTP code")
        self.assertNotIn(settings.ROLE_COOKIE_NAME, response.cookies)

    def test_unknown_email_gets_same_failure(self):
        response = self.verify_otp("123456", email="stranger@example.com")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Invalid or expired OTP code")

    def test_malformed_code(self):
        response = self.verify_otp("12ab")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error_code"], "invalid_code")

    def test_missing_fields(self):
        response = self.client.post(SESSION_URL, {"action": "verifyOtp", "email": EMAIL}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing email or OTP code")
        event = SecurityAuditEvent.objects.get()
        self.assertEqual((event.event_type, event.outcome), ("auth.otp.verify", "invalid_request"))

    def test_invalid_email(self):
        response = self.verify_otp("123456", email="nope@")
        self.assertEqual(response.status_code, 400)


# ==============================================================================
# CURRENT SESSION
# ==============================================================================

class TestCurrentSession(SessionApiTestCase):

    def test_visitor(self):
        response = self.client.get(SESSION_URL)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"role": "visitor", "authMethod": None, "email": None})

    def test_signed_in(self):
        self.sign_in()

        response = self.client.get(SESSION_URL)

        self.assertEqual(response.json(), {"role": "whitelisted", "authMethod": "otp", "email": EMAIL})

    def test_deactivated_user_becomes_visitor(self):
        self.sign_in()
        User.objects.filter(email=EMAIL).update(is_active=False)

        self.assertEqual(self.client.get(SESSION_URL).json()["role"], "visitor")

    def test_deleted_user_becomes_visitor(self):
        self.sign_in()
        User.objects.filter(email=EMAIL).delete()

        self.assertEqual(self.client.get(SESSION_URL).json()["role"], "visitor")

    def test_demoted_admin_gets_current_role(self):
        self.sign_in(ADMIN_EMAIL)
        User.objects.filter(email=ADMIN_EMAIL).update(role=User.Role.WHITELISTED)

        self.assertEqual(self.client.get(SESSION_URL).json()["role"], "whitelisted")

    def test_tampered_cookie_is_visitor(self):
        value = create_role_session_value("admin", EMAIL)
        self.client.cookies[settings.ROLE_COOKIE_NAME] = value[:-3] + "abc"

        self.assertEqual(self.client.get(SESSION_URL).json()["role"], "visitor")

    def test_sign_out(self):
        self.sign_in()

        response = self.client.delete(SESSION_URL)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True, "role": "visitor"})
        self.assertEqual(response.cookies[settings.ROLE_COOKIE_NAME].value, "")
        self.assertEqual(self.client.get(SESSION_URL).json()["role"], "visitor")


# ==============================================================================
# MAGIC LINK
# ==============================================================================

class TestMagicLink(SessionApiTestCase):

    def test_magic_link_signs_in(self):
        self.request_otp(lang="en")
        path = _magic_path_from(mail.outbox[-1])

        response = self.client.get(path)

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response["Location"], "/en")
        self.assertTrue(response.cookies[settings.ROLE_COOKIE_NAME].value)
        self.assertEqual(response.cookies[settings.MAGIC_LINK_STATE_COOKIE_NAME].value, "")
        self.assertFalse(EmailOTP.objects.exists())
        self.assertEqual(self.client.get(SESSION_URL).json()["role"], "whitelisted")

        event = SecurityAuditEvent.objects.filter(event_type="auth.otp.verify").get()
        self.assertEqual(event.outcome, "ok")
        self.assertEqual(event.metadata["via"], "magic_link")

    def test_magic_link_cookie_is_not_persistent(self):
        self.request_otp()
        response = self.client.get(_magic_path_from(mail.outbox[-1]))

        self.assertEqual(response.cookies[settings.ROLE_COOKIE_NAME]["max-age"], "")

    def test_other_browser_is_rejected(self):
        self.request_otp()
        path = _magic_path_from(mail.outbox[-1])

        response = APIClient().get(path)

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response["Location"], "/es")
        self.assertNotIn(settings.ROLE_COOKIE_NAME, response.cookies)
        event = SecurityAuditEvent.objects.filter(event_type="auth.otp.verify").get()
        self.assertEqual(event.outcome, "invalid_request")
        self.assertEqual(event.metadata["reason"], "state_mismatch")
        # no verify attempt was made
        self.assertEqual(EmailOTP.objects.get(email=EMAIL).attempts, 0)

    def test_link_does_not_carry_readable_state(self):
        response = self.request_otp()
        state = response.cookies[settings.MAGIC_LINK_STATE_COOKIE_NAME].value
        message = mail.outbox[-1]
        path = _magic_path_from(message)
        token = parse_qs(urlparse(path).query)["token"][0]

        self.assertNotIn(state, token)
        self.assertNotIn(_code_from(message), token)
        self.assertNotIn(state.encode(), base64.urlsafe_b64decode(token.encode("ascii")))

        # a forwarded link plus anything readable from it is not enough
        other = APIClient()
        for guess in (token, token[:43], "state"):
            other.cookies[settings.MAGIC_LINK_STATE_COOKIE_NAME] = guess
            attempt = other.get(path)
            self.assertEqual(attempt.status_code, 302)
            self.assertNotIn(settings.ROLE_COOKIE_NAME, attempt.cookies)

        self.assertEqual(other.get(SESSION_URL).json()["role"], "visitor")
        self.assertEqual(EmailOTP.objects.get(email=EMAIL).attempts, 0)

    def test_stale_state_is_rejected(self):
        self.request_otp()
        path = _magic_path_from(mail.outbox[-1])
        # a later request rotates the state cookie
        self.request_otp("stranger@example.com")

        response = self.client.get(path)

        self.assertNotIn(settings.ROLE_COOKIE_NAME, response.cookies)

    def test_missing_token(self):
        response = self.client.get(MAGIC_URL, {"lang": "fr"})

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response["Location"], "/fr")
        event = SecurityAuditEvent.objects.get()
        self.assertEqual(event.outcome, "invalid_request")

    def test_bad_token(self):
        response = self.client.get(MAGIC_URL, {"token": "forged", "lang": "zz"})

        self.assertEqual(response["Location"], "/es")
        self.assertEqual(SecurityAuditEvent.objects.get().outcome, "invalid_or_expired")

    def test_used_link_does_not_sign_in_twice(self):
        self.request_otp()
        path = _magic_path_from(mail.outbox[-1])
        self.client.get(path)
        self.client.delete(SESSION_URL)

        response = self.client.get(path)

        self.assertNotIn(settings.ROLE_COOKIE_NAME, response.cookies)
