# tests/test_security_audit.py
"""
Audit trail: hashing, metadata bounds, append-only rows, failure isolation.
"""

from unittest import mock

from django.db import DatabaseError
from django.test import TestCase

from security.models import AuditEventError, SecurityAuditEvent
from security.services import audit_service
from users.utils.network import UNKNOWN_FINGERPRINT, NetworkFingerprint
from users.utils.security import otp_security


class TestAuditRecord(TestCase):

    def test_emails_are_normalized(self):
        event = audit_service.record(
            event_type="auth.otp.verify",
            outcome="ok",
            actor_email="  Student@FI.uba.ar ",
            target_email="Student@FI.uba.ar",
        )

        event.refresh_from_db()
        self.assertEqual(event.actor_email, "student@fi.uba.ar")
        self.assertEqual(event.target_email, "student@fi.uba.ar")

    def test_network_keys_are_hashed(self):
        fingerprint = NetworkFingerprint(ip_key="5.6.7.8", subnet_key="5.6.7.0/24")

        event = audit_service.record("auth.otp.request", "ok", network_fingerprint=fingerprint)

        self.assertEqual(event.ip_key_hash, otp_security.hash_network_key("5.6.7.8"))
        self.assertEqual(len(event.subnet_key_hash), 64)
        self.assertNotIn("5.6.7", event.ip_key_hash + event.subnet_key_hash)

    def test_unknown_network_is_null(self):
        event = audit_service.record("auth.otp.request", "ok", network_fingerprint=UNKNOWN_FINGERPRINT)

        self.assertIsNone(event.ip_key_hash)
        self.assertIsNone(event.subnet_key_hash)

    def test_blank_outcome(self):
        self.assertEqual(audit_service.record("auth.otp.request", "  ").outcome, "unknown")

    def test_metadata_is_bounded(self):
        event = audit_service.record(
            "admin.user.upsert",
            "ok",
            metadata={
                "many": {f"k{i}": i for i in range(40)},
                "long": list(range(25)),
                "deep": {"a": {"b": {"c": 1}}},
                "skipped": None,
                "obj": object,
            },
        )

        event.refresh_from_db()
        self.assertEqual(len(event.metadata["many"]), 30)
        self.assertEqual(event.metadata["long"], list(range(20)))
        self.assertEqual(event.metadata["deep"], {"a": {"b": {"c": "[depth-limited]"}}})
        self.assertNotIn("skipped", event.metadata)
        self.assertIsInstance(event.metadata["obj"], str)

    def test_persistence_failure_is_swallowed(self):
        with mock.patch.object(SecurityAuditEvent.objects, "create", side_effect=DatabaseError("down")):
            with self.assertLogs("security.audit", level="WARNING"):
                result = audit_service.record("auth.otp.request", "ok", actor_email="a@b.co")

        self.assertIsNone(result)

    def test_log_line_redacts_emails(self):
        with self.assertLogs("security.audit", level="INFO") as logs:
            audit_service.record("auth.otp.request", "ok", target_email="student@fi.uba.ar")

        self.assertIn("s***@fi.uba.ar", logs.output[0])
        self.assertNotIn("student@fi.uba.ar", logs.output[0])


class TestAppendOnly(TestCase):

    def test_existing_event_cannot_be_saved(self):
        event = audit_service.record("auth.otp.request", "ok")
        event.outcome = "tampered"

        with self.assertRaises(AuditEventError):
            event.save()

        event.refresh_from_db()
        self.assertEqual(event.outcome, "ok")
