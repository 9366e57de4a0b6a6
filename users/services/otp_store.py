# users/services/otp_store.py
"""
Persistence of the single active login code per email.

Callers own the transaction: load_for_update / register_failure / consume
are meant to run inside one transaction.atomic() block.
"""

from datetime import datetime, timedelta
from typing import Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from users.models import EmailOTP


def issue(email: str, code_hash: str, ttl_minutes: int, now: Optional[datetime] = None) -> EmailOTP:
    """Store a fresh code, superseding any previous one for the email."""
    now = now or timezone.now()
    with transaction.atomic():
        record, _ = EmailOTP.objects.update_or_create(
            email=email,
            defaults={
                "code_hash": code_hash,
                "expires_at": now + timedelta(minutes=ttl_minutes),
                "attempts": 0,
                "created_at": now,
            },
        )
    return record


def load_for_update(email: str) -> Optional[EmailOTP]:
    return EmailOTP.objects.select_for_update().filter(email=email).first()


def register_failure(record: EmailOTP) -> None:
    EmailOTP.objects.filter(pk=record.pk).update(attempts=F("attempts") + 1)


def consume(record: EmailOTP) -> None:
    EmailOTP.objects.filter(pk=record.pk).delete()


def discard(email: str, code_hash: str) -> None:
    """Remove a code only if it is still the one we issued."""
    EmailOTP.objects.filter(email=email, code_hash=code_hash).delete()
