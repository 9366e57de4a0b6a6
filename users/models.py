# users/models.py

from django.db import models
from django.utils import timezone


# ============================================================
# USER DIRECTORY
# ============================================================

class User(models.Model):
    """
    People allowed to sign in with an emailed code.

    Visitors have no row; the role cookie of a signed-in user is always
    re-checked against this table.
    """

    class Role(models.TextChoices):
        WHITELISTED = "whitelisted", "Whitelisted"
        ADMIN = "admin", "Admin"

    email = models.EmailField(max_length=320, unique=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.WHITELISTED)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "users"
        verbose_name = "User"
        verbose_name_plural = "Users"
        ordering = ["email"]

    def save(self, *args, **kwargs):
        self.email = (self.email or "").strip().lower()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.email} ({self.role})"


# ============================================================
# OTP MODELS
# ============================================================

class EmailOTP(models.Model):
    """
    The single pending login code of an email address.

    Only the keyed hash of the code is stored. Issuing a new code replaces
    the row; a successful verify deletes it.
    """

    email = models.CharField(max_length=320, unique=True)
    code_hash = models.CharField(max_length=64)
    expires_at = models.DateTimeField()
    attempts = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "auth_email_otps"
        verbose_name = "Email OTP"
        verbose_name_plural = "Email OTPs"
        indexes = [
            models.Index(fields=["expires_at"], name="auth_otp_expires_idx"),
        ]

    def is_expired(self, now=None) -> bool:
        return (now or timezone.now()) >= self.expires_at

    def is_exhausted(self, max_attempts: int) -> bool:
        return self.attempts >= max_attempts

    def __str__(self):
        return f"OTP for {self.email} (expires {self.expires_at:%Y-%m-%d %H:%M})"


class RateLimitBucket(models.Model):
    """Hit counter of one (scope, key) pair within one fixed window."""

    scope = models.CharField(max_length=64)
    key = models.CharField(max_length=320)
    window_start = models.DateTimeField()
    hits = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "auth_rate_limit_buckets"
        verbose_name = "Rate Limit Bucket"
        verbose_name_plural = "Rate Limit Buckets"
        constraints = [
            models.UniqueConstraint(
                fields=["scope", "key", "window_start"],
                name="unique_rate_limit_bucket",
            )
        ]
        indexes = [
            models.Index(fields=["updated_at"], name="auth_rl_updated_idx"),
        ]

    def __str__(self):
        return f"{self.scope}:{self.key} = {self.hits}"
