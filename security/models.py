# security/models.py

from django.db import models


class AuditEventError(Exception):
    pass


class SecurityAuditEvent(models.Model):
    """
    Append-only record of a security-relevant action.

    Network keys are stored only as keyed hashes; raw addresses never
    reach this table.
    """

    class EventType(models.TextChoices):
        OTP_REQUEST = "auth.otp.request", "OTP Request"
        OTP_VERIFY = "auth.otp.verify", "OTP Verify"
        CONTACT_EDIT_REQUEST = "contact_edit.request", "Contact Edit Request"
        CONTACT_EDIT_MODERATE = "contact_edit.moderate", "Contact Edit Moderate"
        ADMIN_USER_UPDATE_ROLE = "admin.user.update_role", "Admin: Update Role"
        ADMIN_USER_DELETE = "admin.user.delete", "Admin: Delete User"
        ADMIN_USER_UPSERT = "admin.user.upsert", "Admin: Upsert User"
        ADMIN_REVIEW_MODERATE = "admin.review.moderate", "Admin: Moderate Review"
        ADMIN_REVIEW_EDIT = "admin.review.edit", "Admin: Edit Review"
        ADMIN_LISTING_IMAGES_REORDER = "admin.listing_images.reorder", "Admin: Reorder Images"
        ADMIN_PUBLICATION_UPDATE = "admin.publication.update", "Admin: Update Publication"
        ADMIN_PUBLICATION_DELETE_IMAGE = "admin.publication.delete_image", "Admin: Delete Image"

    event_type = models.CharField(max_length=64, choices=EventType.choices)
    outcome = models.CharField(max_length=64)
    actor_email = models.CharField(max_length=320, null=True, blank=True)
    target_email = models.CharField(max_length=320, null=True, blank=True)
    ip_key_hash = models.CharField(max_length=64, null=True, blank=True)
    subnet_key_hash = models.CharField(max_length=64, null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "security_audit_events"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["event_type", "created_at"], name="sec_audit_type_created_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AuditEventError("Security audit events are append-only")
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.event_type}:{self.outcome} @ {self.created_at}"
