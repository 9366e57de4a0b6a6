from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SecurityAuditEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_type", models.CharField(
                    choices=[
                        ("auth.otp.request", "OTP Request"),
                        ("auth.otp.verify", "OTP Verify"),
                        ("contact_edit.request", "Contact Edit Request"),
                        ("contact_edit.moderate", "Contact Edit Moderate"),
                        ("admin.user.update_role", "Admin: Update Role"),
                        ("admin.user.delete", "Admin: Delete User"),
                        ("admin.user.upsert", "Admin: Upsert User"),
                        ("admin.review.moderate", "Admin: Moderate Review"),
                        ("admin.review.edit", "Admin: Edit Review"),
                        ("admin.listing_images.reorder", "Admin: Reorder Images"),
                        ("admin.publication.update", "Admin: Update Publication"),
                        ("admin.publication.delete_image", "Admin: Delete Image"),
                    ],
                    max_length=64,
                )),
                ("outcome", models.CharField(max_length=64)),
                ("actor_email", models.CharField(blank=True, max_length=320, null=True)),
                ("target_email", models.CharField(blank=True, max_length=320, null=True)),
                ("ip_key_hash", models.CharField(blank=True, max_length=64, null=True)),
                ("subnet_key_hash", models.CharField(blank=True, max_length=64, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                "db_table": "security_audit_events",
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["event_type", "created_at"], name="sec_audit_type_created_idx"),
                ],
            },
        ),
    ]
