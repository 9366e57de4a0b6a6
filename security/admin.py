from django.contrib import admin

from .models import SecurityAuditEvent


@admin.register(SecurityAuditEvent)
class SecurityAuditEventAdmin(admin.ModelAdmin):
    list_display = ("created_at", "event_type", "outcome", "actor_email", "target_email")
    list_filter = ("event_type", "outcome")
    search_fields = ("actor_email", "target_email")
    ordering = ("-created_at",)
    readonly_fields = (
        "event_type",
        "outcome",
        "actor_email",
        "target_email",
        "ip_key_hash",
        "subnet_key_hash",
        "metadata",
        "created_at",
    )

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
