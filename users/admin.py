from django.contrib import admin
from .models import (
    User,
    EmailOTP,
    RateLimitBucket,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = (
        "email",
        "role",
        "is_active",
        "created_at",
        "updated_at",
    )
    list_editable = ("role", "is_active")
    search_fields = ("email",)
    list_filter = ("role", "is_active")
    ordering = ("email",)


@admin.register(EmailOTP)
class EmailOTPAdmin(admin.ModelAdmin):
    list_display = ("email", "created_at", "expires_at", "attempts")
    search_fields = ("email",)
    ordering = ("-created_at",)
    # the hash is useless to an operator and should not be edited
    exclude = ("code_hash",)
    readonly_fields = ("email", "created_at", "expires_at", "attempts")

    def has_add_permission(self, request):
        return False


@admin.register(RateLimitBucket)
class RateLimitBucketAdmin(admin.ModelAdmin):
    list_display = ("scope", "key", "window_start", "hits", "updated_at")
    search_fields = ("key",)
    list_filter = ("scope",)
    ordering = ("-updated_at",)
