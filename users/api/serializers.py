"""
API Serializers for the session endpoint.
"""
from rest_framework import serializers

ACTION_REQUEST_OTP = "requestOtp"
ACTION_VERIFY_OTP = "verifyOtp"


class SessionActionSerializer(serializers.Serializer):
    """
    Body of POST /api/auth/session/.

    Everything is optional here; the view decides which fields an action
    needs so that missing fields can be audited.
    """

    action = serializers.CharField(required=False, allow_blank=True, max_length=32)
    email = serializers.CharField(required=False, allow_blank=True, max_length=320)
    otpCode = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False, max_length=24)
    trustDevice = serializers.BooleanField(required=False, default=False)
    lang = serializers.CharField(required=False, allow_blank=True, max_length=8)

    def validate_email(self, value):
        return value.strip().lower()


class SessionSerializer(serializers.Serializer):
    """Current session as seen by the client."""

    role = serializers.CharField()
    authMethod = serializers.CharField(source="auth_method", allow_null=True)
    email = serializers.CharField(allow_null=True)
