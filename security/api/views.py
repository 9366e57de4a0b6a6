# security/api/views.py
from django.utils.decorators import method_decorator
from django.views.decorators.cache import never_cache
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import AdminRequiredException, TelemetryUnavailableException
from core.permissions import IsAdminRole
from security.services.telemetry_service import get_security_telemetry_snapshot


@method_decorator(never_cache, name="dispatch")
class SecurityTelemetryView(APIView):
    """Security telemetry snapshot for admins."""
    permission_classes = [IsAdminRole]

    def permission_denied(self, request, message=None, code=None):
        # visitors and non-admins get the same answer
        raise AdminRequiredException()

    def get(self, request):
        result = get_security_telemetry_snapshot()
        if not result.ok:
            raise TelemetryUnavailableException()
        return Response({"ok": True, "telemetry": result.snapshot})
