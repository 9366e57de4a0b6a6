# security/api/urls.py
from django.urls import path

from .views import SecurityTelemetryView

app_name = "security"

urlpatterns = [
    path("security/", SecurityTelemetryView.as_view(), name="telemetry"),
]
