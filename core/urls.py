# FILE: core/urls.py

from django.contrib import admin
from django.urls import path, include

from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularSwaggerView,
)

urlpatterns = [
    path("admin/", admin.site.urls),

    # Passwordless login (OTP + magic link)
    path("api/auth/", include("users.api.urls")),

    # Security telemetry dashboard
    path("api/admin/", include("security.api.urls")),

    # API Documentation
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),

    # Health checks
    path("health/", include("core.health_urls")),
]
