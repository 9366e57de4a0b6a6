# users/api/urls.py
from django.urls import path

from .views import (
    SessionView,
    MagicLinkView,
)

app_name = "users"

urlpatterns = [
    # OTP login, current session, logout
    path("session/", SessionView.as_view(), name="session"),

    # One-click login from the email
    path("session/magic/", MagicLinkView.as_view(), name="session-magic"),
]
