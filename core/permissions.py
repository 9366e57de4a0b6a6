# FILE: core/permissions.py

"""
CUSTOM PERMISSIONS

Role checks against the signed role-cookie session.
"""

from rest_framework.permissions import BasePermission


class IsAdminRole(BasePermission):
    """
    Permission check for admin sessions.
    """

    message = "Unauthorized"

    def has_permission(self, request, view):
        return (
            request.user is not None and
            getattr(request.user, "role", "visitor") == "admin"
        )
