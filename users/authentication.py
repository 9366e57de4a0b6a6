# users/authentication.py
"""
DRF authentication from the signed role cookie.
"""
import logging

from django.conf import settings
from django.db import DatabaseError
from rest_framework.authentication import BaseAuthentication

from users.services import user_directory
from users.services.session_service import RoleSession, resolve_role_session

logger = logging.getLogger("users.security")


def revalidate_session(session: RoleSession) -> RoleSession:
    """
    Re-read the directory for a cookie session.

    Deleted or deactivated users become visitors; demoted or promoted users
    get their current role.
    """
    if not session.is_authenticated:
        return session

    entry = user_directory.lookup(session.email)
    if entry is None or not entry.can_sign_in:
        return RoleSession()
    if entry.role != session.role:
        return RoleSession(role=entry.role, auth_method=session.auth_method, email=session.email)
    return session


class RoleCookieAuthentication(BaseAuthentication):
    """
    Sets request.user to a RoleSession for signed-in users.

    Visitors are left unauthenticated (request.user is None).
    """

    def authenticate(self, request):
        raw = request.COOKIES.get(settings.ROLE_COOKIE_NAME)
        if not raw:
            return None

        session = resolve_role_session(raw)
        if not session.is_authenticated:
            return None

        try:
            session = revalidate_session(session)
        except DatabaseError as e:
            logger.error(f"Could not re-validate role session: {e}")
            return None

        if not session.is_authenticated:
            return None
        return (session, None)

    def authenticate_header(self, request):
        # a value here turns NotAuthenticated into 401 instead of 403
        return 'Cookie realm="api"'
