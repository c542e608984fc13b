"""
Session token handling and role helpers.

The bearer token returned by the school API at login is kept in the Django
session; every outgoing API call reads it from there.
"""
import logging
import re
import time
from functools import wraps

from django.http import JsonResponse

logger = logging.getLogger(__name__)

TOKEN_SESSION_KEY = "api_token"
TOKEN_EXPIRY_KEY = "token_expiry"
REFRESH_TOKEN_KEY = "refresh_token"
USER_DATA_KEY = "user_data"
USER_ROLE_KEY = "user_role"
ACADEMIC_YEAR_KEY = "academic_year"

DEFAULT_TOKEN_LIFETIME = 24 * 60 * 60
# Refresh when 5 minutes are left
REFRESH_THRESHOLD = 5 * 60

_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60}

DASHBOARD_ROUTES = {
    "SUPER_MANAGER": "/dashboard/super-manager",
    "PRINCIPAL": "/dashboard/principal",
    "VICE_PRINCIPAL": "/dashboard/vice-principal",
    "TEACHER": "/dashboard/teacher",
    "HOD": "/dashboard/hod",
    "BURSAR": "/dashboard/bursar",
    "DISCIPLINE_MASTER": "/dashboard/discipline-master",
    "GUIDANCE_COUNSELOR": "/dashboard/guidance-counselor",
    "PARENT": "/dashboard/parent-student",
    "STUDENT": "/dashboard/parent-student",
    "MANAGER": "/dashboard/manager",
}

ROLES_REQUIRING_ACADEMIC_YEAR = [
    "TEACHER",
    "HOD",
    "VICE_PRINCIPAL",
    "DISCIPLINE_MASTER",
    "GUIDANCE_COUNSELOR",
    "BURSAR",
]


def get_auth_token(session):
    """Get the API token from session, or None"""
    if session is None:
        return None
    return session.get(TOKEN_SESSION_KEY) or None


def token_accessor(session):
    """Bind get_auth_token to one session for use by a Fetcher"""
    return lambda: get_auth_token(session)


def parse_expires_in(expires_in):
    """
    Convert a lifetime such as "24h", "1d", "30m" or "45" to seconds.
    Bare numbers are seconds.
    """
    if expires_in is None or expires_in == "":
        return DEFAULT_TOKEN_LIFETIME
    if isinstance(expires_in, (int, float)):
        return int(expires_in)

    digits = re.sub(r"[^0-9]", "", str(expires_in))
    unit = re.sub(r"[0-9]", "", str(expires_in)).strip()
    if not digits:
        return DEFAULT_TOKEN_LIFETIME
    return int(digits) * _UNIT_SECONDS.get(unit, 1)


def set_auth_token(session, token, expires_in=None, now=None):
    """Store the token and when it stops being valid"""
    now = time.time() if now is None else now
    session[TOKEN_SESSION_KEY] = token
    session[TOKEN_EXPIRY_KEY] = now + parse_expires_in(expires_in)


def is_token_expired(session, now=None):
    """True if the token is expired or close to expiry"""
    expiry = session.get(TOKEN_EXPIRY_KEY)
    if expiry is None:
        return True
    now = time.time() if now is None else now
    return now >= float(expiry) - REFRESH_THRESHOLD


def clear_auth_data(session):
    """Remove everything login stored in the session"""
    for key in (
        TOKEN_SESSION_KEY,
        TOKEN_EXPIRY_KEY,
        REFRESH_TOKEN_KEY,
        USER_DATA_KEY,
        USER_ROLE_KEY,
        ACADEMIC_YEAR_KEY,
    ):
        session.pop(key, None)


def is_authenticated(session, now=None):
    """Check if user is authenticated"""
    return get_auth_token(session) is not None and not is_token_expired(session, now)


def get_auth_headers(session):
    token = get_auth_token(session)
    return {"Authorization": f"Bearer {token}"} if token else {}


def get_user_data(session):
    """Get user data from session"""
    return session.get(USER_DATA_KEY, {})


def extract_unique_roles(user_roles):
    """Unique role names from the API's userRoles list, in first-seen order"""
    if not isinstance(user_roles, list):
        return []
    roles = []
    for entry in user_roles:
        role = entry.get("role") if isinstance(entry, dict) else None
        if role and role not in roles:
            roles.append(role)
    return roles


def format_role_name(role):
    """DISCIPLINE_MASTER -> Discipline Master"""
    if not role:
        return ""
    return role.lower().replace("_", " ").title()


def format_role_for_url(role):
    if not role:
        return ""
    return role.lower().replace("_", "-")


def requires_academic_year(role):
    return role in ROLES_REQUIRING_ACADEMIC_YEAR


def get_dashboard_route(role):
    return DASHBOARD_ROUTES.get(role, "/dashboard")


def require_auth(view_func):
    """Decorator to require a valid API token in the session"""

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        if not is_authenticated(request.session):
            logger.warning(f"Unauthenticated request to {request.path}")
            return JsonResponse({"error": "Authentication required"}, status=401)
        return view_func(request, *args, **kwargs)

    return wrapper
