"""
Settings for the portal data layer, read from ``settings.PORTAL_FETCH``.
"""
from django.conf import settings

DEFAULTS = {
    "API_BASE_URL": "http://localhost:4000/api/v1",
    "TIMEOUT": None,
    "DEDUPE_INTERVAL": 2.0,
    "POLL_INTERVAL": 30,
    "CACHE_ALIAS": "default",
    "CACHE_TIMEOUT": 300,
}


def fetch_setting(name):
    """Return a PORTAL_FETCH value, falling back to the defaults above."""
    configured = getattr(settings, "PORTAL_FETCH", {})
    if name in configured:
        return configured[name]
    return DEFAULTS[name]
