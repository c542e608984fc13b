"""
Session validation for the portal's API-backed endpoints
"""
import logging

from django.http import JsonResponse
from django.urls import reverse
from django.utils.cache import add_never_cache_headers

from . import auth

logger = logging.getLogger(__name__)


class SessionValidationMiddleware:
    """
    Clears the auth data of sessions whose token has expired and rejects
    their requests to protected paths.
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.public_paths = [
            reverse("login"),
            reverse("logout"),
            reverse("health_check"),
            "/favicon.ico",
        ]

    def is_public_path(self, path):
        """Check if path is public"""
        return any(path.startswith(p) for p in self.public_paths)

    def __call__(self, request):
        if self.is_public_path(request.path):
            return self.get_response(request)

        session = request.session
        if auth.get_auth_token(session) is not None and auth.is_token_expired(session):
            logger.warning(f"Expired session token on {request.path}, clearing auth data")
            auth.clear_auth_data(session)
            return JsonResponse({"error": "Your session has expired. Please log in again."}, status=401)

        response = self.get_response(request)
        add_never_cache_headers(response)
        return response
