import hashlib
import json
import logging
from contextlib import contextmanager

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.debug import sensitive_post_parameters
from django.views.decorators.http import require_GET, require_POST

from . import auth, conf
from .cache import DataCache
from .clients import NotificationsClient
from .errors import FetchError
from .fetcher import Fetcher

logger = logging.getLogger(__name__)


def build_fetcher(session=None):
    """Fetcher that authenticates with the token stored in session"""
    return Fetcher(
        token_getter=auth.token_accessor(session) if session is not None else None,
        base_url=conf.fetch_setting("API_BASE_URL"),
        timeout=conf.fetch_setting("TIMEOUT"),
    )


@contextmanager
def data_cache_for(request):
    """
    A DataCache scoped to the caller's token, released when the block
    exits. Entries stay in the backend so later requests can reuse them.
    """
    token = auth.get_auth_token(request.session) or "anonymous"
    scope = hashlib.sha256(token.encode()).hexdigest()[:16]
    cache = DataCache(build_fetcher(request.session), key_prefix=f"portal:data:{scope}")
    try:
        yield cache
    finally:
        cache.close(evict=False)


def error_response(error: FetchError):
    """Map a FetchError to a JSON response"""
    status = error.status if error.kind == FetchError.HTTP and error.status else 502
    return JsonResponse({"error": error.message, "kind": error.kind}, status=status)


def _read_body(request):
    if request.content_type == "application/json":
        try:
            return json.loads(request.body or b"{}")
        except ValueError:
            return None
    return request.POST.dict()


def health_check(request):
    """Health check endpoint for the portal service."""
    return JsonResponse({"status": "healthy", "service": "portal", "version": "1.0.0"})


@csrf_exempt
@sensitive_post_parameters()
@require_POST
def login_view(request):
    """Authenticate against the school API and keep the token in the session"""
    data = _read_body(request)
    if not isinstance(data, dict):
        return JsonResponse({"error": "Invalid JSON body"}, status=400)

    identifier = data.get("email") or data.get("matricule") or ""
    password = data.get("password") or ""
    if not isinstance(identifier, str) or not isinstance(password, str):
        return JsonResponse({"error": "Credentials must be strings"}, status=400)

    identifier = identifier.strip()
    if not identifier or not password:
        logger.warning("Login failed - Missing credentials")
        return JsonResponse({"error": "Email or matricule and password are required"}, status=400)

    credentials = {"password": password}
    # Anything with an @ is an email, everything else a matricule
    credentials["email" if "@" in identifier else "matricule"] = identifier

    fetcher = build_fetcher()
    try:
        result = fetcher.post("/auth/login", data=credentials)
    except FetchError as e:
        logger.warning(f"Login failed for {identifier}: {e.message}")
        return error_response(e)
    finally:
        fetcher.close()

    payload = result.get("data") if isinstance(result, dict) else None
    token = payload.get("token") if isinstance(payload, dict) else None
    if not token:
        logger.error("No token in login response")
        return JsonResponse({"error": "Authentication failed - no token received"}, status=502)

    request.session.cycle_key()
    user = payload.get("user") or {}
    roles = auth.extract_unique_roles(user.get("userRoles"))
    auth.set_auth_token(request.session, token, payload.get("expiresIn"))
    request.session[auth.USER_DATA_KEY] = user
    if roles:
        request.session[auth.USER_ROLE_KEY] = roles[0]

    logger.info(f"User {identifier} logged in with roles {roles}")
    return JsonResponse(
        {
            "user": user,
            "roles": roles,
            "redirect": auth.get_dashboard_route(roles[0]) if roles else "/dashboard",
            "requires_academic_year": bool(roles) and auth.requires_academic_year(roles[0]),
        }
    )


@csrf_exempt
@require_POST
def logout_view(request):
    auth.clear_auth_data(request.session)
    return JsonResponse({"success": True})


@require_GET
@auth.require_auth
def unread_count(request):
    with data_cache_for(request) as cache:
        client = NotificationsClient(cache.fetcher, cache=cache)
        try:
            count = client.get_unread_count()
        except FetchError as e:
            return error_response(e)
    return JsonResponse({"unread_count": count, "display": "99+" if count > 99 else str(count)})


@require_GET
@auth.require_auth
def notifications(request):
    try:
        page = int(request.GET.get("page", 1))
        limit = int(request.GET.get("limit", 10))
    except ValueError:
        return JsonResponse({"error": "page and limit must be integers"}, status=400)

    with data_cache_for(request) as cache:
        client = NotificationsClient(cache.fetcher, cache=cache)
        try:
            result = client.get_notifications(page, limit, request.GET.get("status"))
        except FetchError as e:
            return error_response(e)
    return JsonResponse(result)
