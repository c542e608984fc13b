import logging
import threading
from http import HTTPStatus
from typing import Any, Callable, Dict, Optional
from urllib.parse import urljoin

import requests

from .errors import FetchError, RequestCancelled

logger = logging.getLogger(__name__)


class _NoContent:
    """Returned for 204 responses and bodies that are not JSON."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "NO_CONTENT"

    def __reduce__(self):
        return (_NoContent, ())


NO_CONTENT = _NoContent()


class CancellationToken:
    """Lets the owner of a request discard its result once it is superseded."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise RequestCancelled()


def reason_phrase(status: int, fallback: str = "") -> str:
    """Standard reason phrase for ``status``."""
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return fallback or f"HTTP {status}"


class Fetcher:
    """
    Performs one HTTP round-trip against the school API and normalizes the
    outcome: decoded JSON, ``NO_CONTENT``, or a raised ``FetchError``.
    """

    def __init__(
        self,
        token_getter: Optional[Callable[[], Optional[str]]] = None,
        base_url: str = "",
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.token_getter = token_getter
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def __call__(self, url: str, cancel_token: Optional[CancellationToken] = None) -> Any:
        return self.get(url, cancel_token=cancel_token)

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests"""
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        token = self.token_getter() if self.token_getter else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        return headers

    def _build_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")) or not self.base_url:
            return url
        return urljoin(f"{self.base_url}/", url.lstrip("/"))

    def request(
        self,
        method: str,
        url: str,
        data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        """Make a single HTTP request; no retries."""
        url = self._build_url(url)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=self._get_headers(),
                json=data,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"{method} request failed for {url}: {e}")
            raise FetchError.network(str(e) or "Network error", url=url) from e

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        return self._handle_response(response, url)

    def get(self, url, params=None, cancel_token=None):
        return self.request("GET", url, params=params, cancel_token=cancel_token)

    def post(self, url, data=None, cancel_token=None):
        return self.request("POST", url, data=data, cancel_token=cancel_token)

    def put(self, url, data=None, cancel_token=None):
        return self.request("PUT", url, data=data, cancel_token=cancel_token)

    def patch(self, url, data=None, cancel_token=None):
        return self.request("PATCH", url, data=data, cancel_token=cancel_token)

    def delete(self, url, cancel_token=None):
        return self.request("DELETE", url, cancel_token=cancel_token)

    def _handle_response(self, response, url):
        """Classify the response"""
        status = response.status_code
        if not 200 <= status < 300:
            message = reason_phrase(status, response.reason)
            try:
                error_data = response.json()
            except ValueError:
                error_data = None
            if isinstance(error_data, dict):
                message = error_data.get("message") or error_data.get("error") or message

            logger.error(f"Fetch error ({status}) for {url}: {message}")
            raise FetchError.http(status, message, url=url)

        content_type = response.headers.get("Content-Type", "")
        if status == 204 or "application/json" not in content_type:
            return NO_CONTENT

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Failed to parse JSON response for {url}: {e}")
            raise FetchError.decode(
                f"Failed to parse JSON response from {url}", status=status, url=url
            ) from e

    def close(self):
        self.session.close()
