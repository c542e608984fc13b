import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from .errors import FetchError
from .fetcher import NO_CONTENT

logger = logging.getLogger(__name__)


class ServiceClient:
    """Base class for talking to one area of the school API"""

    def __init__(self, fetcher, cache=None):
        self.fetcher = fetcher
        self.cache = cache

    def _endpoint(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        return f"{path}?{urlencode(query)}" if query else path

    def _get(self, endpoint: str, cancel_token=None) -> Any:
        """GET through the data cache when one is attached"""
        if self.cache is not None and cancel_token is None:
            return self.cache.get(endpoint)
        return self.fetcher.get(endpoint, cancel_token=cancel_token)

    def _invalidate(self, *endpoints):
        if self.cache is None:
            return
        for endpoint in endpoints:
            self.cache.evict(endpoint)

    @staticmethod
    def _payload(result, endpoint):
        """The ``data`` member of an API envelope"""
        if result is NO_CONTENT or not isinstance(result, dict):
            raise FetchError.decode(f"Unexpected response shape from {endpoint}", url=endpoint)
        return result.get("data")

    @staticmethod
    def _page(result, endpoint, items_key):
        if result is NO_CONTENT or not isinstance(result, dict):
            raise FetchError.decode(f"Unexpected response shape from {endpoint}", url=endpoint)
        meta = result.get("meta") or {}
        return {
            items_key: result.get("data") or [],
            "pagination": {
                "current_page": meta.get("page", 1),
                "total_pages": meta.get("totalPages", 1),
                "total_items": meta.get("total", 0),
                "items_per_page": meta.get("limit"),
            },
            "meta": meta,
        }


class NotificationsClient(ServiceClient):
    """Client for the current user's notifications"""

    UNREAD_COUNT = "/notifications/me/unread-count"

    def get_notifications(self, page=1, limit=10, status=None) -> Dict[str, Any]:
        """One page of notifications, newest first"""
        endpoint = self._endpoint(
            "/notifications/me", {"page": page, "limit": limit, "status": status}
        )
        result = self._page(self._get(endpoint), endpoint, "notifications")
        meta = result.pop("meta")
        result["summary"] = {
            "total_unread": meta.get("totalUnread", 0),
            "total_notifications": meta.get("total", 0),
        }
        return result

    def get_unread_count(self, cancel_token=None) -> int:
        data = self._payload(self._get(self.UNREAD_COUNT, cancel_token), self.UNREAD_COUNT)
        try:
            return int(data["unreadCount"])
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError.decode(
                f"Missing unreadCount in response from {self.UNREAD_COUNT}",
                url=self.UNREAD_COUNT,
            ) from e

    def mark_as_read(self, notification_id):
        result = self.fetcher.patch(f"/notifications/{notification_id}/read")
        self._invalidate(self.UNREAD_COUNT)
        return result

    def mark_all_as_read(self):
        result = self.fetcher.patch("/notifications/mark-all-read")
        self._invalidate(self.UNREAD_COUNT)
        return result

    def delete(self, notification_id):
        result = self.fetcher.delete(f"/notifications/{notification_id}")
        self._invalidate(self.UNREAD_COUNT)
        return result


class AnnouncementsClient(ServiceClient):
    """Client for school announcements"""

    BASE = "/communications/announcements"

    def list(self, page=1, limit=10, audience=None, academic_year_id=None):
        endpoint = self._endpoint(
            self.BASE,
            {
                "page": page,
                "limit": limit,
                "audience": audience,
                "academicYearId": academic_year_id,
            },
        )
        result = self._page(self._get(endpoint), endpoint, "announcements")
        result.pop("meta")
        return result

    def get(self, announcement_id):
        endpoint = f"{self.BASE}/{announcement_id}"
        return self._payload(self._get(endpoint), endpoint)

    def create(self, payload: Dict[str, Any]):
        result = self.fetcher.post(self.BASE, data=payload)
        logger.info(f"Announcement created: {payload.get('title')}")
        return self._payload(result, self.BASE)

    def delete(self, announcement_id):
        endpoint = f"{self.BASE}/{announcement_id}"
        result = self.fetcher.delete(endpoint)
        self._invalidate(endpoint)
        return result


class AuthClient(ServiceClient):
    """Profile and academic-year lookups for the signed-in user"""

    ME = "/auth/me"

    def get_me(self) -> Dict[str, Any]:
        user = self._payload(self._get(self.ME), self.ME)
        if not isinstance(user, dict):
            raise FetchError.decode(f"No user in response from {self.ME}", url=self.ME)
        return user

    def get_academic_years_for_role(self, role: str) -> Dict[str, Any]:
        endpoint = self._endpoint("/academic-years/available-for-role", {"role": role})
        data = self._payload(self._get(endpoint), endpoint)
        if not isinstance(data, dict):
            raise FetchError.decode(f"No academic years in response from {endpoint}", url=endpoint)
        return data


class MessagingClient(ServiceClient):
    """Direct messages between staff, parents and students"""

    BASE = "/messaging/simple"
    CATEGORIES = ("ACADEMIC", "FINANCIAL", "DISCIPLINARY", "GENERAL")

    def send(self, receiver_id, subject, content, category="GENERAL"):
        if category not in self.CATEGORIES:
            raise ValueError(f"Unknown message category: {category}")
        endpoint = f"{self.BASE}/send"
        result = self.fetcher.post(
            endpoint,
            data={
                "receiverId": receiver_id,
                "subject": subject,
                "content": content,
                "category": category,
            },
        )
        logger.info(f"Message sent to user {receiver_id}")
        return self._payload(result, endpoint)

    def get_messages(self, type="inbox", page=1, limit=20, category=None) -> List[Dict[str, Any]]:
        endpoint = self._endpoint(
            f"{self.BASE}/messages",
            {"type": type, "page": page, "limit": limit, "category": category},
        )
        data = self._payload(self._get(endpoint), endpoint)
        return data if isinstance(data, list) else []

    def get_contacts(self, role=None, search=None) -> List[Dict[str, Any]]:
        endpoint = self._endpoint(f"{self.BASE}/contacts", {"role": role, "search": search})
        data = self._payload(self._get(endpoint), endpoint)
        return data if isinstance(data, list) else []

    def mark_as_read(self, message_id):
        result = self.fetcher.patch(f"{self.BASE}/messages/{message_id}/read")
        self._invalidate(NotificationsClient.UNREAD_COUNT)
        return result

    def delete(self, message_id):
        result = self.fetcher.delete(f"{self.BASE}/messages/{message_id}")
        self._invalidate(NotificationsClient.UNREAD_COUNT)
        return result
