"""
Background refresh of the unread notification count.

The poller refreshes once when mounted, then on a fixed interval, plus once
more whenever the page it serves goes from hidden to visible. A failed
refresh is logged and the last known count stays on display.
"""
import logging
import threading
import uuid
from enum import Enum
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from . import conf
from .errors import RequestCancelled
from .fetcher import CancellationToken

logger = logging.getLogger(__name__)


class PollState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class NotificationPoller:
    def __init__(
        self,
        load_count: Callable[[CancellationToken], int],
        interval: Optional[int] = None,
        scheduler=None,
        on_change: Optional[Callable[[int], None]] = None,
        name: str = "unread-count",
    ):
        self.load_count = load_count
        self.interval = conf.fetch_setting("POLL_INTERVAL") if interval is None else interval
        self.on_change = on_change
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or BackgroundScheduler(daemon=True)

        self._lock = threading.Lock()
        self._state = PollState.IDLE
        self._count = 0
        self._error = None
        self._visible = True
        self._mounted = False
        self._current_token = None
        self._pending_jobs = set()
        self._job_prefix = f"{name}-{uuid.uuid4().hex[:8]}"
        self._interval_job_id = f"{self._job_prefix}-interval"

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def unread_count(self) -> int:
        return self._count

    @property
    def last_error(self) -> Optional[Exception]:
        return self._error

    @property
    def display_count(self) -> str:
        """Badge text: the count, capped at 99+"""
        return "99+" if self._count > 99 else str(self._count)

    @property
    def mounted(self) -> bool:
        return self._mounted

    def mount(self):
        """Start polling: one refresh now, then one every interval"""
        with self._lock:
            if self._mounted:
                return
            self._mounted = True
            self._state = PollState.LOADING

        if not self.scheduler.running:
            self.scheduler.start()
        self.scheduler.add_job(
            self.refresh,
            "interval",
            seconds=self.interval,
            id=self._interval_job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._schedule_refresh("mount")
        logger.debug(f"Notification poller mounted ({self.interval}s interval)")

    def unmount(self):
        """Stop polling; nothing refreshes after this returns"""
        with self._lock:
            if not self._mounted:
                return
            self._mounted = False
            self._state = PollState.IDLE
            token, self._current_token = self._current_token, None
            job_ids = [self._interval_job_id, *self._pending_jobs]
            self._pending_jobs.clear()

        if token is not None:
            token.cancel()
        for job_id in job_ids:
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                pass
        if self._owns_scheduler:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
            # A shut down scheduler cannot take jobs again
            self.scheduler = BackgroundScheduler(daemon=True)
        logger.debug("Notification poller unmounted")

    def set_visibility(self, visible: bool):
        """Refresh right away when the page becomes visible again"""
        with self._lock:
            became_visible = visible and not self._visible
            self._visible = visible
            mounted = self._mounted
        if became_visible and mounted:
            self._schedule_refresh("visible")

    def _schedule_refresh(self, reason):
        job_id = f"{self._job_prefix}-{reason}-{uuid.uuid4().hex[:8]}"
        with self._lock:
            self._pending_jobs.add(job_id)
        self.scheduler.add_job(self._run_scheduled, id=job_id, args=[job_id])

    def _run_scheduled(self, job_id):
        with self._lock:
            self._pending_jobs.discard(job_id)
        self.refresh()

    def refresh(self):
        """Load the count once. A newer refresh supersedes this one."""
        token = CancellationToken()
        with self._lock:
            if not self._mounted:
                return
            if self._current_token is not None:
                self._current_token.cancel()
            self._current_token = token
            self._state = PollState.LOADING

        try:
            count = self.load_count(token)
        except RequestCancelled:
            logger.debug("Superseded unread count refresh discarded")
            return
        except Exception as e:
            self._fail(token, e)
            return

        with self._lock:
            if token is not self._current_token:
                return
            changed = count != self._count
            self._count = count
            self._error = None
            self._state = PollState.LOADED

        if changed and self.on_change is not None:
            self.on_change(count)

    def _fail(self, token, error):
        """Record a failed refresh; the last known count stays"""
        with self._lock:
            if token is not self._current_token:
                return
            self._error = error
            self._state = PollState.FAILED
        logger.warning(f"Failed to fetch unread count: {error!r}")
