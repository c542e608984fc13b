import json
import logging
import os

import django
import pytest
import requests
from apscheduler.jobstores.base import JobLookupError

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "portal_service.settings")
os.environ["SESSION_ENGINE"] = "django.contrib.sessions.backends.signed_cookies"
django.setup()

# Let caplog see the portal loggers
logging.getLogger("portal").propagate = True


class FakeSession:
    """Stands in for requests.Session; replays queued responses in order."""

    def __init__(self):
        self.responses = []
        self.calls = []
        self.closed = False

    def queue(self, *items):
        self.responses.extend(items)
        return self

    def request(self, method, url, headers=None, json=None, params=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": dict(headers or {}),
                "json": json,
                "params": params,
                "timeout": timeout,
            }
        )
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item()
        return item

    def close(self):
        self.closed = True


class FakeScheduler:
    """
    The slice of the APScheduler job API the poller uses, driven by a
    manual clock instead of a thread.
    """

    def __init__(self):
        self.now = 0.0
        self.jobs = {}
        self.running = False
        self._counter = 0

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False

    def add_job(self, func, trigger=None, args=None, id=None, seconds=None, **kwargs):
        self._counter += 1
        job_id = id or f"job-{self._counter}"
        if trigger == "interval":
            job = {"func": func, "args": args or (), "interval": seconds, "next": self.now + seconds}
        else:
            job = {"func": func, "args": args or (), "interval": None, "next": self.now}
        job["order"] = self._counter
        self.jobs[job_id] = job

    def remove_job(self, job_id):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    def run_pending(self):
        self.advance(0)

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [
                (job["next"], job["order"], job_id)
                for job_id, job in self.jobs.items()
                if job["next"] <= target
            ]
            if not due:
                break
            when, _, job_id = min(due)
            self.now = when
            job = self.jobs[job_id]
            if job["interval"] is None:
                del self.jobs[job_id]
            else:
                job["next"] += job["interval"]
            job["func"](*job["args"])
        self.now = target


def build_response(status=200, body=None, content_type="application/json", reason=""):
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.url = "http://api.test"
    if body is None:
        response._content = b""
    elif isinstance(body, bytes):
        response._content = body
    else:
        response._content = json.dumps(body).encode("utf-8")
    if content_type:
        response.headers["Content-Type"] = content_type
    response.encoding = "utf-8"
    return response


@pytest.fixture
def make_response():
    return build_response


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture(autouse=True)
def clear_cache():
    from django.core.cache import caches

    caches["default"].clear()
    yield
    caches["default"].clear()
