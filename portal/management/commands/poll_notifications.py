import logging
import os
import signal
import threading

from django.core.management.base import BaseCommand, CommandError

from portal import conf
from portal.clients import NotificationsClient
from portal.fetcher import Fetcher
from portal.polling import NotificationPoller

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Poll the unread notification count and print it whenever it changes"

    def add_arguments(self, parser):
        parser.add_argument(
            "--token",
            default=os.getenv("PORTAL_API_TOKEN"),
            help="Bearer token (defaults to $PORTAL_API_TOKEN)",
        )
        parser.add_argument(
            "--interval",
            type=int,
            default=conf.fetch_setting("POLL_INTERVAL"),
            help="Seconds between refreshes",
        )

    def handle(self, *args, **options):
        token = options["token"]
        if not token:
            raise CommandError("A token is required (--token or PORTAL_API_TOKEN)")

        fetcher = Fetcher(
            token_getter=lambda: token,
            base_url=conf.fetch_setting("API_BASE_URL"),
            timeout=conf.fetch_setting("TIMEOUT"),
        )
        client = NotificationsClient(fetcher)
        poller = NotificationPoller(
            lambda cancel_token: client.get_unread_count(cancel_token=cancel_token),
            interval=options["interval"],
            on_change=lambda count: self.stdout.write(f"Unread notifications: {count}"),
        )

        def on_wake(signum, frame):
            # SIGUSR1 stands in for the page becoming visible again
            poller.set_visibility(False)
            poller.set_visibility(True)

        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, on_wake)

        stop = threading.Event()

        poller.mount()
        try:
            stop.wait()
        except KeyboardInterrupt:
            pass
        finally:
            logger.info("Stopping notification poller")
            poller.unmount()
            fetcher.close()
