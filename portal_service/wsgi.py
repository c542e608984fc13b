"""
WSGI config for the portal frontend service.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "portal_service.settings")

application = get_wsgi_application()
