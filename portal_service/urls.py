"""
URL configuration for the portal frontend service.
"""
from django.urls import include, path

urlpatterns = [
    path("", include("portal.urls")),
]
