from django.urls import path
from .views import json_view, remove_view, report_view, rss_view

urlpatterns = [
    path("", report_view, name="login_history_report"),
    path("json/", json_view, name="login_history_json"),
    path("rss/", rss_view, name="login_history_rss"),
    path("remove/<int:pk>/", remove_view, name="login_history_remove"),
]
