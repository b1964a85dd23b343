from django.urls import include, path
from django.contrib import admin

urlpatterns = [
    path("admin/login-history/", include("login_history.urls")),
    path("admin/", admin.site.urls),
]
