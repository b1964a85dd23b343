from django.contrib import admin
from .models import LoginAttempt


class LoginAttemptAdmin(admin.ModelAdmin):
    """ Login attempt admin config, rows can be looked at and deleted
    but never edited """

    list_display = (
        "login_timestamp",
        "username",
        "user_id",
        "ip_address",
        "login_was_successful",
        "user_agent",
    )

    list_filter = ("login_was_successful",)

    search_fields = [
        "ip_address",
        "username",
    ]

    date_hierarchy = "login_timestamp"

    fieldsets = (
        (None, {"fields": ("username", "user_id", "login_was_successful")}),
        (
            "Meta Data",
            {"fields": ("user_agent", "user_agent_features", "ip_address")},
        ),
    )

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


admin.site.register(LoginAttempt, LoginAttemptAdmin)
