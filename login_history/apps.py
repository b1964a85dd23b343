from django.apps import AppConfig
from django.contrib.auth.signals import user_logged_in, user_login_failed


class LoginHistoryAppConfig(AppConfig):
    name = "login_history"
    verbose_name = "Login history"
    default_auto_field = "django.db.models.AutoField"

    def ready(self):
        from .signals import user_logged_in_handler, user_login_failed_handler

        user_logged_in.connect(
            user_logged_in_handler, dispatch_uid="login_history_logged_in"
        )
        user_login_failed.connect(
            user_login_failed_handler, dispatch_uid="login_history_login_failed"
        )
