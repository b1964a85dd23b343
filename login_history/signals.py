from django.dispatch import Signal

login_attempt_recorded = Signal()  # (providing_args=["attempt"])


class LoginHistorySignal:
    """
    Providing a sender is mandatory when sending signals, hence
    this empty sender class.
    """

    pass


def send_login_attempt_recorded_signal(attempt):
    login_attempt_recorded.send(sender=LoginHistorySignal, attempt=attempt)


def user_logged_in_handler(sender, request, user, **kwargs):
    """ record a successful login """
    from .utils import record_login_attempt

    record_login_attempt(request, user.get_username(), True, user=user)


def user_login_failed_handler(sender, credentials, request=None, **kwargs):
    """ record a failed login, credentials arrive with secrets cleansed """
    from django.contrib.auth import get_user_model

    from .utils import record_login_attempt

    username_field = get_user_model().USERNAME_FIELD
    username = credentials.get(username_field) or credentials.get("username")
    record_login_attempt(request, username, False)
