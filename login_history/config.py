import calendar
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone


def get_setting(variable, default=None):
    """ get the 'variable' from settings if not there use the
    provided default """
    return getattr(settings, variable, default)


INTERVAL_UNITS = ("DAY", "WEEK", "MONTH", "YEAR")

INTERVAL_RE = re.compile(
    r"^\s*(\d+)\s+(%s)S?\s*$" % "|".join(INTERVAL_UNITS), re.IGNORECASE
)


def parse_interval(value):
    """ Parse an interval expression such as "3 MONTH" into an
    (amount, unit) pair, returns None when it is not one """
    if not value:
        return None
    match = INTERVAL_RE.match(str(value))
    if not match:
        return None
    return int(match.group(1)), match.group(2).upper()


def subtract_interval(moment, amount, unit):
    """ moment minus amount units; months and years are calendar units
    with the day clamped to the end of a shorter month """
    if unit == "DAY":
        return moment - timedelta(days=amount)
    if unit == "WEEK":
        return moment - timedelta(weeks=amount)
    months = amount * 12 if unit == "YEAR" else amount
    year, month = divmod(moment.year * 12 + (moment.month - 1) - months, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def interval_cutoff(interval, now=None):
    """ now minus an interval expression such as "1 WEEK", None when the
    expression can't be parsed """
    parsed = parse_interval(interval)
    if parsed is None:
        return None
    return subtract_interval(now or timezone.now(), *parsed)


@dataclass(frozen=True)
class LoginHistoryConfig:
    """
    Settings for login history, read once per request or job.

    log_nonexistent_users: store attempts for usernames that match no account.
    log_ip_addresses: store the client IP address with each attempt.
    history_max_age: retention interval such as "1 MONTH", None keeps rows forever.
    row_limit: rows per report page, 0 disables paging.
    date_format: django.utils.dateformat format for the report timestamp.
    remove_permission: permission needed to remove rows, None lets any
        report viewer remove them.
    """

    log_nonexistent_users: bool = False
    log_ip_addresses: bool = False
    history_max_age: Optional[str] = None
    row_limit: int = 25
    date_format: str = "Y-m-d H:i:s"
    remove_permission: Optional[str] = None
    behind_reverse_proxy: bool = False
    reverse_proxy_header: str = "HTTP_X_FORWARDED_FOR"
    features_form_field: str = "user_agent_features"
    use_celery: bool = False

    @property
    def max_age_interval(self):
        return parse_interval(self.history_max_age)


def get_config():
    """ Build the config from the LOGIN_HISTORY_* django settings """
    try:
        row_limit = int(get_setting("LOGIN_HISTORY_ROW_LIMIT", 25))
    except (TypeError, ValueError):
        raise ImproperlyConfigured("LOGIN_HISTORY_ROW_LIMIT needs to be an integer")
    if row_limit < 0:
        raise ImproperlyConfigured("LOGIN_HISTORY_ROW_LIMIT can't be negative")

    history_max_age = get_setting("LOGIN_HISTORY_MAX_AGE") or None
    if history_max_age is not None and parse_interval(history_max_age) is None:
        raise ImproperlyConfigured(
            "LOGIN_HISTORY_MAX_AGE needs to look like '<number> <DAY|WEEK|MONTH|YEAR>'"
        )

    return LoginHistoryConfig(
        log_nonexistent_users=bool(
            get_setting("LOGIN_HISTORY_LOG_NONEXISTENT_USERS", False)
        ),
        log_ip_addresses=bool(get_setting("LOGIN_HISTORY_LOG_IP_ADDRESSES", False)),
        history_max_age=history_max_age,
        row_limit=row_limit,
        date_format=get_setting("LOGIN_HISTORY_DATE_FORMAT", "Y-m-d H:i:s"),
        remove_permission=get_setting("LOGIN_HISTORY_REMOVE_PERMISSION") or None,
        behind_reverse_proxy=bool(
            get_setting("LOGIN_HISTORY_BEHIND_REVERSE_PROXY", False)
        ),
        # if the django app is behind a reverse proxy, look for the
        # ip address using this HTTP header value
        reverse_proxy_header=get_setting(
            "LOGIN_HISTORY_REVERSE_PROXY_HEADER", "HTTP_X_FORWARDED_FOR"
        ),
        features_form_field=get_setting(
            "LOGIN_HISTORY_FEATURES_FORM_FIELD", "user_agent_features"
        ),
        use_celery=bool(get_setting("LOGIN_HISTORY_USE_CELERY", False)),
    )
