import html
from dataclasses import dataclass, field
from typing import List, Optional

from django.contrib.auth import get_user_model
from django.urls import NoReverseMatch, reverse
from django.utils import dateformat, timezone

from .config import get_config
from .models import LoginAttempt
from .query import WHEN_CHOICES
from .useragent import UserAgentSummary, describe_features, parse_user_agent

USER_EXISTING = "existing"
USER_DELETED = "deleted"
USER_NONEXISTENT = "nonexistent"

NO_DATA = "No data available"


@dataclass
class ReportRow:
    """ A login attempt prepared for the report table and feed """

    attempt: LoginAttempt
    username: str
    user_state: str
    timestamp: str
    timestamp_iso: str
    user_url: Optional[str] = None
    user_agent: Optional[UserAgentSummary] = None
    features: List[str] = field(default_factory=list)

    @property
    def user_agent_summary(self):
        if self.user_agent is None:
            return NO_DATA
        return str(self.user_agent)


def get_existing_user_ids(attempts):
    """ ids of the referenced accounts that still exist """
    ids = {attempt.user_id for attempt in attempts if attempt.user_id}
    if not ids:
        return set()
    return set(
        get_user_model()
        ._default_manager.filter(pk__in=ids)
        .values_list("pk", flat=True)
    )


def get_user_change_url(user_id):
    opts = get_user_model()._meta
    try:
        return reverse(
            "admin:%s_%s_change" % (opts.app_label, opts.model_name),
            args=(user_id,),
        )
    except NoReverseMatch:
        return None


def get_user_state(attempt, existing_ids):
    if not attempt.user_id:
        return USER_NONEXISTENT
    if attempt.user_id in existing_ids:
        return USER_EXISTING
    return USER_DELETED


def format_timestamp(value, date_format):
    if timezone.is_aware(value):
        value = timezone.localtime(value)
    return dateformat.format(value, date_format)


def build_report_rows(attempts, config=None):
    config = config or get_config()
    existing_ids = get_existing_user_ids(attempts)

    rows = []
    for attempt in attempts:
        user_state = get_user_state(attempt, existing_ids)
        rows.append(
            ReportRow(
                attempt=attempt,
                # usernames are stored escaped, templates escape again
                username=html.unescape(attempt.username),
                user_state=user_state,
                user_url=(
                    get_user_change_url(attempt.user_id)
                    if user_state == USER_EXISTING
                    else None
                ),
                timestamp=format_timestamp(
                    attempt.login_timestamp, config.date_format
                ),
                timestamp_iso=attempt.login_timestamp.isoformat(),
                user_agent=parse_user_agent(attempt.user_agent),
                features=describe_features(attempt.features),
            )
        )
    return rows


def attempt_title(row):
    """ e.g. "Failed login attempt for ghost (nonexistent) from 10.0.0.1" """
    outcome = "Successful" if row.attempt.login_was_successful else "Failed"
    title = "%s login attempt for %s" % (outcome, row.username)
    if row.user_state != USER_EXISTING:
        title += " (%s)" % row.user_state
    if row.attempt.ip_address:
        title += " from %s" % row.attempt.ip_address
    return title


def can_remove(user, config=None):
    """ Removal needs the configured permission; without one anybody who
    may view the report may remove rows """
    config = config or get_config()
    if config.remove_permission:
        return user.has_perm(config.remove_permission)
    return True


def serialize_attempt(attempt):
    """ The row as stored, keyed by column name """
    return {
        f.attname: getattr(attempt, f.attname)
        for f in LoginAttempt._meta.concrete_fields
    }


def get_filter_choices():
    usernames = (
        LoginAttempt.objects.order_by("username")
        .values_list("username", flat=True)
        .distinct()
    )
    return {
        "usernames": [(name, html.unescape(name)) for name in usernames],
        "when": WHEN_CHOICES,
        "login_was_successful": (("1", "Successful"), ("0", "Failed")),
    }
