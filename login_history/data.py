import logging

from django.db import DatabaseError

from .config import get_config, interval_cutoff
from .models import LoginAttempt

LOG = logging.getLogger(__name__)


def store_login_attempt(
    user_id,
    username,
    user_agent,
    user_agent_features,
    ip_address,
    login_was_successful,
):
    """ Store the login attempt to the db. """
    return LoginAttempt.objects.create(
        user_id=user_id,
        username=username,
        user_agent=user_agent,
        user_agent_features=user_agent_features,
        ip_address=ip_address,
        login_was_successful=login_was_successful,
    )


def remove_login_attempt(pk):
    """ Delete one row by id. Removing a row that is already gone is not an
    error, the number of deleted rows is returned either way. """
    deleted, _ = LoginAttempt.objects.filter(pk=pk).delete()
    return deleted


def delete_expired_login_attempts(max_age=None, now=None):
    """
    Remove the rows older than max_age (an interval expression like
    "1 MONTH"), by default LOGIN_HISTORY_MAX_AGE.

    Does nothing when retention is disabled. Database errors are logged
    and reported as zero deleted rows.
    """
    if max_age is None:
        max_age = get_config().history_max_age
    if not max_age:
        return 0

    cutoff = interval_cutoff(max_age, now)
    if cutoff is None:
        LOG.warning("Ignoring login history max age %r", max_age)
        return 0

    try:
        deleted, _ = LoginAttempt.objects.older_than(cutoff).delete()
    except DatabaseError:
        LOG.warning("Could not clean up login history", exc_info=True)
        return 0

    LOG.info("Removed %d login attempts older than %s", deleted, cutoff)
    return deleted


def last_login_attempt(user, successful=None):
    """ The most recent attempt logged for user, optionally only the
    successful or failed ones """
    attempts = LoginAttempt.objects.for_user(user)
    if successful is not None:
        attempts = attempts.filter(login_was_successful=successful)
    return attempts.order_by("-login_timestamp", "-id").first()
