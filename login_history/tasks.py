from .config import get_config
from .data import delete_expired_login_attempts


def cleanup_login_history_task():
    """ Remove login attempts older than LOGIN_HISTORY_MAX_AGE, meant to be
    scheduled periodically (e.g. with celery beat) """
    return delete_expired_login_attempts()


if get_config().use_celery:
    from celery import shared_task
    cleanup_login_history_task = shared_task(cleanup_login_history_task)
