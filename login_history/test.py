from django.test.testcases import TestCase, TransactionTestCase

from .models import LoginAttempt


class LoginHistoryTestCaseMixin:
    """Mixin with helpers to set up login history rows"""

    def create_attempt(
        self,
        username="alice",
        user_id=0,
        login_was_successful=False,
        login_timestamp=None,
        **kwargs
    ):
        """create a row, login_timestamp is applied after the insert since
        the column is filled in automatically"""
        attempt = LoginAttempt.objects.create(
            username=username,
            user_id=user_id,
            login_was_successful=login_was_successful,
            **kwargs
        )
        if login_timestamp is not None:
            LoginAttempt.objects.filter(pk=attempt.pk).update(
                login_timestamp=login_timestamp
            )
            attempt.refresh_from_db()
        return attempt


class LoginHistoryTransactionTestCase(LoginHistoryTestCaseMixin, TransactionTestCase):
    """Helper TransactionTestCase with the login history helpers"""

    pass


class LoginHistoryTestCase(LoginHistoryTestCaseMixin, TestCase):
    """Helper TestCase with the login history helpers"""

    pass
