import json

from django.db import models


class LoginAttemptQuerySet(models.QuerySet):
    def successful(self):
        return self.filter(login_was_successful=True)

    def failed(self):
        return self.filter(login_was_successful=False)

    def for_user(self, user):
        return self.filter(user_id=user.pk)

    def older_than(self, moment):
        return self.filter(login_timestamp__lt=moment)


class LoginAttempt(models.Model):
    """ Login attempt log """

    # 0 when the submitted username matched no account; not a foreign key
    # so rows outlive deleted accounts.
    user_id = models.PositiveIntegerField(default=0,)
    username = models.CharField(max_length=128,)
    user_agent = models.CharField(max_length=256, null=True, blank=True,)
    user_agent_features = models.TextField(null=True, blank=True,)
    ip_address = models.GenericIPAddressField(
        verbose_name="IP Address", null=True, blank=True,
    )
    login_was_successful = models.BooleanField(default=False,)
    login_timestamp = models.DateTimeField(auto_now_add=True, db_index=True,)

    objects = LoginAttemptQuerySet.as_manager()

    class Meta:
        db_table = "process_login_history"
        ordering = ["-login_timestamp", "-id"]

    def __str__(self):
        return "{0} @ {1} | {2}".format(
            self.username, self.login_timestamp, self.login_was_successful
        )

    @property
    def features(self):
        """ user_agent_features decoded, None if missing or unreadable """
        if not self.user_agent_features:
            return None
        try:
            features = json.loads(self.user_agent_features)
        except ValueError:
            return None
        return features if isinstance(features, dict) else None
