from django.core.management.base import BaseCommand, CommandError

from ...config import get_config, parse_interval
from ...data import delete_expired_login_attempts


class Command(BaseCommand):
    """ clean up management command """

    help = "Cleans up the login history table"

    def add_arguments(self, parser):
        parser.add_argument(
            "--max-age",
            dest="max_age",
            default=None,
            help='Remove attempts older than this, e.g. "3 MONTH". '
            "Defaults to LOGIN_HISTORY_MAX_AGE.",
        )

    def handle(self, **options):
        """
        Removes any login attempts older than --max-age or your
        LOGIN_HISTORY_MAX_AGE config. Nothing is removed when neither is set.
        """
        max_age = options.get("max_age") or get_config().history_max_age
        if not max_age:
            self.stdout.write("LOGIN_HISTORY_MAX_AGE is not set, nothing to clean up")
            return
        if parse_interval(max_age) is None:
            raise CommandError("Invalid max age %r" % max_age)

        self.stdout.write("Starting clean up of login history older than %s" % max_age)
        removed = delete_expired_login_attempts(max_age)
        self.stdout.write("Finished. Removed {0} login attempts.".format(removed))
