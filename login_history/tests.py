import json
from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import authenticate
from django.contrib.auth.models import Permission, User
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError, transaction
from django.http import HttpRequest, QueryDict
from django.template import Context, Template
from django.test import override_settings
from django.test.client import RequestFactory
from django.urls import reverse
from django.utils import timezone

from . import config
from . import utils
from .data import (
    delete_expired_login_attempts,
    last_login_attempt,
    remove_login_attempt,
)
from .models import LoginAttempt
from .query import (
    Contains,
    Equals,
    NoMatch,
    OnOrAfter,
    OnOrBefore,
    Within,
    build_query,
    get_offset,
    parse_filters,
)
from .reports import (
    NO_DATA,
    USER_DELETED,
    USER_EXISTING,
    USER_NONEXISTENT,
    attempt_title,
    build_report_rows,
    can_remove,
    get_filter_choices,
)
from .signals import login_attempt_recorded
from .tasks import cleanup_login_history_task
from .test import LoginHistoryTestCase, LoginHistoryTransactionTestCase
from .useragent import describe_features, parse_user_agent

ADMIN_LOGIN_URL = reverse("admin:login")

VALID_USERNAME = VALID_PASSWORD = "valid"

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 14_6 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.1.1 "
    "Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 13_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/13.0.3 Mobile/15E148 Safari/604.1"
)
ANDROID_BROWSER = (
    "Mozilla/5.0 (Linux; U; Android 4.0.3; ko-kr; LG-L160L Build/IML74K) "
    "AppleWebkit/534.30 (KHTML, like Gecko) Version/4.0 Mobile Safari/534.30"
)
CHROME_ANDROID_PHONE = (
    "Mozilla/5.0 (Linux; Android 10; SM-G973F) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.120 Mobile Safari/537.36"
)
CHROME_ANDROID_TABLET = (
    "Mozilla/5.0 (Linux; Android 9; SM-T820) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.120 Safari/537.36"
)
EDGE_LEGACY = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/70.0.3538.102 Safari/537.36 Edge/18.19582"
)
EDGE_CHROMIUM = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36 Edg/91.0.864.59"
)
FIREFOX_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:89.0) "
    "Gecko/20100101 Firefox/89.0"
)
IE11 = "Mozilla/5.0 (Windows NT 10.0; WOW64; Trident/7.0; rv:11.0) like Gecko"


def aware(*args):
    return timezone.make_aware(datetime(*args))


class RecorderTest(LoginHistoryTestCase):
    """ Login attempts end up in the table the way they should """

    def _login(
        self,
        username=VALID_USERNAME,
        password="wrong",
        user_agent="test-browser",
        remote_addr="127.0.0.1",
        **extra_post
    ):
        data = {"username": username, "password": password}
        data.update(extra_post)
        return self.client.post(
            ADMIN_LOGIN_URL,
            data,
            HTTP_USER_AGENT=user_agent,
            REMOTE_ADDR=remote_addr,
        )

    def setUp(self):
        """ Create a valid user for login
        """
        self.user = User.objects.create_superuser(
            username=VALID_USERNAME, email="test@example.com", password=VALID_PASSWORD,
        )

    def test_successful_login(self):
        """ a valid login stores a successful attempt for the account """
        response = self._login(password=VALID_PASSWORD, user_agent=CHROME_WINDOWS)
        self.assertEqual(response.status_code, 302)

        attempt = LoginAttempt.objects.get()
        self.assertEqual(attempt.user_id, self.user.pk)
        self.assertEqual(attempt.username, VALID_USERNAME)
        self.assertTrue(attempt.login_was_successful)
        self.assertEqual(attempt.user_agent, CHROME_WINDOWS)

    def test_failed_login_existing_user(self):
        """ a wrong password for an existing account is a failed attempt
        for that account """
        response = self._login()
        self.assertEqual(response.status_code, 200)

        attempt = LoginAttempt.objects.get()
        self.assertEqual(attempt.user_id, self.user.pk)
        self.assertFalse(attempt.login_was_successful)

    def test_username_resolved_case_insensitively(self):
        self._login(username="VALID")
        attempt = LoginAttempt.objects.get()
        self.assertEqual(attempt.user_id, self.user.pk)
        self.assertEqual(attempt.username, "VALID")

    def test_lower_username(self):
        self.assertEqual(utils.lower_username("  Valid "), "valid")
        self.assertIsNone(utils.lower_username(""))

    def test_nonexistent_user_not_logged_by_default(self):
        """ nothing is stored for unknown usernames unless asked to """
        self._login(username="ghost")
        self.assertEqual(LoginAttempt.objects.count(), 0)

    @override_settings(LOGIN_HISTORY_LOG_NONEXISTENT_USERS=True)
    def test_nonexistent_user_logged_when_enabled(self):
        self._login(username="ghost")
        attempt = LoginAttempt.objects.get()
        self.assertEqual(attempt.user_id, 0)
        self.assertEqual(attempt.username, "ghost")
        self.assertFalse(attempt.login_was_successful)

    @override_settings(LOGIN_HISTORY_LOG_NONEXISTENT_USERS=True)
    def test_invalid_account_name_never_resolves(self):
        """ names an account can't have don't match one, even if they
        differ only by invalid characters """
        self.assertEqual(utils.resolve_user_id("val id"), 0)
        self.assertEqual(utils.resolve_user_id(""), 0)
        self.assertEqual(utils.resolve_user_id(None), 0)

        attempt = utils.record_login_attempt(None, "<b>valid</b>", False)
        self.assertEqual(attempt.user_id, 0)
        self.assertEqual(attempt.username, "&lt;b&gt;valid&lt;/b&gt;")

    def test_user_id_zero_iff_no_account(self):
        """ rows point at the account when there is one and at 0 otherwise """
        with override_settings(LOGIN_HISTORY_LOG_NONEXISTENT_USERS=True):
            self._login(username=VALID_USERNAME)
            self._login(username="nobody")
        ids = dict(LoginAttempt.objects.values_list("username", "user_id"))
        self.assertEqual(ids, {VALID_USERNAME: self.user.pk, "nobody": 0})

    def test_ip_address_not_logged_by_default(self):
        self._login(remote_addr="10.1.2.3")
        self.assertIsNone(LoginAttempt.objects.get().ip_address)

    @override_settings(LOGIN_HISTORY_LOG_IP_ADDRESSES=True)
    def test_ip_address_logged_when_enabled(self):
        self._login(remote_addr="10.1.2.3")
        self.assertEqual(LoginAttempt.objects.get().ip_address, "10.1.2.3")

    @override_settings(
        LOGIN_HISTORY_LOG_IP_ADDRESSES=True, LOGIN_HISTORY_BEHIND_REVERSE_PROXY=True
    )
    def test_invalid_forwarded_ip_not_stored(self):
        """ a forwarded header that isn't an address keeps the row but not
        the value """
        self.client.post(
            ADMIN_LOGIN_URL,
            {"username": VALID_USERNAME, "password": "wrong"},
            HTTP_X_FORWARDED_FOR="unknown",
        )
        attempt = LoginAttempt.objects.get()
        self.assertIsNone(attempt.ip_address)
        attempt.full_clean()

    @override_settings(
        LOGIN_HISTORY_LOG_IP_ADDRESSES=True, LOGIN_HISTORY_BEHIND_REVERSE_PROXY=True
    )
    def test_forwarded_ip_stored(self):
        self.client.post(
            ADMIN_LOGIN_URL,
            {"username": VALID_USERNAME, "password": "wrong"},
            HTTP_X_FORWARDED_FOR="1.2.3.4:5555, 10.0.0.1",
        )
        self.assertEqual(LoginAttempt.objects.get().ip_address, "1.2.3.4")

    def test_features_without_javascript(self):
        """ the probe's fallback value is stored as is """
        self._login(user_agent_features='{"javascript": false}')
        self.assertEqual(LoginAttempt.objects.get().features, {"javascript": False})

    def test_user_agent_features_stored(self):
        """ only the known feature keys are kept """
        features = {
            "javascript": True,
            "flash": False,
            "screen": "1920x1080",
            "window": "1200x800",
            "evil": "x" * 100,
        }
        self._login(user_agent_features=json.dumps(features))
        stored = LoginAttempt.objects.get().features
        del features["evil"]
        self.assertEqual(stored, features)

    def test_user_agent_features_missing_is_null(self):
        self._login()
        self.assertIsNone(LoginAttempt.objects.get().user_agent_features)

    def test_user_agent_features_unusable_is_null(self):
        """ unreadable, non-object and empty payloads are stored as null """
        for payload in ("not json", "[1, 2]", "{}", '{"evil": 1}'):
            self._login(user_agent_features=payload)
        self.assertEqual(LoginAttempt.objects.count(), 4)
        self.assertFalse(
            LoginAttempt.objects.filter(user_agent_features__isnull=False).exists()
        )

    def test_long_user_agent_truncated(self):
        self._login(user_agent="x" * 300)
        self.assertEqual(len(LoginAttempt.objects.get().user_agent), 256)

    def test_missing_user_agent_is_null(self):
        self.client.post(
            ADMIN_LOGIN_URL, {"username": VALID_USERNAME, "password": "wrong"}
        )
        self.assertIsNone(LoginAttempt.objects.get().user_agent)

    @override_settings(LOGIN_HISTORY_LOG_NONEXISTENT_USERS=True)
    def test_authenticate_without_request(self):
        """ authenticate() called outside a request is still recorded """
        self.assertIsNone(authenticate(username="nobody", password="wrong"))
        attempt = LoginAttempt.objects.get()
        self.assertEqual(attempt.username, "nobody")
        self.assertIsNone(attempt.user_agent)
        self.assertIsNone(attempt.ip_address)

    def test_database_error_does_not_block_login(self):
        """ a failing insert is logged and the user still gets in """
        with patch(
            "login_history.utils.store_login_attempt",
            side_effect=DatabaseError("boom"),
        ):
            with self.assertLogs("login_history.utils", level="WARNING"):
                response = self._login(password=VALID_PASSWORD)

        self.assertEqual(response.status_code, 302)
        self.assertEqual(
            self.client.session["_auth_user_id"], str(self.user.pk)
        )
        self.assertEqual(LoginAttempt.objects.count(), 0)

    def test_record_login_attempt_returns_none_on_database_error(self):
        with patch(
            "login_history.utils.store_login_attempt",
            side_effect=DatabaseError("boom"),
        ):
            with self.assertLogs("login_history.utils", level="WARNING"):
                self.assertIsNone(
                    utils.record_login_attempt(None, VALID_USERNAME, False)
                )

    def test_recorded_signal_sent(self):
        received = []

        def handler(sender, attempt, **kwargs):
            received.append(attempt)

        login_attempt_recorded.connect(handler)
        self.addCleanup(login_attempt_recorded.disconnect, handler)

        attempt = utils.record_login_attempt(None, VALID_USERNAME, True)
        self.assertEqual(received, [attempt])

    def test_signal_not_sent_when_skipped(self):
        received = []

        def handler(sender, attempt, **kwargs):
            received.append(attempt)

        login_attempt_recorded.connect(handler)
        self.addCleanup(login_attempt_recorded.disconnect, handler)

        self.assertIsNone(utils.record_login_attempt(None, "ghost", False))
        self.assertEqual(received, [])

    def test_explicit_user_wins(self):
        """ the account passed in is used even if the name doesn't match """
        attempt = utils.record_login_attempt(
            None, "someone-else", True, user=self.user
        )
        self.assertEqual(attempt.user_id, self.user.pk)


class RecorderTransactionTest(LoginHistoryTransactionTestCase):
    """ Storage failures inside a surrounding transaction """

    def test_rejected_row_keeps_transaction_usable(self):
        """ a row the database refuses is rolled back on its own and the
        surrounding transaction carries on """
        broken = User(pk=-1, username="broken")
        with transaction.atomic():
            with self.assertLogs("login_history.utils", level="WARNING"):
                self.assertIsNone(
                    utils.record_login_attempt(None, "broken", False, user=broken)
                )
            attempt = self.create_attempt("after")
        self.assertEqual(list(LoginAttempt.objects.all()), [attempt])


class FeaturesProbeTest(LoginHistoryTestCase):
    """ The client side probe filling in the user agent features """

    def render(self):
        return Template(
            "{% load login_history %}{% login_history_features_probe %}"
        ).render(Context())

    def test_tag(self):
        html = self.render()
        self.assertIn('name="user_agent_features"', html)
        self.assertIn("""value='{"javascript": false}'""", html)
        self.assertIn("/static/login_history/js/features_probe.js", html)

    @override_settings(LOGIN_HISTORY_FEATURES_FORM_FIELD="client_features")
    def test_tag_field_name(self):
        self.assertIn('name="client_features"', self.render())

    def test_admin_login_page(self):
        response = self.client.get(ADMIN_LOGIN_URL)
        self.assertContains(response, "data-login-history-features")
        self.assertContains(response, "login_history/js/features_probe.js")


class IPAddressTest(LoginHistoryTestCase):
    """ IP address helpers """

    def test_is_valid_ip(self):
        self.assertTrue(utils.is_valid_ip("192.168.0.1"))
        self.assertTrue(utils.is_valid_ip(" 2001:db8::1 "))
        self.assertFalse(utils.is_valid_ip("192.168.0"))
        self.assertFalse(utils.is_valid_ip(""))
        self.assertFalse(utils.is_valid_ip(None))

    def test_get_ip(self):
        request = RequestFactory().get("/", REMOTE_ADDR="10.0.0.5")
        self.assertEqual(utils.get_ip(request), "10.0.0.5")

        request = RequestFactory().get("/", REMOTE_ADDR="nonsense")
        self.assertEqual(utils.get_ip(request), "127.0.0.1")

    def test_ip_address_strip_port_number(self):
        """ Test the strip_port_number() method """
        self.assertEqual(utils.strip_port_number("192.168.1.1"), "192.168.1.1")
        self.assertEqual(utils.strip_port_number("192.168.1.1:8000"), "192.168.1.1")
        self.assertEqual(
            utils.strip_port_number("2001:db8:85a3:0:0:8a2e:370:7334"),
            "2001:db8:85a3:0:0:8a2e:370:7334",
        )
        self.assertEqual(
            utils.strip_port_number("[2001:db8:85a3:0:0:8a2e:370:7334]:123456"),
            "2001:db8:85a3:0:0:8a2e:370:7334",
        )

    @override_settings(LOGIN_HISTORY_BEHIND_REVERSE_PROXY=True)
    def test_get_ip_reverse_proxy(self):
        req = HttpRequest()
        req.META["HTTP_X_FORWARDED_FOR"] = "1.2.3.4:123456, 10.0.0.1"
        self.assertEqual(utils.get_ip(req), "1.2.3.4")

        req = HttpRequest()
        req.META["HTTP_X_FORWARDED_FOR"] = "[2001:db8::1]:123456"
        self.assertEqual(utils.get_ip(req), "2001:db8::1")

        req = HttpRequest()
        req.META["REMOTE_ADDR"] = "10.0.0.9"
        self.assertEqual(utils.get_ip(req), "10.0.0.9")

    @override_settings(
        LOGIN_HISTORY_BEHIND_REVERSE_PROXY=True,
        LOGIN_HISTORY_REVERSE_PROXY_HEADER="HTTP_X_REAL_IP",
    )
    def test_get_ip_reverse_proxy_custom_header(self):
        req = HttpRequest()
        req.META["HTTP_X_REAL_IP"] = "8.8.8.8"
        req.META["HTTP_X_FORWARDED_FOR"] = "1.2.3.4"
        self.assertEqual(utils.get_ip(req), "8.8.8.8")


class ConfigTest(LoginHistoryTestCase):
    """ Settings are read into an immutable config """

    def test_defaults(self):
        cfg = config.get_config()
        self.assertFalse(cfg.log_nonexistent_users)
        self.assertFalse(cfg.log_ip_addresses)
        self.assertIsNone(cfg.history_max_age)
        self.assertEqual(cfg.row_limit, 25)
        self.assertEqual(cfg.date_format, "Y-m-d H:i:s")
        self.assertIsNone(cfg.remove_permission)

    def test_frozen(self):
        cfg = config.get_config()
        with self.assertRaises(FrozenInstanceError):
            cfg.row_limit = 10

    @override_settings(LOGIN_HISTORY_ROW_LIMIT="a")
    def test_bad_row_limit(self):
        with self.assertRaises(ImproperlyConfigured):
            config.get_config()

    @override_settings(LOGIN_HISTORY_ROW_LIMIT=-1)
    def test_negative_row_limit(self):
        with self.assertRaises(ImproperlyConfigured):
            config.get_config()

    @override_settings(LOGIN_HISTORY_MAX_AGE="forever")
    def test_bad_max_age(self):
        with self.assertRaises(ImproperlyConfigured):
            config.get_config()

    @override_settings(LOGIN_HISTORY_MAX_AGE="3 months", LOGIN_HISTORY_ROW_LIMIT="50")
    def test_overrides(self):
        cfg = config.get_config()
        self.assertEqual(cfg.max_age_interval, (3, "MONTH"))
        self.assertEqual(cfg.row_limit, 50)

    def test_parse_interval(self):
        self.assertEqual(config.parse_interval("1 DAY"), (1, "DAY"))
        self.assertEqual(config.parse_interval(" 2 weeks "), (2, "WEEK"))
        self.assertIsNone(config.parse_interval("1 fortnight"))
        self.assertIsNone(config.parse_interval("DAY"))
        self.assertIsNone(config.parse_interval(None))

    def test_subtract_interval(self):
        self.assertEqual(
            config.subtract_interval(datetime(2021, 3, 10), 1, "DAY"),
            datetime(2021, 3, 9),
        )
        self.assertEqual(
            config.subtract_interval(datetime(2021, 3, 10), 1, "WEEK"),
            datetime(2021, 3, 3),
        )
        self.assertEqual(
            config.subtract_interval(datetime(2021, 3, 31), 1, "MONTH"),
            datetime(2021, 2, 28),
        )
        self.assertEqual(
            config.subtract_interval(datetime(2021, 1, 15), 1, "MONTH"),
            datetime(2020, 12, 15),
        )
        self.assertEqual(
            config.subtract_interval(datetime(2020, 2, 29), 1, "YEAR"),
            datetime(2019, 2, 28),
        )


class FilterParsingTest(LoginHistoryTestCase):
    """ Query string parameters to filter clauses """

    def test_unknown_keys_ignored(self):
        self.assertEqual(parse_filters({"DROP": "TABLE users"}), [])
        self.assertEqual(
            parse_filters({"DROP": "1", "username": "alice"}),
            [Equals("username", "alice")],
        )

    def test_empty_values_ignored(self):
        self.assertEqual(parse_filters({"username": "", "login_was_successful": ""}), [])

    def test_negation(self):
        self.assertEqual(parse_filters({"user_id": "!0"}), [Equals("user_id", 0, True)])
        self.assertEqual(
            parse_filters({"username": "!bob"}), [Equals("username", "bob", True)]
        )

    def test_user_agent_is_substring(self):
        self.assertEqual(
            parse_filters({"user_agent": "Firefox"}), [Contains("user_agent", "Firefox")]
        )
        self.assertEqual(
            parse_filters({"user_agent": "!Firefox"}),
            [Contains("user_agent", "Firefox", True)],
        )

    def test_boolean_values(self):
        self.assertEqual(
            parse_filters({"login_was_successful": "1"}),
            [Equals("login_was_successful", True)],
        )
        self.assertEqual(
            parse_filters({"login_was_successful": "false"}),
            [Equals("login_was_successful", False)],
        )
        self.assertEqual(
            parse_filters({"login_was_successful": "maybe"}),
            [NoMatch("login_was_successful")],
        )

    def test_uncoercible_values_match_nothing(self):
        self.assertEqual(parse_filters({"id": "abc"}), [NoMatch("id")])
        self.assertEqual(parse_filters({"id": "!abc"}), [NoMatch("id", True)])
        self.assertEqual(
            parse_filters({"ip_address": "not-an-ip"}), [NoMatch("ip_address")]
        )

    def test_out_of_range_integers_match_nothing(self):
        """ ids no integer column can hold never reach the database """
        self.assertEqual(
            parse_filters({"id": "99999999999999999999999"}), [NoMatch("id")]
        )
        self.assertEqual(parse_filters({"user_id": "-1"}), [NoMatch("user_id")])
        self.assertEqual(
            parse_filters({"user_id": str(2 ** 63 - 1)}),
            [Equals("user_id", 2 ** 63 - 1)],
        )

    def test_when_overrides_date_range(self):
        self.assertEqual(
            parse_filters(
                {"when": "1 WEEK", "date_from": "2021-03-01", "date_until": "2021-03-31"}
            ),
            [Within("1 WEEK")],
        )

    def test_when_from_query_string(self):
        self.assertEqual(
            parse_filters(QueryDict("when=1+week&DROP=1")), [Within("1 WEEK")]
        )

    def test_unknown_when_ignored(self):
        self.assertEqual(
            parse_filters({"when": "2 WEEK", "date_from": "2021-03-01"}),
            [OnOrAfter(aware(2021, 3, 1))],
        )

    def test_date_range_bounds(self):
        self.assertEqual(
            parse_filters({"date_from": "2021-03-01", "date_until": "2021-03-02"}),
            [
                OnOrAfter(aware(2021, 3, 1)),
                OnOrBefore(aware(2021, 3, 2, 23, 59, 59, 999999)),
            ],
        )

    def test_bad_dates_ignored(self):
        self.assertEqual(parse_filters({"date_from": "yesterday"}), [])
        self.assertEqual(parse_filters({"date_until": "2021-02-30"}), [])


class QueryBuilderTest(LoginHistoryTestCase):
    """ Filtering, sorting and paging login attempts """

    def test_end_to_end(self):
        """ alice succeeded, bob failed, ghost doesn't exist """
        User.objects.create_user("alice", password="pw")
        User.objects.create_user("bob", password="pw")

        with override_settings(LOGIN_HISTORY_LOG_NONEXISTENT_USERS=True):
            utils.record_login_attempt(None, "alice", True)
            utils.record_login_attempt(None, "bob", False)
            utils.record_login_attempt(None, "ghost", False)

        def usernames(params):
            return sorted(row.username for row in build_query(params).rows)

        self.assertEqual(usernames({"login_was_successful": "1"}), ["alice"])
        self.assertEqual(usernames({"user_id": "!0"}), ["alice", "bob"])
        self.assertEqual(usernames({"user_id": "0"}), ["ghost"])

    def test_unknown_key_does_not_change_query(self):
        self.create_attempt("alice")
        self.create_attempt("bob")
        self.assertEqual(build_query({"DROP": "TABLE"}).total, 2)

    def test_when(self):
        now = timezone.now()
        recent = self.create_attempt("recent", login_timestamp=now - timedelta(days=1))
        week = self.create_attempt("week", login_timestamp=now - timedelta(days=6))
        self.create_attempt("old", login_timestamp=now - timedelta(days=8))

        query = build_query({"when": "1 WEEK"})
        self.assertEqual([row.pk for row in query.rows], [recent.pk, week.pk])

        query = build_query(
            {"when": "1 WEEK", "date_from": "2000-01-01", "date_until": "2000-01-02"}
        )
        self.assertEqual([row.pk for row in query.rows], [recent.pk, week.pk])

    def test_date_range(self):
        self.create_attempt("before", login_timestamp=aware(2021, 2, 28, 23, 59, 59))
        first = self.create_attempt("first", login_timestamp=aware(2021, 3, 1))
        last = self.create_attempt("last", login_timestamp=aware(2021, 3, 1, 23, 59, 30))
        self.create_attempt("after", login_timestamp=aware(2021, 3, 2))

        query = build_query({"date_from": "2021-03-01", "date_until": "2021-03-01"})
        self.assertEqual([row.pk for row in query.rows], [last.pk, first.pk])

    def test_user_agent_substring(self):
        firefox = self.create_attempt("a", user_agent=FIREFOX_MAC)
        chrome = self.create_attempt("b", user_agent=CHROME_WINDOWS)

        self.assertEqual(build_query({"user_agent": "Firefox"}).rows, [firefox])
        self.assertEqual(build_query({"user_agent": "!Firefox"}).rows, [chrome])

    def test_uncoercible_value(self):
        self.create_attempt("alice")
        self.assertEqual(build_query({"id": "abc"}).total, 0)
        self.assertEqual(build_query({"id": "!abc"}).total, 1)

    def test_out_of_range_integer(self):
        self.create_attempt("alice")
        self.assertEqual(build_query({"id": "99999999999999999999999"}).total, 0)
        self.assertEqual(
            build_query({"user_id": "!99999999999999999999999"}).total, 1
        )

    def test_negation_skips_null(self):
        """ negated filters leave out rows where the column is empty """
        other = self.create_attempt("a", ip_address="10.0.0.2", user_agent=CHROME_WINDOWS)
        self.create_attempt("b", ip_address="10.0.0.1", user_agent=FIREFOX_MAC)
        self.create_attempt("c", ip_address=None, user_agent=None)

        self.assertEqual(build_query({"ip_address": "!10.0.0.1"}).rows, [other])
        self.assertEqual(build_query({"user_agent": "!Firefox"}).rows, [other])
        self.assertEqual(build_query({"ip_address": "!nonsense"}).total, 2)
        self.assertEqual(build_query({"username": "!b"}).total, 2)

    def test_ip_address(self):
        match = self.create_attempt("a", ip_address="10.0.0.1")
        self.create_attempt("b", ip_address="10.0.0.2")
        self.assertEqual(build_query({"ip_address": "10.0.0.1"}).rows, [match])
        self.assertEqual(build_query({"ip_address": "nonsense"}).total, 0)

    def test_default_order(self):
        """ newest first, the highest id wins a tie """
        base = timezone.now()
        older = self.create_attempt("older", login_timestamp=base - timedelta(hours=1))
        tied = [self.create_attempt("tied", login_timestamp=base) for _ in range(3)]

        query = build_query({})
        self.assertEqual(query.sort, "-login_timestamp")
        self.assertEqual(
            [row.pk for row in query.rows],
            sorted((a.pk for a in tied), reverse=True) + [older.pk],
        )

    def test_sort(self):
        for name in ("carol", "alice", "bob"):
            self.create_attempt(name)

        query = build_query({"sort": "username"})
        self.assertEqual([row.username for row in query.rows], ["alice", "bob", "carol"])

        query = build_query({"sort": "-username"})
        self.assertEqual([row.username for row in query.rows], ["carol", "bob", "alice"])

    def test_unknown_sort_falls_back(self):
        self.create_attempt("alice")
        query = build_query({"sort": "password; DROP TABLE"})
        self.assertEqual(query.sort, "-login_timestamp")
        self.assertEqual(query.total, 1)

    def test_get_offset(self):
        self.assertEqual(get_offset(1, 2, 5), 0)
        self.assertEqual(get_offset(2, 2, 5), 2)
        self.assertEqual(get_offset(3, 2, 5), 3)
        self.assertEqual(get_offset(10, 2, 5), 3)
        self.assertEqual(get_offset(2, 25, 3), 0)
        self.assertEqual(get_offset(4, 0, 5), 0)

    def test_pagination_clamps_last_page(self):
        base = timezone.now()
        for minutes in range(5):
            self.create_attempt(login_timestamp=base - timedelta(minutes=minutes))
        ordered = list(LoginAttempt.objects.order_by("-login_timestamp", "-id"))

        query = build_query({"limit": "2", "page": "3"})
        self.assertEqual(query.total, 5)
        self.assertEqual(query.offset, 3)
        self.assertEqual(query.num_pages, 3)
        self.assertEqual(query.rows, ordered[3:5])

    def test_zero_limit_returns_everything(self):
        for _ in range(4):
            self.create_attempt()
        query = build_query({"limit": "0", "page": "3"})
        self.assertEqual(len(query.rows), 4)
        self.assertEqual(query.offset, 0)
        self.assertEqual(query.num_pages, 1)

    @override_settings(LOGIN_HISTORY_ROW_LIMIT=2)
    def test_configured_limit(self):
        for _ in range(3):
            self.create_attempt()
        query = build_query({"limit": "nonsense", "page": "nonsense"})
        self.assertEqual(query.limit, 2)
        self.assertEqual(query.page, 1)
        self.assertEqual(len(query.rows), 2)

        self.assertEqual(build_query({"limit": "-5"}).limit, 2)

    def test_filters_recorded(self):
        query = build_query(QueryDict("username=alice&DROP=1&when="))
        self.assertEqual(query.filters, {"username": "alice"})


class UserAgentTest(LoginHistoryTestCase):
    """ User agent summaries """

    def test_chrome_windows(self):
        summary = parse_user_agent(CHROME_WINDOWS)
        self.assertEqual(summary.device, "desktop")
        self.assertEqual(summary.platform, "Windows")
        self.assertEqual(summary.browser, "Chrome")
        self.assertEqual(summary.version, "91.0.4472.124")
        self.assertEqual(str(summary), "desktop, Windows, Chrome 91.0.4472.124")

    def test_safari_iphone(self):
        summary = parse_user_agent(SAFARI_IPHONE)
        self.assertEqual(summary.device, "mobile")
        self.assertEqual(summary.platform, "iPhone")
        self.assertEqual(summary.browser_label, "Safari 14.1.1")

    def test_safari_ipad(self):
        summary = parse_user_agent(SAFARI_IPAD)
        self.assertEqual(summary.device, "tablet")
        self.assertEqual(summary.platform, "iPad")
        self.assertEqual(summary.browser, "Safari")

    def test_android_browser(self):
        summary = parse_user_agent(ANDROID_BROWSER)
        self.assertEqual(summary.device, "mobile")
        self.assertEqual(summary.platform, "Android")
        self.assertEqual(summary.browser, "Android Browser")
        self.assertEqual(summary.version, "4.0")

    def test_chrome_android(self):
        phone = parse_user_agent(CHROME_ANDROID_PHONE)
        self.assertEqual(phone.device, "mobile")
        self.assertEqual(phone.browser, "Chrome")

        tablet = parse_user_agent(CHROME_ANDROID_TABLET)
        self.assertEqual(tablet.device, "tablet")
        self.assertEqual(tablet.platform, "Android")

    def test_edge(self):
        self.assertEqual(parse_user_agent(EDGE_LEGACY).browser_label, "Edge 18.19582")
        self.assertEqual(
            parse_user_agent(EDGE_CHROMIUM).browser_label, "Edge 91.0.864.59"
        )

    def test_firefox_mac(self):
        summary = parse_user_agent(FIREFOX_MAC)
        self.assertEqual(summary.platform, "Mac OS X")
        self.assertEqual(summary.browser_label, "Firefox 89.0")

    def test_internet_explorer(self):
        self.assertEqual(
            parse_user_agent(IE11).browser_label, "Internet Explorer 11.0"
        )

    def test_unknown(self):
        summary = parse_user_agent("curl/7.68.0")
        self.assertEqual(summary.device, "desktop")
        self.assertIsNone(summary.platform)
        self.assertIsNone(summary.browser)
        self.assertEqual(str(summary), "desktop")

    def test_missing(self):
        self.assertIsNone(parse_user_agent(None))
        self.assertIsNone(parse_user_agent("   "))

    def test_describe_features(self):
        self.assertEqual(
            describe_features(
                {"javascript": True, "flash": False, "screen": "1920x1080"}
            ),
            ["JavaScript enabled", "Flash disabled", "Screen: 1920x1080"],
        )
        self.assertEqual(describe_features(None), [])


class ReportTest(LoginHistoryTestCase):
    """ Rows prepared for display """

    def setUp(self):
        self.user = User.objects.create_user("alice", password="pw")

    def test_user_states(self):
        existing = self.create_attempt(
            "alice", user_id=self.user.pk, login_was_successful=True, ip_address="10.0.0.1"
        )
        deleted = self.create_attempt("gone", user_id=self.user.pk + 100)
        nonexistent = self.create_attempt("ghost", user_id=0)

        rows = {
            row.attempt.pk: row
            for row in build_report_rows([existing, deleted, nonexistent])
        }
        self.assertEqual(rows[existing.pk].user_state, USER_EXISTING)
        self.assertEqual(
            rows[existing.pk].user_url,
            reverse("admin:auth_user_change", args=(self.user.pk,)),
        )
        self.assertEqual(rows[deleted.pk].user_state, USER_DELETED)
        self.assertIsNone(rows[deleted.pk].user_url)
        self.assertEqual(rows[nonexistent.pk].user_state, USER_NONEXISTENT)

        self.assertEqual(
            attempt_title(rows[existing.pk]),
            "Successful login attempt for alice from 10.0.0.1",
        )
        self.assertEqual(
            attempt_title(rows[deleted.pk]), "Failed login attempt for gone (deleted)"
        )
        self.assertEqual(
            attempt_title(rows[nonexistent.pk]),
            "Failed login attempt for ghost (nonexistent)",
        )

    @override_settings(LOGIN_HISTORY_DATE_FORMAT="d.m.Y H:i")
    def test_date_format(self):
        attempt = self.create_attempt(login_timestamp=aware(2021, 3, 1, 14, 5, 9))
        row = build_report_rows([attempt])[0]
        self.assertEqual(row.timestamp, "01.03.2021 14:05")
        self.assertEqual(row.timestamp_iso, "2021-03-01T14:05:09+00:00")

    def test_escaped_username_displayed_once(self):
        attempt = self.create_attempt("&lt;b&gt;")
        self.assertEqual(build_report_rows([attempt])[0].username, "<b>")

    def test_missing_user_agent(self):
        row = build_report_rows([self.create_attempt(user_agent=None)])[0]
        self.assertIsNone(row.user_agent)
        self.assertEqual(row.user_agent_summary, NO_DATA)

    def test_features(self):
        attempt = self.create_attempt(
            user_agent=CHROME_WINDOWS,
            user_agent_features='{"javascript": true, "screen": "1920x1080"}',
        )
        row = build_report_rows([attempt])[0]
        self.assertEqual(row.features, ["JavaScript enabled", "Screen: 1920x1080"])
        self.assertEqual(row.user_agent_summary, "desktop, Windows, Chrome 91.0.4472.124")

    def test_can_remove(self):
        staff = User.objects.create_user("staff", password="pw", is_staff=True)
        admin = User.objects.create_superuser("root", "root@example.com", "pw")
        self.assertTrue(can_remove(staff))

        with override_settings(
            LOGIN_HISTORY_REMOVE_PERMISSION="login_history.delete_loginattempt"
        ):
            self.assertFalse(can_remove(staff))
            self.assertTrue(can_remove(admin))

    def test_filter_choices(self):
        self.create_attempt("alice")
        self.create_attempt("alice")
        self.create_attempt("&lt;b&gt;")
        choices = get_filter_choices()
        self.assertEqual(
            choices["usernames"], [("&lt;b&gt;", "<b>"), ("alice", "alice")]
        )
        self.assertIn("1 WEEK", choices["when"])


class ViewTest(LoginHistoryTestCase):
    """ Report, JSON, RSS and removal endpoints """

    def setUp(self):
        self.admin = User.objects.create_superuser(
            "admin", "admin@example.com", "pw"
        )
        self.client.force_login(self.admin)
        # force_login goes through the login signal as well
        LoginAttempt.objects.all().delete()

        self.alice = self.create_attempt(
            "alice",
            user_id=self.admin.pk,
            login_was_successful=True,
            user_agent=FIREFOX_MAC,
            ip_address="10.0.0.1",
        )
        self.ghost = self.create_attempt("ghost", user_id=0, user_agent=None)

    def test_report(self):
        response = self.client.get(reverse("login_history_report"))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "ghost")
        self.assertContains(response, "(nonexistent)")
        self.assertContains(response, NO_DATA)
        self.assertContains(response, "Firefox 89.0")
        self.assertNotContains(response, "IP address")
        self.assertNotContains(response, "10.0.0.1")

    @override_settings(LOGIN_HISTORY_LOG_IP_ADDRESSES=True)
    def test_report_ip_column(self):
        response = self.client.get(reverse("login_history_report"))
        self.assertContains(response, "IP address")
        self.assertContains(response, "10.0.0.1")

    def test_report_filtered(self):
        response = self.client.get(
            reverse("login_history_report"), {"login_was_successful": "0"}
        )
        self.assertEqual([row.attempt for row in response.context["rows"]], [self.ghost])

    def test_report_pager(self):
        response = self.client.get(reverse("login_history_report"), {"limit": "1"})
        self.assertContains(response, "limit=1&amp;page=2")

    def login_staff(self, *codenames):
        staff = User.objects.create_user("staff", password="pw", is_staff=True)
        for codename in codenames:
            staff.user_permissions.add(
                Permission.objects.get(
                    content_type__app_label="login_history", codename=codename
                )
            )
        self.client.force_login(staff)
        return staff

    def test_staff_without_view_permission(self):
        """ staff members need the view permission for every endpoint """
        self.login_staff()
        for name in ("login_history_report", "login_history_json", "login_history_rss"):
            response = self.client.get(reverse(name))
            self.assertEqual(response.status_code, 403, name)

        response = self.client.post(
            reverse("login_history_remove", args=(self.ghost.pk,))
        )
        self.assertEqual(response.status_code, 403)
        self.assertTrue(LoginAttempt.objects.filter(pk=self.ghost.pk).exists())

    def test_staff_with_view_permission(self):
        self.login_staff("view_loginattempt")
        response = self.client.get(reverse("login_history_report"))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "ghost")

    def test_report_requires_staff(self):
        self.client.logout()
        response = self.client.get(reverse("login_history_report"))
        self.assertEqual(response.status_code, 302)
        self.assertIn(ADMIN_LOGIN_URL, response["Location"])

    def test_json(self):
        response = self.client.get(
            reverse("login_history_json"), {"login_was_successful": "1"}
        )
        self.assertEqual(response.status_code, 200)
        rows = response.json()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["id"], self.alice.pk)
        self.assertEqual(
            set(rows[0]),
            {
                "id",
                "user_id",
                "username",
                "user_agent",
                "user_agent_features",
                "ip_address",
                "login_was_successful",
                "login_timestamp",
            },
        )

    def test_rss(self):
        response = self.client.get(reverse("login_history_rss"))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response["Content-Type"].startswith("application/rss+xml"))
        self.assertContains(response, "Failed login attempt for ghost (nonexistent)")
        self.assertContains(response, "Successful login attempt for alice from 10.0.0.1")
        self.assertContains(response, "?id=%d" % self.ghost.pk)

    def test_remove_twice(self):
        url = reverse("login_history_remove", args=(self.ghost.pk,))
        response = self.client.post(url)
        self.assertRedirects(
            response, reverse("login_history_report"), fetch_redirect_response=False
        )
        self.assertFalse(LoginAttempt.objects.filter(pk=self.ghost.pk).exists())

        response = self.client.post(url)
        self.assertEqual(response.status_code, 302)
        self.assertEqual(remove_login_attempt(self.ghost.pk), 0)
        self.assertEqual(LoginAttempt.objects.count(), 1)

    def test_remove_get_does_nothing(self):
        self.client.get(reverse("login_history_remove", args=(self.ghost.pk,)))
        self.assertTrue(LoginAttempt.objects.filter(pk=self.ghost.pk).exists())

    def test_remove_redirects_to_next(self):
        next_url = reverse("login_history_report") + "?username=ghost"
        response = self.client.post(
            reverse("login_history_remove", args=(self.ghost.pk,)), {"next": next_url}
        )
        self.assertRedirects(response, next_url, fetch_redirect_response=False)

        response = self.client.post(
            reverse("login_history_remove", args=(self.alice.pk,)),
            {"next": "https://evil.example.com/"},
        )
        self.assertRedirects(
            response, reverse("login_history_report"), fetch_redirect_response=False
        )

    @override_settings(
        LOGIN_HISTORY_REMOVE_PERMISSION="login_history.delete_loginattempt"
    )
    def test_remove_permission_denied(self):
        self.login_staff("view_loginattempt")

        response = self.client.post(
            reverse("login_history_remove", args=(self.ghost.pk,))
        )
        self.assertEqual(response.status_code, 403)
        self.assertTrue(LoginAttempt.objects.filter(pk=self.ghost.pk).exists())

        response = self.client.get(reverse("login_history_report"))
        self.assertNotContains(response, 'value="Remove"')

    def test_remove_without_configured_permission(self):
        self.login_staff("view_loginattempt")

        self.client.post(reverse("login_history_remove", args=(self.ghost.pk,)))
        self.assertFalse(LoginAttempt.objects.filter(pk=self.ghost.pk).exists())

    def test_admin(self):
        """ test the admin pages for this app """
        url = reverse("admin:login_history_loginattempt_changelist")
        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "ghost")


class CleanupTest(LoginHistoryTestCase):
    """ Retention of login attempts """

    def setUp(self):
        now = timezone.now()
        self.old = self.create_attempt("old", login_timestamp=now - timedelta(days=40))
        self.new = self.create_attempt("new", login_timestamp=now - timedelta(days=2))

    def test_delete_expired(self):
        self.assertEqual(delete_expired_login_attempts("1 MONTH"), 1)
        self.assertEqual(list(LoginAttempt.objects.all()), [self.new])

    def test_disabled(self):
        self.assertEqual(delete_expired_login_attempts(), 0)
        self.assertEqual(LoginAttempt.objects.count(), 2)

    @override_settings(LOGIN_HISTORY_MAX_AGE="1 DAY")
    def test_configured_max_age(self):
        self.assertEqual(delete_expired_login_attempts(), 2)

    def test_database_error(self):
        with patch.object(
            LoginAttempt.objects, "older_than", side_effect=DatabaseError("boom")
        ):
            with self.assertLogs("login_history.data", level="WARNING"):
                self.assertEqual(delete_expired_login_attempts("1 DAY"), 0)
        self.assertEqual(LoginAttempt.objects.count(), 2)

    def test_command(self):
        out = StringIO()
        call_command("cleanup_login_history", "--max-age", "1 MONTH", stdout=out)
        self.assertIn("Removed 1 login attempts", out.getvalue())
        self.assertEqual(LoginAttempt.objects.count(), 1)

    def test_command_without_max_age(self):
        out = StringIO()
        call_command("cleanup_login_history", stdout=out)
        self.assertIn("nothing to clean up", out.getvalue())
        self.assertEqual(LoginAttempt.objects.count(), 2)

    def test_command_bad_max_age(self):
        with self.assertRaises(CommandError):
            call_command("cleanup_login_history", "--max-age", "soon", stdout=StringIO())

    @override_settings(LOGIN_HISTORY_MAX_AGE="1 WEEK")
    def test_task(self):
        self.assertEqual(cleanup_login_history_task(), 1)
        self.assertEqual(list(LoginAttempt.objects.all()), [self.new])


class ModelTest(LoginHistoryTestCase):
    """ LoginAttempt model helpers """

    def test_str(self):
        attempt = self.create_attempt("alice", login_timestamp=aware(2021, 3, 1))
        self.assertEqual(str(attempt), "alice @ 2021-03-01 00:00:00+00:00 | False")

    def test_features(self):
        self.assertIsNone(self.create_attempt(user_agent_features=None).features)
        self.assertIsNone(self.create_attempt(user_agent_features="{nope").features)
        self.assertIsNone(self.create_attempt(user_agent_features="[1]").features)
        self.assertEqual(
            self.create_attempt(user_agent_features='{"flash": false}').features,
            {"flash": False},
        )

    def test_queryset_helpers(self):
        user = User.objects.create_user("alice", password="pw")
        ok = self.create_attempt(user_id=user.pk, login_was_successful=True)
        bad = self.create_attempt(user_id=user.pk)
        self.create_attempt(user_id=0)

        self.assertEqual(list(LoginAttempt.objects.successful()), [ok])
        self.assertEqual(LoginAttempt.objects.failed().count(), 2)
        self.assertEqual(LoginAttempt.objects.for_user(user).count(), 2)

        self.assertEqual(last_login_attempt(user), bad)
        self.assertEqual(last_login_attempt(user, successful=True), ok)
