import json
import logging
import re

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.validators import validate_ipv46_address
from django.db import DatabaseError, transaction
from django.utils.html import escape

from .config import get_config
from .data import store_login_attempt
from .signals import send_login_attempt_recorded_signal

LOG = logging.getLogger(__name__)

FEATURE_KEYS = ("javascript", "flash", "screen", "window")

USERNAME_MAX_LENGTH = 128
USER_AGENT_MAX_LENGTH = 256

valid_username = re.compile(r"^[\w.@+-]+\Z")


def is_valid_ip(ip_address):
    """ Check Validity of an IP address """
    if not ip_address:
        return False
    ip_address = ip_address.strip()
    try:
        validate_ipv46_address(ip_address)
        return True
    except ValidationError:
        return False


def get_ip_address_from_request(request):
    """ Makes the best attempt to get the client's real IP or return
        the loopback """
    remote_addr = request.META.get("REMOTE_ADDR", "")
    if remote_addr and is_valid_ip(remote_addr):
        return remote_addr.strip()
    return "127.0.0.1"


ipv4_with_port = re.compile(r"^(\d+\.\d+\.\d+\.\d+):\d+")
ipv6_with_port = re.compile(r"^\[([^\]]+)\]:\d+")


def strip_port_number(ip_address_string):
    """ strips port number from IPv4 or IPv6 address """
    ip_address = None

    match = ipv4_with_port.match(ip_address_string) or ipv6_with_port.match(
        ip_address_string
    )
    if match:
        ip_address = match[1]

    # not a valid address once stripped: keep the string as-is rather
    # than a possibly corrupted one
    if is_valid_ip(ip_address):
        return ip_address

    return ip_address_string


def get_ip(request, config=None):
    """ get the ip address from the request """
    config = config or get_config()
    if config.behind_reverse_proxy:
        ip_address = request.META.get(config.reverse_proxy_header, "")
        ip_address = ip_address.split(",", 1)[0].strip()

        if ip_address == "":
            ip_address = get_ip_address_from_request(request)
        else:
            # proxies may append a port that changes per request
            ip_address = strip_port_number(ip_address)
    else:
        ip_address = get_ip_address_from_request(request)

    return ip_address


def lower_username(username):
    """
    Single entry point to normalize the submitted username before it is
    matched against accounts.
    """
    if username:
        return username.strip().lower()
    return None


def resolve_user_id(username):
    """ Return the id of the account matching username, or 0 when the name
    is not a valid account name or no account has it """
    username = lower_username(username)
    if not username or not valid_username.match(username):
        return 0
    user_model = get_user_model()
    lookup = {"%s__iexact" % user_model.USERNAME_FIELD: username}
    pk = (
        user_model._default_manager.filter(**lookup)
        .values_list("pk", flat=True)
        .first()
    )
    return pk or 0


def get_user_agent_features(request, config=None):
    """ Feature flags posted by the client side probe, None if there
    aren't any usable ones """
    config = config or get_config()
    post = getattr(request, "POST", None)
    if not post:
        return None
    payload = post.get(config.features_form_field)
    if not payload:
        return None
    try:
        features = json.loads(payload)
    except ValueError:
        LOG.debug("Ignoring unreadable user agent features %r", payload)
        return None
    if not isinstance(features, dict):
        return None
    features = {key: features[key] for key in FEATURE_KEYS if key in features}
    if not features:
        return None
    return json.dumps(features)


def record_login_attempt(
    request, username, login_was_successful, user=None, config=None
):
    """
    Store one login attempt and return it.

    Returns None without storing anything when the username matches no
    account and nonexistent users are not logged, or when the insert
    fails. A failed insert is logged and never reaches the login flow.
    """
    config = config or get_config()

    if user is not None:
        user_id = user.pk
    else:
        user_id = resolve_user_id(username)

    if not user_id and not config.log_nonexistent_users:
        LOG.debug("Not logging login attempt for nonexistent user %r", username)
        return None

    user_agent = None
    ip_address = None
    user_agent_features = None
    if request is not None:
        user_agent = request.META.get("HTTP_USER_AGENT") or None
        if user_agent:
            user_agent = user_agent[:USER_AGENT_MAX_LENGTH]
        if config.log_ip_addresses:
            ip_address = get_ip(request, config)
            # forwarded headers are client controlled
            if not is_valid_ip(ip_address):
                LOG.debug("Not storing invalid IP address %r", ip_address)
                ip_address = None
            else:
                ip_address = ip_address.strip()
        user_agent_features = get_user_agent_features(request, config)

    try:
        with transaction.atomic():
            attempt = store_login_attempt(
                user_id=user_id,
                username=str(escape(username or ""))[:USERNAME_MAX_LENGTH],
                user_agent=user_agent,
                user_agent_features=user_agent_features,
                ip_address=ip_address,
                login_was_successful=bool(login_was_successful),
            )
    except DatabaseError:
        LOG.warning(
            "Could not store login attempt for %r", username, exc_info=True
        )
        return None

    send_login_attempt_recorded_signal(attempt)
    return attempt
