"""
Translate report query string parameters into a filtered, sorted and
paginated set of login attempts.

Filters are parsed into clause objects first (Equals, Contains, NoMatch,
Within, OnOrAfter, OnOrBefore); each clause turns itself into a Q object
so every value reaches the database as a query parameter.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from math import ceil
from typing import Any, Dict, List

from django.conf import settings
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_date

from .config import get_config, interval_cutoff
from .models import LoginAttempt
from .utils import is_valid_ip

LOG = logging.getLogger(__name__)

FILTER_FIELDS = (
    "id",
    "user_id",
    "username",
    "user_agent",
    "user_agent_features",
    "login_was_successful",
    "when",
    "date_from",
    "date_until",
    "ip_address",
)

WHEN_CHOICES = ("1 DAY", "1 WEEK", "1 MONTH", "1 YEAR")

DEFAULT_SORT = "-login_timestamp"

INTEGER_FIELDS = ("id", "user_id")

# widest integer column the supported backends store
INTEGER_MAX = 2 ** 63 - 1

BOOLEAN_VALUES = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}


def negated(field, q):
    """ ~q, minus the rows where field is NULL, the way SQL `!=` and
    `NOT LIKE` treat them """
    if LoginAttempt._meta.get_field(field).null:
        return ~q & Q(**{"%s__isnull" % field: False})
    return ~q


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any
    negate: bool = False

    def as_q(self):
        q = Q(**{self.field: self.value})
        return negated(self.field, q) if self.negate else q


@dataclass(frozen=True)
class Contains:
    field: str
    value: str
    negate: bool = False

    def as_q(self):
        q = Q(**{"%s__contains" % self.field: self.value})
        return negated(self.field, q) if self.negate else q


@dataclass(frozen=True)
class NoMatch:
    """ A value the column can never hold, e.g. id=abc """

    field: str
    negate: bool = False

    def as_q(self):
        if self.negate:
            return negated(self.field, Q(pk__in=[]))
        return Q(pk__in=[])


@dataclass(frozen=True)
class Within:
    """ login_timestamp within the last interval, e.g. "1 WEEK" """

    interval: str

    def as_q(self):
        return Q(login_timestamp__gte=interval_cutoff(self.interval))


@dataclass(frozen=True)
class OnOrAfter:
    moment: datetime

    def as_q(self):
        return Q(login_timestamp__gte=self.moment)


@dataclass(frozen=True)
class OnOrBefore:
    moment: datetime

    def as_q(self):
        return Q(login_timestamp__lte=self.moment)


@dataclass
class LoginHistoryQuery:
    """ One page of login attempts plus what is needed to page through
    the rest """

    rows: List[LoginAttempt]
    total: int
    limit: int
    offset: int
    page: int
    num_pages: int
    sort: str
    filters: Dict[str, str] = field(default_factory=dict)
    clauses: list = field(default_factory=list)


def coerce_value(name, value):
    """ Convert a filter value to the column type, ValueError if it
    can't be one """
    if name in INTEGER_FIELDS:
        value = int(value)
        if not 0 <= value <= INTEGER_MAX:
            raise ValueError(value)
        return value
    if name == "login_was_successful":
        try:
            return BOOLEAN_VALUES[value.strip().lower()]
        except KeyError:
            raise ValueError(value)
    if name == "ip_address" and not is_valid_ip(value):
        raise ValueError(value)
    return value


def parse_when(value):
    """ Normalized relative interval token, None unless it is one of
    WHEN_CHOICES """
    if not value:
        return None
    value = " ".join(value.split()).upper()
    if value in WHEN_CHOICES:
        return value
    return None


def make_moment(day, at):
    moment = datetime.combine(day, at)
    if settings.USE_TZ:
        return timezone.make_aware(moment)
    return moment


def parse_date_clause(name, value):
    try:
        day = parse_date(value.strip())
    except ValueError:
        # well formed but not a real date, e.g. 2021-02-30
        day = None
    if day is None:
        LOG.debug("Ignoring unparseable %s=%r", name, value)
        return None
    if name == "date_from":
        return OnOrAfter(make_moment(day, time.min))
    return OnOrBefore(make_moment(day, time.max))


def parse_value_clause(name, value):
    negate = value.startswith("!")
    if negate:
        value = value[1:]
    if name == "user_agent":
        return Contains(name, value, negate)
    try:
        value = coerce_value(name, value)
    except ValueError:
        return NoMatch(name, negate)
    return Equals(name, value, negate)


def get_filters(params):
    """ The whitelisted, non-empty filter parameters """
    filters = {}
    for name in FILTER_FIELDS:
        value = params.get(name)
        if value is None or isinstance(value, (list, tuple, dict)):
            continue
        value = str(value)
        if value != "":
            filters[name] = value
    return filters


def parse_filters(params):
    """ Turn request parameters into filter clauses. Anything that isn't a
    known filter is ignored. A valid `when` overrides the date range. """
    filters = get_filters(params)
    when = parse_when(filters.get("when"))

    clauses = []
    for name, value in filters.items():
        if name == "when":
            continue
        if name in ("date_from", "date_until"):
            if when is not None:
                continue
            clause = parse_date_clause(name, value)
        else:
            clause = parse_value_clause(name, value)
        if clause is not None:
            clauses.append(clause)

    if when is not None:
        clauses.append(Within(when))
    return clauses


def filter_queryset(queryset, clauses):
    for clause in clauses:
        queryset = queryset.filter(clause.as_q())
    return queryset


def get_sort_fields():
    return {f.name for f in LoginAttempt._meta.concrete_fields}


def get_ordering(sort):
    """ Returns (sort, ordering); unknown columns fall back to the
    default, id descending always breaks ties """
    sort = (sort or "").strip()
    column = sort[1:] if sort.startswith("-") else sort
    if column not in get_sort_fields():
        sort = DEFAULT_SORT
        column = sort[1:]
    ordering = [sort]
    if column != "id":
        ordering.append("-id")
    return sort, ordering


def get_limit(params, config):
    value = params.get("limit")
    if value in (None, ""):
        return config.row_limit
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return config.row_limit
    if limit < 0:
        return config.row_limit
    return limit


def get_page(params):
    try:
        page = int(params.get("page") or 1)
    except (TypeError, ValueError):
        page = 1
    return max(page, 1)


def get_offset(page, limit, total):
    """ (page - 1) * limit, pulled back so a page never runs past the
    last row """
    if not limit:
        return 0
    offset = (page - 1) * limit
    if offset + limit > total:
        offset = max(total - limit, 0)
    return offset


def build_query(params, config=None):
    """
    Run the report query described by params (a QueryDict or plain dict).

    The total is counted before the page is fetched since the offset
    depends on it. A limit of 0 returns every matching row.
    """
    config = config or get_config()
    clauses = parse_filters(params)
    sort, ordering = get_ordering(params.get("sort"))
    queryset = filter_queryset(LoginAttempt.objects.all(), clauses).order_by(
        *ordering
    )

    total = queryset.count()
    limit = get_limit(params, config)
    page = get_page(params)
    offset = get_offset(page, limit, total)

    if limit:
        rows = list(queryset[offset:offset + limit])
        num_pages = max(ceil(total / limit), 1)
    else:
        rows = list(queryset)
        num_pages = 1

    return LoginHistoryQuery(
        rows=rows,
        total=total,
        limit=limit,
        offset=offset,
        page=page,
        num_pages=num_pages,
        sort=sort,
        filters=get_filters(params),
        clauses=clauses,
    )
