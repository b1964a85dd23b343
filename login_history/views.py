import logging

from django.contrib import admin
from django.contrib.admin.views.decorators import staff_member_required
from django.contrib.auth.decorators import permission_required
from django.core.exceptions import PermissionDenied
from django.http import HttpResponseRedirect, JsonResponse
from django.shortcuts import render
from django.urls import reverse
from django.utils.http import url_has_allowed_host_and_scheme

from .config import get_config
from .data import remove_login_attempt
from .feeds import LoginHistoryFeed
from .query import build_query
from .reports import (
    build_report_rows,
    can_remove,
    get_filter_choices,
    serialize_attempt,
)

LOG = logging.getLogger(__name__)

VIEW_PERMISSION = "login_history.view_loginattempt"

SORT_COLUMNS = ("login_timestamp", "username", "ip_address", "login_was_successful")


def get_page_links(request, query):
    params = request.GET.copy()
    links = []
    for number in range(1, query.num_pages + 1):
        params["page"] = number
        links.append(
            {
                "number": number,
                "url": "?" + params.urlencode(),
                "current": number == query.page,
            }
        )
    return links


def get_sort_links(request, query):
    """ column -> url sorting by it, a second click reverses the order """
    params = request.GET.copy()
    params.pop("page", None)
    links = {}
    for column in SORT_COLUMNS:
        params["sort"] = "-" + column if query.sort == column else column
        links[column] = "?" + params.urlencode()
    return links


@staff_member_required
@permission_required(VIEW_PERMISSION, raise_exception=True)
def report_view(request):
    """ The login history table """
    config = get_config()
    query = build_query(request.GET, config)
    querystring = request.GET.urlencode()

    context = dict(
        admin.site.each_context(request),
        title="Login history",
        query=query,
        rows=build_report_rows(query.rows, config),
        filters=query.filters,
        choices=get_filter_choices(),
        log_ip_addresses=config.log_ip_addresses,
        can_remove=can_remove(request.user, config),
        page_links=get_page_links(request, query),
        sort_links=get_sort_links(request, query),
        json_url=reverse("login_history_json") + "?" + querystring,
        rss_url=reverse("login_history_rss") + "?" + querystring,
        current_url=request.get_full_path(),
    )
    return render(request, "login_history/admin/report.html", context)


@staff_member_required
@permission_required(VIEW_PERMISSION, raise_exception=True)
def json_view(request):
    """ The same rows as the table, as stored """
    query = build_query(request.GET)
    return JsonResponse([serialize_attempt(row) for row in query.rows], safe=False)


rss_view = staff_member_required(
    permission_required(VIEW_PERMISSION, raise_exception=True)(LoginHistoryFeed())
)


@staff_member_required
@permission_required(VIEW_PERMISSION, raise_exception=True)
def remove_view(request, pk):
    """ remove one login attempt, removing a missing one is a no-op """
    if not can_remove(request.user):
        raise PermissionDenied
    if request.method == "POST":
        removed = remove_login_attempt(pk)
        LOG.info(
            "%s removed login attempt %s (%d rows)",
            request.user.get_username(),
            pk,
            removed,
        )
        next_url = request.POST.get("next")
        if next_url and url_has_allowed_host_and_scheme(
            next_url,
            allowed_hosts={request.get_host()},
            require_https=request.is_secure(),
        ):
            return HttpResponseRedirect(next_url)
    return HttpResponseRedirect(reverse("login_history_report"))
