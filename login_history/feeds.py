from django.contrib.syndication.views import Feed
from django.urls import reverse
from django.utils.html import escape

from .config import get_config
from .query import build_query
from .reports import NO_DATA, attempt_title, build_report_rows


class LoginHistoryFeed(Feed):
    """ RSS feed of login attempts, filtered like the report """

    title = "Login history"
    description = "Login attempts"

    def get_object(self, request, *args, **kwargs):
        config = get_config()
        query = build_query(request.GET, config)
        return build_report_rows(query.rows, config)

    def link(self, obj):
        return reverse("login_history_report")

    def items(self, obj):
        return obj

    def item_title(self, item):
        return attempt_title(item)

    def item_description(self, item):
        if item.user_agent is None:
            return NO_DATA
        parts = [str(item.user_agent)] + item.features
        return "<br>".join(escape(part) for part in parts)

    def item_link(self, item):
        return "%s?id=%d" % (reverse("login_history_report"), item.attempt.pk)

    def item_pubdate(self, item):
        return item.attempt.login_timestamp
