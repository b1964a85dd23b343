from django import template

from ..config import get_config

register = template.Library()


@register.inclusion_tag("login_history/features_probe.html")
def login_history_features_probe():
    """
    Hidden field plus script reporting the browser features (javascript,
    flash, screen and window size) with the login form. Put it inside the
    login <form>; without javascript the field still reports
    {"javascript": false}.
    """
    return {"field_name": get_config().features_form_field}
