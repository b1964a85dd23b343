"""
Best-effort user agent summary for the report: device class, platform
and browser. It is a heuristic; don't rely on it for anything but display.
"""
import re
from dataclasses import dataclass
from typing import Optional

TABLET_RE = re.compile(
    r"ipad|tablet|kindle|silk|playbook|android(?!.*mobile)", re.IGNORECASE
)
MOBILE_RE = re.compile(
    r"mobile|iphone|ipod|android|blackberry|opera mini|iemobile|windows phone",
    re.IGNORECASE,
)
PARENTHESIZED_RE = re.compile(r"\(([^)]*)\)")

# order matters, the first match wins
PLATFORMS = (
    ("Windows Phone", "Windows Phone"),
    ("Windows", "Windows"),
    ("iPhone", "iPhone"),
    ("iPad", "iPad"),
    ("iPod", "iPod"),
    ("Android", "Android"),
    ("CrOS", "Chrome OS"),
    ("Macintosh", "Mac OS X"),
    ("Linux", "Linux"),
)

# (token in the user agent, label); more specific tokens first since most
# browsers also claim to be Chrome and/or Safari
BROWSERS = (
    ("Edg", "Edge"),
    ("Edge", "Edge"),
    ("OPR", "Opera"),
    ("Opera", "Opera"),
    ("SamsungBrowser", "Samsung Browser"),
    ("CriOS", "Chrome"),
    ("Chrome", "Chrome"),
    ("FxiOS", "Firefox"),
    ("Firefox", "Firefox"),
    ("MSIE", "Internet Explorer"),
    ("Trident", "Internet Explorer"),
    ("Safari", "Safari"),
)


@dataclass(frozen=True)
class UserAgentSummary:
    device: str
    platform: Optional[str] = None
    browser: Optional[str] = None
    version: Optional[str] = None

    @property
    def browser_label(self):
        if self.browser and self.version:
            return "%s %s" % (self.browser, self.version)
        return self.browser

    def __str__(self):
        parts = [self.device]
        if self.platform:
            parts.append(self.platform)
        if self.browser:
            parts.append(self.browser_label)
        return ", ".join(parts)


def get_device(user_agent):
    if TABLET_RE.search(user_agent):
        return "tablet"
    if MOBILE_RE.search(user_agent):
        return "mobile"
    return "desktop"


def get_platform(user_agent):
    match = PARENTHESIZED_RE.search(user_agent)
    if not match:
        return None
    segment = match.group(1)
    for token, label in PLATFORMS:
        if token in segment:
            return label
    first = segment.split(";", 1)[0].strip()
    return first or None


def get_browser(user_agent):
    """ (browser, version) for the first known browser token found """
    for token, label in BROWSERS:
        match = re.search(
            r"\b%s(?![A-Za-z])(?:/|\s)?([\d.]*)" % re.escape(token), user_agent
        )
        if not match:
            continue
        version = match.group(1) or None
        if token == "Trident":
            rv = re.search(r"rv:([\d.]+)", user_agent)
            version = rv.group(1) if rv else None
        elif token == "Safari":
            safari = re.search(r"Version/([\d.]+)", user_agent)
            version = safari.group(1) if safari else None
            if "Android" in user_agent and "Mobile Safari" in user_agent:
                return "Android Browser", version
        return label, version
    return None, None


def parse_user_agent(user_agent):
    """ Summarize a user agent string, None when there is nothing to
    summarize """
    if not user_agent or not user_agent.strip():
        return None
    browser, version = get_browser(user_agent)
    return UserAgentSummary(
        device=get_device(user_agent),
        platform=get_platform(user_agent),
        browser=browser,
        version=version,
    )


def describe_features(features):
    """ Human readable lines for the client reported feature flags """
    if not features:
        return []
    lines = []
    for key, label in (("javascript", "JavaScript"), ("flash", "Flash")):
        if key in features:
            lines.append(
                "%s %s" % (label, "enabled" if features[key] else "disabled")
            )
    for key, label in (("screen", "Screen"), ("window", "Window")):
        if features.get(key):
            lines.append("%s: %s" % (label, features[key]))
    return lines
