"""
auth/device.py -- User-Agent heuristics for session display.

Classification is best-effort and only feeds the "your devices" list. It
never raises and never blocks a login: anything unrecognized is "Unknown".
"""

from __future__ import annotations

import re

from auth.models import DeviceInfo

_UNKNOWN = "Unknown"

# Order matters: an iPad UA also contains "Mobile". Android phones say "Mobile"
# after the platform token and Android tablets do not.
_TABLET_RE = re.compile(r"tablet|ipad|android(?!.*mobile)", re.IGNORECASE)
_MOBILE_RE = re.compile(r"mobile|iphone|android", re.IGNORECASE)
_DESKTOP_RE = re.compile(r"windows|macintosh|mac os|linux|x11|cros", re.IGNORECASE)

# (pattern, name, excluded-if-present)
_BROWSERS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("edg", "Edge", ()),
    ("firefox", "Firefox", ()),
    ("chrome", "Chrome", ("edg",)),
    ("safari", "Safari", ("chrome", "chromium", "edg")),
)

# Checked in order; mobile systems first because their UAs also mention a desktop kernel.
_OPERATING_SYSTEMS: tuple[tuple[str, str], ...] = (
    ("android", "Android"),
    ("iphone", "iOS"),
    ("ipad", "iOS"),
    ("windows", "Windows"),
    ("mac os", "macOS"),
    ("macintosh", "macOS"),
    ("linux", "Linux"),
)


def _device_type(ua: str) -> str:
    if _TABLET_RE.search(ua):
        return "tablet"
    if _MOBILE_RE.search(ua):
        return "mobile"
    if _DESKTOP_RE.search(ua):
        return "desktop"
    return "unknown"


def _browser(ua_lower: str) -> str:
    for needle, name, excluded in _BROWSERS:
        if needle in ua_lower and not any(x in ua_lower for x in excluded):
            return name
    return _UNKNOWN


def _os(ua_lower: str) -> str:
    for needle, name in _OPERATING_SYSTEMS:
        if needle in ua_lower:
            return name
    return _UNKNOWN


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    """Classify a User-Agent header into device type, browser and OS."""
    if not user_agent:
        return DeviceInfo(device_type="unknown", browser=_UNKNOWN, os=_UNKNOWN)
    ua_lower = user_agent.lower()
    return DeviceInfo(
        device_type=_device_type(user_agent),
        browser=_browser(ua_lower),
        os=_os(ua_lower),
    )
