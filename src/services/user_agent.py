"""User-agent classification and device fingerprinting."""

import hashlib
import re
from dataclasses import dataclass

from src.models.enums import DeviceType, OSType

TABLET_PATTERN = re.compile(r"tablet|ipad|playbook|silk(?!-accelerated)|android(?!.*mobi)", re.I)
MOBILE_PATTERN = re.compile(
    r"mobile|ip(hone|od)|android|blackberry|iemobile|kindle|silk-accelerated"
    r"|(hpw|web)os|opera m(obi|ini)",
    re.I,
)

# Order matters: iOS and Android user agents also mention "mac os x" and "linux"
OS_MATCHERS: list[tuple[tuple[str, ...], OSType]] = [
    (("windows",), OSType.WINDOWS),
    (("iphone", "ipad", "ipod"), OSType.IOS),
    (("android",), OSType.ANDROID),
    (("mac os x", "macintosh"), OSType.MACOS),
    (("linux", "x11"), OSType.LINUX),
]

# Edge and Opera carry "chrome", Chrome carries "safari"
BROWSER_MATCHERS: list[tuple[tuple[str, ...], str]] = [
    (("edg/", "edge"), "edge"),
    (("opr/", "opera"), "opera"),
    (("firefox", "fxios"), "firefox"),
    (("chrome", "crios"), "chrome"),
    (("safari",), "safari"),
]


@dataclass(frozen=True)
class DeviceInfo:
    """Classification of a client derived from its user agent."""

    name: str
    type: DeviceType
    os: OSType
    browser: str
    fingerprint: str


def _match(ua: str, matchers: list[tuple[tuple[str, ...], object]], default):
    for needles, result in matchers:
        if any(needle in ua for needle in needles):
            return result
    return default


def compute_fingerprint(device_type: DeviceType, os: OSType, browser: str, user_agent: str) -> str:
    """Deterministic device token for a given client.

    The same physical browser sends the same user agent on every login, so
    it reproduces the same token across sessions.
    """
    raw = f"{device_type.value}-{os.value}-{browser}-{user_agent}"
    return hashlib.sha256(raw.encode()).hexdigest()


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    """Classify a raw user-agent string."""
    raw = user_agent or ""
    ua = raw.lower()

    device_type = DeviceType.DESKTOP
    if TABLET_PATTERN.search(ua):
        device_type = DeviceType.TABLET
    elif MOBILE_PATTERN.search(ua):
        device_type = DeviceType.MOBILE

    os = _match(ua, OS_MATCHERS, OSType.OTHER)
    browser = _match(ua, BROWSER_MATCHERS, "unknown")

    os_label = "iOS" if os == OSType.IOS else os.value.capitalize()
    name = f"{os_label} {device_type.value.capitalize()}"

    return DeviceInfo(
        name=name,
        type=device_type,
        os=os,
        browser=browser,
        fingerprint=compute_fingerprint(device_type, os, browser, raw),
    )
