"""Device fingerprint and edge geo headers.

Derives the coarse fingerprint used by the session registry from request
headers set by the browser and the edge proxy.
"""

import re
from collections.abc import Mapping

from fastapi import Request

from app.domain.value_objects import Fingerprint, GeoLabel

_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "x-vercel-forwarded-for", "cf-connecting-ip")
_CITY_HEADERS = ("x-vercel-ip-city", "x-ip-city", "x-geo-city", "cf-ipcity")
_COUNTRY_HEADERS = ("x-vercel-ip-country", "x-ip-country", "x-geo-country", "cf-ipcountry")


def parse_user_agent(
    user_agent: str | None,
    platform_hint: str | None = None,
    mobile_hint: str | None = None,
) -> tuple[str, str]:
    """Classify a client into a device class and OS family.

    Client hints take precedence over the user agent string.

    Args:
        user_agent: ``User-Agent`` header.
        platform_hint: ``Sec-CH-UA-Platform`` header.
        mobile_hint: ``Sec-CH-UA-Mobile`` header.

    Returns:
        ``(device, os)``, e.g. ``("Mobile", "iOS")``.
    """
    ua = (user_agent or "").lower()
    platform = (platform_hint or "").replace('"', "").lower()
    is_mobile_hint = "?1" in (mobile_hint or "")

    is_ios = "ios" in platform or re.search(r"iphone|ipad|ipod", ua) is not None
    is_android = "android" in platform or "android" in ua
    is_windows = "windows" in platform or "windows nt" in ua
    is_mac = "macos" in platform or re.search(r"macintosh|mac os x", ua) is not None
    is_linux = "linux" in ua and not is_android

    if is_ios:
        os_name = "iOS"
    elif is_android:
        os_name = "Android"
    elif is_windows:
        os_name = "Windows"
    elif is_mac:
        os_name = "macOS"
    elif is_linux:
        os_name = "Linux"
    else:
        os_name = "Unknown"

    if is_ios or is_android:
        device = "Mobile"
    elif re.search(r"tablet|ipad", ua):
        device = "Tablet"
    elif is_mobile_hint:
        device = "Mobile"
    else:
        device = "Desktop"
    return device, os_name


def pick_client_ip(headers: Mapping[str, str], fallback: str | None = None) -> str:
    """First address of the forwarding chain, else the peer address."""
    for name in _IP_HEADERS:
        value = headers.get(name)
        if value:
            return value.split(",")[0].strip()
    return (fallback or "").strip()


def pick_geo(headers: Mapping[str, str]) -> GeoLabel:
    """Location labels injected by the edge, if any."""
    city = next((headers[name] for name in _CITY_HEADERS if headers.get(name)), None)
    country = next((headers[name] for name in _COUNTRY_HEADERS if headers.get(name)), None)
    return GeoLabel(city=city, country=country)


def fingerprint_from_request(request: Request) -> tuple[Fingerprint, GeoLabel]:
    """Build the session fingerprint and geo labels for a request."""
    headers = request.headers
    user_agent = headers.get("user-agent", "")
    device, os_name = parse_user_agent(
        user_agent,
        headers.get("sec-ch-ua-platform"),
        headers.get("sec-ch-ua-mobile"),
    )
    peer = request.client.host if request.client else None
    fingerprint = Fingerprint(
        device=device,
        os=os_name,
        ip=pick_client_ip(headers, peer),
        user_agent=user_agent,
    )
    return fingerprint, pick_geo(headers)
