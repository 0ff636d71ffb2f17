"""Tests for request fingerprint helpers."""

import pytest

from app.api.fingerprint import parse_user_agent, pick_client_ip, pick_geo
from app.domain import GeoLabel


class TestParseUserAgent:
    """Device class and OS detection."""

    @pytest.mark.parametrize(
        ("user_agent", "expected"),
        [
            ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X)", ("Mobile", "iOS")),
            ("Mozilla/5.0 (Linux; Android 14; Pixel 8)", ("Mobile", "Android")),
            ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", ("Desktop", "Windows")),
            ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5)", ("Desktop", "macOS")),
            ("Mozilla/5.0 (X11; Linux x86_64)", ("Desktop", "Linux")),
            ("curl/8.5.0", ("Desktop", "Unknown")),
            (None, ("Desktop", "Unknown")),
        ],
    )
    def test_user_agent(self, user_agent, expected) -> None:
        assert parse_user_agent(user_agent) == expected

    def test_client_hints_take_precedence(self) -> None:
        assert parse_user_agent("Mozilla/5.0 (X11; Linux x86_64)", '"Android"', "?1") == ("Mobile", "Android")

    def test_mobile_hint_without_known_os(self) -> None:
        assert parse_user_agent("SomeBrowser/1.0", None, "?1") == ("Mobile", "Unknown")


class TestPickClientIp:
    """Client address selection."""

    def test_first_forwarded_address(self) -> None:
        headers = {"x-forwarded-for": " 198.51.100.7 , 10.0.0.1", "x-real-ip": "10.0.0.2"}

        assert pick_client_ip(headers, "127.0.0.1") == "198.51.100.7"

    def test_cloudflare_header(self) -> None:
        assert pick_client_ip({"cf-connecting-ip": "198.51.100.9"}) == "198.51.100.9"

    def test_falls_back_to_peer(self) -> None:
        assert pick_client_ip({}, "127.0.0.1") == "127.0.0.1"
        assert pick_client_ip({}) == ""


def test_pick_geo_reads_edge_headers() -> None:
    assert pick_geo({"cf-ipcity": "Lisbon", "x-geo-country": "PT"}) == GeoLabel(city="Lisbon", country="PT")
    assert pick_geo({}) == GeoLabel()
