"""Unit tests for address resolvers."""

import ipaddress
import socket
from collections import namedtuple
from unittest.mock import MagicMock, patch

import requests

from ipdnsd.config import AddressSource
from ipdnsd.resolvers import (
    ExternalAddressResolver,
    InternalAddressResolver,
    first_address,
    parse_address,
)

snic = namedtuple("snic", ["family", "address", "netmask", "broadcast", "ptp"])


def v4(address: str) -> snic:
    return snic(socket.AF_INET, address, "255.255.255.0", None, None)


def v6(address: str) -> snic:
    return snic(socket.AF_INET6, address, "ffff:ffff:ffff:ffff::", None, None)


# =============================================================================
# Parsing and Fallback
# =============================================================================


def test_parse_address_trims_whitespace() -> None:
    """Test surrounding whitespace and newlines are ignored."""
    assert parse_address("  10.0.0.1\n") == ipaddress.ip_address("10.0.0.1")
    assert parse_address("2001:db8::1") == ipaddress.ip_address("2001:db8::1")


def test_parse_address_strips_zone_suffix() -> None:
    """Test an IPv6 zone suffix is dropped before parsing."""
    assert parse_address("fe80::1%eth0") == ipaddress.ip_address("fe80::1")


def test_parse_address_rejects_garbage() -> None:
    """Test non-address text parses to None."""
    assert parse_address("<html>rate limited</html>") is None
    assert parse_address("") is None


def test_first_address_returns_first_success_in_order() -> None:
    """Test candidates are tried in order and the first address wins."""
    responses = {"a": "not an ip", "b": "203.0.113.7", "c": "203.0.113.8"}
    calls = []

    def fetch(name: str) -> str:
        calls.append(name)
        return responses[name]

    assert first_address(["a", "b", "c"], fetch) == (ipaddress.ip_address("203.0.113.7"), "b")
    assert calls == ["a", "b"]


def test_first_address_skips_exceptions() -> None:
    """Test a candidate that raises moves on to the next."""
    def fetch(name: str) -> str:
        if name == "down":
            raise ConnectionError("refused")
        return "198.51.100.3"

    found = first_address(["down", "up"], fetch)

    assert found == (ipaddress.ip_address("198.51.100.3"), "up")


def test_first_address_returns_none_when_all_fail() -> None:
    """Test None is returned when no candidate yields an address."""
    assert first_address(["a", "b"], lambda name: "nope") is None


def test_first_address_stops_when_cancelled() -> None:
    """Test no further candidates are tried once stop is requested."""
    calls = []

    def fetch(name: str) -> str:
        calls.append(name)
        return "junk"

    assert first_address(["a", "b", "c"], fetch, should_stop=lambda: len(calls) >= 1) is None
    assert calls == ["a"]


# =============================================================================
# External Resolver
# =============================================================================


class TestExternalAddressResolver:
    """Tests for echo-service lookup of the external address."""

    def test_resolve_uses_first_working_service(self) -> None:
        """Test the first service that answers provides the external address."""
        resolver = ExternalAddressResolver(["https://one", "https://two"], timeout_seconds=3)

        with patch.object(resolver._session, "get") as mock_get:
            failing = requests.exceptions.Timeout("timed out")
            ok = MagicMock()
            ok.raise_for_status = MagicMock()
            ok.text = "203.0.113.42\n"
            mock_get.side_effect = [failing, ok]

            result = resolver.resolve()

        assert result is not None
        assert result.address == ipaddress.ip_address("203.0.113.42")
        assert result.source == AddressSource.EXTERNAL
        assert result.origin == "https://two"
        mock_get.assert_called_with("https://two", timeout=3)

    def test_resolve_returns_none_when_all_fail(self) -> None:
        """Test every service failing is no resolution, not an exception."""
        resolver = ExternalAddressResolver(["https://one", "https://two"])

        with patch.object(resolver._session, "get") as mock_get:
            bad = MagicMock()
            bad.raise_for_status.side_effect = requests.exceptions.HTTPError("503")
            mock_get.return_value = bad

            assert resolver.resolve() is None
            assert mock_get.call_count == 2

    def test_close_closes_session(self) -> None:
        """Test close releases the resolver's HTTP session."""
        resolver = ExternalAddressResolver(["https://one"])

        with patch.object(resolver._session, "close") as mock_close:
            resolver.close()

        mock_close.assert_called_once_with()

    def test_default_timeout_is_short(self) -> None:
        """Test the per-service timeout defaults to five seconds."""
        resolver = ExternalAddressResolver(["https://one"])

        with patch.object(resolver._session, "get") as mock_get:
            mock_get.return_value = MagicMock(text="203.0.113.42")
            resolver.resolve()

        mock_get.assert_called_once_with("https://one", timeout=5.0)


# =============================================================================
# Internal Resolver
# =============================================================================


class TestInternalAddressResolver:
    """Tests for default-route interface address selection."""

    def test_prefers_default_route_address(self) -> None:
        """Test the default-route address wins over other interfaces."""
        interfaces = {
            "lo": [v4("127.0.0.1")],
            "docker0": [v4("172.17.0.1")],
            "eth0": [v4("192.168.1.20"), v6("fe80::1%eth0")],
        }
        resolver = InternalAddressResolver(
            interfaces=lambda: interfaces, route_lookup=lambda family: "192.168.1.20"
        )

        result = resolver.resolve()

        assert result.address == ipaddress.ip_address("192.168.1.20")
        assert result.origin == "eth0"
        assert result.source == AddressSource.INTERNAL

    def test_no_default_route_is_no_resolution(self) -> None:
        """Test a missing default route yields no internal address."""
        resolver = InternalAddressResolver(
            interfaces=lambda: {"eth0": [v4("192.168.1.20")]}, route_lookup=lambda family: None
        )

        assert resolver.resolve() is None

    def test_empty_interface_list_is_no_resolution(self) -> None:
        """Test no interfaces yields no internal address."""
        resolver = InternalAddressResolver(
            interfaces=lambda: {}, route_lookup=lambda family: "192.168.1.20"
        )

        assert resolver.resolve() is None

    def test_link_local_route_uses_other_address_on_same_interface(self) -> None:
        """Test a link-local route address falls back within its own interface."""
        resolver = InternalAddressResolver()
        interfaces = {"eth0": [v4("169.254.3.3"), v4("10.1.2.3")]}

        found = resolver.select(interfaces, "169.254.3.3")

        assert found == (ipaddress.ip_address("10.1.2.3"), "eth0")

    def test_only_link_local_on_route_interface_is_no_resolution(self) -> None:
        """Test other interfaces are never used as a fallback."""
        resolver = InternalAddressResolver()
        interfaces = {"eth0": [v4("169.254.3.3")], "wlan0": [v4("192.168.5.5")]}

        assert resolver.select(interfaces, "169.254.3.3") is None

    def test_ipv6_family(self) -> None:
        """Test the IPv6 family selects a global IPv6 address."""
        interfaces = {"eth0": [v4("192.168.1.20"), v6("fe80::1%eth0"), v6("2001:db8::20")]}
        resolver = InternalAddressResolver(
            family=6, interfaces=lambda: interfaces, route_lookup=lambda family: "2001:db8::20"
        )

        result = resolver.resolve()

        assert result.address == ipaddress.ip_address("2001:db8::20")
