"""Address resolvers: find the host's current external and internal address."""

from __future__ import annotations

import ipaddress
import logging
import socket
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

import psutil
import requests

from ipdnsd.config import DEFAULT_EXTERNAL_SERVICES, AddressSource

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
T = TypeVar("T")

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ResolvedAddress:
    """An address tagged with where and when it was obtained."""

    address: IPAddress
    source: AddressSource
    origin: str
    obtained_at: float

    def __str__(self) -> str:
        return str(self.address)


def parse_address(text: str) -> Optional[IPAddress]:
    """Parse an address literal, tolerating whitespace and IPv6 zone suffixes."""
    value = (text or "").strip().split("%", 1)[0]
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def first_address(
    candidates: Iterable[T],
    fetch: Callable[[T], str],
    should_stop: Optional[Callable[[], bool]] = None,
) -> Optional[Tuple[IPAddress, T]]:
    """Try each candidate in order and return the first that yields an address.

    `fetch` returns raw text for a candidate; exceptions and unparseable
    responses move on to the next one.
    """
    for candidate in candidates:
        if should_stop is not None and should_stop():
            logger.debug("Address lookup cancelled")
            return None
        try:
            text = fetch(candidate)
        except Exception as e:
            logger.debug(f"Address source {candidate} failed: {e}")
            continue
        address = parse_address(text)
        if address is None:
            logger.debug(f"Address source {candidate} returned unparseable response: {text!r:.64}")
            continue
        return address, candidate
    return None


# =============================================================================
# Resolver Interface and Implementations
# =============================================================================


class AddressResolver(ABC):
    """Produces a best-effort current address for one source."""

    @property
    @abstractmethod
    def source(self) -> AddressSource:
        pass

    @abstractmethod
    def resolve(self, should_stop: Optional[Callable[[], bool]] = None) -> Optional[ResolvedAddress]:
        """Return the current address, or None when nothing usable was found."""
        pass

    def close(self) -> None:
        pass


class ExternalAddressResolver(AddressResolver):
    """Asks external echo services for the public address, first success wins."""

    def __init__(
        self,
        services: Sequence[str] = DEFAULT_EXTERNAL_SERVICES,
        timeout_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self._services = list(services)
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    @property
    def source(self) -> AddressSource:
        return AddressSource.EXTERNAL

    @property
    def services(self) -> List[str]:
        return list(self._services)

    def close(self) -> None:
        self._session.close()

    def _fetch(self, url: str) -> str:
        response = self._session.get(url, timeout=self._timeout)
        response.raise_for_status()
        return response.text

    def resolve(self, should_stop: Optional[Callable[[], bool]] = None) -> Optional[ResolvedAddress]:
        found = first_address(self._services, self._fetch, should_stop)
        if found is None:
            logger.warning(f"No external address: all {len(self._services)} services failed")
            return None
        address, url = found
        logger.debug(f"External address {address} from {url}")
        return ResolvedAddress(
            address=address, source=self.source, origin=url, obtained_at=time.time()
        )


def default_route_address(family: int = 4) -> Optional[str]:
    """Local address the kernel would use for outbound traffic.

    Connecting a UDP socket selects a route without sending anything.
    """
    if family == 6:
        af, target = socket.AF_INET6, ("2001:db8::1", 80)
    else:
        af, target = socket.AF_INET, ("192.0.2.1", 80)
    try:
        with socket.socket(af, socket.SOCK_DGRAM) as s:
            s.connect(target)
            return s.getsockname()[0]
    except OSError as e:
        logger.debug(f"No default IPv{family} route: {e}")
        return None


def _is_candidate(address: IPAddress) -> bool:
    return not (
        address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_multicast
    )


class InternalAddressResolver(AddressResolver):
    """Picks the local-network address on the default-route interface.

    Loopback and link-local addresses never qualify. If the default-route
    interface has no qualifying address there is no resolution; other
    interfaces are not used as a fallback.
    """

    def __init__(
        self,
        family: int = 4,
        interfaces: Callable[[], Dict[str, List[Any]]] = psutil.net_if_addrs,
        route_lookup: Callable[[int], Optional[str]] = default_route_address,
    ):
        self._family = family
        self._interfaces = interfaces
        self._route_lookup = route_lookup

    @property
    def source(self) -> AddressSource:
        return AddressSource.INTERNAL

    def _addresses(self, snics: List[Any]) -> List[IPAddress]:
        wanted = socket.AF_INET6 if self._family == 6 else socket.AF_INET
        parsed: List[IPAddress] = []
        for snic in snics:
            if snic.family != wanted:
                continue
            address = parse_address(snic.address)
            if address is not None:
                parsed.append(address)
        return parsed

    def select(self, interfaces: Dict[str, List[Any]], route_ip: str) -> Optional[Tuple[IPAddress, str]]:
        route_address = parse_address(route_ip)
        if route_address is None:
            return None
        for name, snics in interfaces.items():
            addresses = self._addresses(snics)
            if route_address not in addresses:
                continue
            if _is_candidate(route_address):
                return route_address, name
            candidates = [a for a in addresses if _is_candidate(a)]
            if candidates:
                return candidates[0], name
            logger.debug(f"Default route interface {name} has no usable address")
            return None
        logger.debug(f"Default route address {route_address} not found on any interface")
        return None

    def resolve(self, should_stop: Optional[Callable[[], bool]] = None) -> Optional[ResolvedAddress]:
        interfaces = self._interfaces()
        if not interfaces:
            logger.warning("No network interfaces found")
            return None
        route_ip = self._route_lookup(self._family)
        if not route_ip:
            logger.warning(f"No internal address: no default IPv{self._family} route")
            return None
        found = self.select(interfaces, route_ip)
        if found is None:
            logger.warning("No internal address: default route interface has no usable address")
            return None
        address, name = found
        logger.debug(f"Internal address {address} on {name}")
        return ResolvedAddress(
            address=address, source=self.source, origin=name, obtained_at=time.time()
        )
