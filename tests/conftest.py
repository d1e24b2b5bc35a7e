"""Shared fakes for reconciler and scheduler tests."""

import ipaddress
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from ipdnsd.cache import StateCache
from ipdnsd.config import AddressSource, MonitoredEntry
from ipdnsd.credentials import Credential, CredentialStore
from ipdnsd.providers import DNSProvider, DNSRecord, ProviderRegistry
from ipdnsd.reconciler import Reconciler
from ipdnsd.resolvers import AddressResolver, ResolvedAddress

RecordKey = Tuple[str, str, str]

# =============================================================================
# Mock DNS Provider
# =============================================================================


class MockDNSProvider(DNSProvider):
    """In-memory provider with call tracking and injectable failures."""

    def __init__(self, records: Dict[RecordKey, str] | None = None, name: str = "mock"):
        self._name = name
        self.records: Dict[RecordKey, str] = dict(records or {})
        self.get_calls: List[RecordKey] = []
        self.set_calls: List[Tuple[str, str, str, str, Optional[int]]] = []
        self.get_errors: Dict[RecordKey, Exception] = {}
        self.set_errors: Dict[RecordKey, Exception] = {}
        self.ttls: Dict[RecordKey, int] = {}

    @property
    def name(self) -> str:
        return self._name

    def get_record(
        self, credential: Credential, domain: str, record_name: str, record_type: str
    ) -> Optional[DNSRecord]:
        key = (domain, record_name, record_type)
        self.get_calls.append(key)
        if key in self.get_errors:
            raise self.get_errors[key]
        if key not in self.records:
            return None
        return DNSRecord(value=self.records[key], ttl=self.ttls.get(key))

    def set_record(
        self,
        credential: Credential,
        domain: str,
        record_name: str,
        record_type: str,
        value: str,
        ttl: Optional[int] = None,
    ) -> None:
        key = (domain, record_name, record_type)
        self.set_calls.append((domain, record_name, record_type, value, ttl))
        if key in self.set_errors:
            raise self.set_errors[key]
        self.records[key] = value


class MemoryCredentialStore(CredentialStore):
    def __init__(self, credentials: Dict[str, Credential] | None = None):
        super().__init__("/nonexistent/credentials.yaml")
        self._credentials = dict(credentials or {})

    def get(self, provider: str) -> Optional[Credential]:
        return self._credentials.get(provider)


class StaticResolver(AddressResolver):
    """Resolver returning a scripted sequence of addresses, one per call."""

    def __init__(self, source: AddressSource, *addresses: Optional[str]):
        self._source = source
        self._addresses = list(addresses)
        self.calls = 0

    @property
    def source(self) -> AddressSource:
        return self._source

    def set(self, address: Optional[str]) -> None:
        self._addresses = [address]

    def resolve(self, should_stop: Optional[Callable[[], bool]] = None) -> Optional[ResolvedAddress]:
        self.calls += 1
        index = min(self.calls - 1, len(self._addresses) - 1)
        value = self._addresses[index] if self._addresses else None
        if value is None:
            return None
        return ResolvedAddress(
            address=ipaddress.ip_address(value), source=self._source, origin="static", obtained_at=0.0
        )


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Test Helpers
# =============================================================================


def make_entry(
    record_name: str = "@",
    provider: str = "mock",
    domain: str = "example.com",
    record_type: str = "A",
    source: AddressSource = AddressSource.EXTERNAL,
    ttl: Optional[int] = None,
) -> MonitoredEntry:
    return MonitoredEntry(
        provider=provider,
        domain=domain,
        record_name=record_name,
        record_type=record_type,
        ip_source=source,
        ttl=ttl,
    )


def resolved(value: str, source: AddressSource = AddressSource.EXTERNAL) -> ResolvedAddress:
    return ResolvedAddress(
        address=ipaddress.ip_address(value), source=source, origin="test", obtained_at=0.0
    )


@pytest.fixture
def dns() -> MockDNSProvider:
    return MockDNSProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache() -> StateCache:
    return StateCache()


@pytest.fixture
def reconciler(dns: MockDNSProvider, cache: StateCache, clock: FakeClock) -> Reconciler:
    return Reconciler(
        cache=cache,
        registry=ProviderRegistry({"mock": dns}),
        credentials=MemoryCredentialStore({"mock": Credential("key", "secret")}),
        clock=clock,
    )
