"""Per-entry reconciliation: decide whether DNS needs to change and apply it."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ipdnsd.cache import CacheSlot, StateCache
from ipdnsd.config import DEFAULT_VERIFY_INTERVAL_SECONDS, MonitoredEntry
from ipdnsd.credentials import CredentialStore
from ipdnsd.errors import (
    CredentialMissing,
    DNSSyncError,
    ProviderTransientFailure,
    ResolutionUnavailable,
)
from ipdnsd.providers import ProviderRegistry
from ipdnsd.resolvers import IPAddress, ResolvedAddress, parse_address

logger = logging.getLogger(__name__)


class Outcome(Enum):
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    SKIPPED_NO_RESOLUTION = "skipped-no-resolution"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of one entry's cycle. Only logged, never persisted."""

    entry: MonitoredEntry
    outcome: Outcome
    address: Optional[IPAddress] = None
    previous: Optional[str] = None
    error: Optional[DNSSyncError] = None  # set when failed or skipped

    @property
    def reason(self) -> str:
        if self.error is None:
            return ""
        return f"{self.error.kind}: {self.error}"


def _family_matches(address: IPAddress, record_type: str) -> bool:
    if record_type == "AAAA":
        return address.version == 6
    if record_type == "A":
        return address.version == 4
    return True


class Reconciler:
    """Compares a resolved address with the cache and the provider.

    The provider is consulted when the address differs from the cached one,
    when the slot was never confirmed, or when the last verification is older
    than `verify_interval` (drift check). The cache only changes after a
    matching read or a successful write.
    """

    def __init__(
        self,
        *,
        cache: StateCache,
        registry: ProviderRegistry,
        credentials: CredentialStore,
        verify_interval: Optional[float] = DEFAULT_VERIFY_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.registry = registry
        self.credentials = credentials
        self.verify_interval = verify_interval
        self._clock = clock

    def _needs_provider_check(self, slot: CacheSlot, address: IPAddress, now: float) -> bool:
        if not slot.confirmed or slot.confirmed_address != address:
            return True
        if self.verify_interval is None or slot.last_verified is None:
            return False
        return now - slot.last_verified >= self.verify_interval

    def reconcile(
        self, entry: MonitoredEntry, resolved: Optional[ResolvedAddress]
    ) -> ReconciliationResult:
        if resolved is None:
            error = ResolutionUnavailable(f"no {entry.ip_source.value} address this tick")
            return ReconciliationResult(
                entry=entry, outcome=Outcome.SKIPPED_NO_RESOLUTION, error=error
            )

        address = resolved.address
        if not _family_matches(address, entry.record_type):
            error = ResolutionUnavailable(
                f"{entry.ip_source.value} address {address} does not fit a {entry.record_type} record"
            )
            return ReconciliationResult(
                entry=entry, outcome=Outcome.SKIPPED_NO_RESOLUTION, address=address, error=error
            )

        key = entry.key
        now = self._clock()
        slot = self.cache.get(key)

        if not self._needs_provider_check(slot, address, now):
            self.cache.mark_checked(key, now)
            return ReconciliationResult(entry=entry, outcome=Outcome.UNCHANGED, address=address)

        try:
            return self._sync(entry, address)
        except DNSSyncError as e:
            return ReconciliationResult(
                entry=entry, outcome=Outcome.FAILED, address=address, error=e
            )

    def _sync(self, entry: MonitoredEntry, address: IPAddress) -> ReconciliationResult:
        provider = self.registry.get(entry.provider)
        credential = self.credentials.get(entry.provider)
        if credential is None:
            raise CredentialMissing(
                f"No credentials stored for provider '{entry.provider}'", provider=entry.provider
            )

        current = provider.get_record(credential, entry.domain, entry.record_name, entry.record_type)
        key = entry.key

        if current is not None and parse_address(current.value) == address:
            self.cache.confirm(key, address, self._clock())
            logger.debug(f"{entry}: provider already holds {address}")
            return ReconciliationResult(
                entry=entry, outcome=Outcome.UNCHANGED, address=address, previous=current.value
            )

        ttl = entry.ttl if entry.ttl is not None else (current.ttl if current else None)
        previous = current.value if current is not None else None
        logger.info(f"Updating {entry} from {previous or '<absent>'} to {address}")
        provider.set_record(
            credential, entry.domain, entry.record_name, entry.record_type, str(address), ttl
        )
        self.cache.confirm(key, address, self._clock())
        return ReconciliationResult(
            entry=entry, outcome=Outcome.UPDATED, address=address, previous=previous
        )


def log_result(result: ReconciliationResult) -> None:
    """Report one entry's outcome at a level matching its severity."""
    entry = result.entry
    if result.outcome == Outcome.UPDATED:
        logger.info(f"Updated {entry}: {result.previous or '<absent>'} -> {result.address}")
    elif result.outcome == Outcome.UNCHANGED:
        logger.debug(f"{entry} unchanged at {result.address}")
    elif result.outcome == Outcome.SKIPPED_NO_RESOLUTION:
        logger.warning(f"Skipping {entry}: {result.error or 'no address'}")
    elif isinstance(result.error, ProviderTransientFailure):
        logger.warning(f"Failed to update {entry} ({result.reason}); will retry next tick")
    else:
        logger.error(f"Failed to update {entry} ({result.reason})")
