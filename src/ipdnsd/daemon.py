"""Daemon loop: resolve addresses, reconcile every entry, sleep, repeat."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from ipdnsd.config import AddressSource, MonitoredEntry
from ipdnsd.credentials import CredentialStore
from ipdnsd.errors import CredentialMissing, DNSSyncError, ProviderTransientFailure
from ipdnsd.providers import ProviderRegistry
from ipdnsd.reconciler import Outcome, ReconciliationResult, Reconciler, log_result
from ipdnsd.resolvers import AddressResolver, ResolvedAddress

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    RECONCILING = "reconciling"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


def resolve_sources(
    resolvers: Dict[AddressSource, AddressResolver],
    sources: Sequence[AddressSource],
    stop_event: Optional[threading.Event] = None,
) -> Dict[AddressSource, Optional[ResolvedAddress]]:
    """Resolve each requested source once, concurrently.

    A resolver that raises or is missing counts as no resolution for its
    source and does not affect the others.
    """
    wanted = list(dict.fromkeys(sources))
    results: Dict[AddressSource, Optional[ResolvedAddress]] = {s: None for s in wanted}
    available = [s for s in wanted if s in resolvers]
    for source in wanted:
        if source not in resolvers:
            logger.error(f"No resolver configured for {source.value} addresses")
    if not available:
        return results

    should_stop = stop_event.is_set if stop_event is not None else None
    with ThreadPoolExecutor(max_workers=len(available), thread_name_prefix="resolve") as pool:
        futures = {s: pool.submit(resolvers[s].resolve, should_stop) for s in available}
        for source, future in futures.items():
            try:
                results[source] = future.result()
            except Exception as e:
                logger.error(f"Failed to resolve {source.value} address: {e}", exc_info=True)
    return results


class Scheduler:
    """Drives reconciliation ticks until stopped.

    Entries run on a bounded thread pool. Entries sharing a provider are
    limited to `provider_concurrency` calls at a time. Each entry is
    reconciled at most once per tick and ticks never overlap.
    """

    def __init__(
        self,
        *,
        entries: Sequence[MonitoredEntry],
        resolvers: Dict[AddressSource, AddressResolver],
        reconciler: Reconciler,
        interval_seconds: float,
        max_workers: int = 4,
        provider_concurrency: int = 1,
        stop_event: Optional[threading.Event] = None,
    ):
        self.entries = list(entries)
        self.resolvers = resolvers
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.max_workers = max(1, max_workers)
        self._stop_event = stop_event or threading.Event()
        self._provider_slots: Dict[str, threading.BoundedSemaphore] = {
            entry.provider: threading.BoundedSemaphore(max(1, provider_concurrency))
            for entry in self.entries
        }
        self.state = SchedulerState.IDLE
        self.ticks = 0

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown. Interrupts the sleep and skips entries not yet started."""
        self._stop_event.set()

    def close(self) -> None:
        """Release resolver and provider HTTP connections."""
        for resolver in self.resolvers.values():
            resolver.close()
        self.reconciler.registry.close()

    def _reconcile_entry(
        self, entry: MonitoredEntry, resolved: Optional[ResolvedAddress]
    ) -> Optional[ReconciliationResult]:
        if self._stop_event.is_set():
            logger.debug(f"Shutdown requested, not reconciling {entry}")
            return None
        with self._provider_slots[entry.provider]:
            try:
                return self.reconciler.reconcile(entry, resolved)
            except Exception as e:
                logger.error(f"Unexpected error reconciling {entry}: {e}", exc_info=True)
                error = DNSSyncError(str(e), provider=entry.provider)
                return ReconciliationResult(
                    entry=entry,
                    outcome=Outcome.FAILED,
                    address=resolved.address if resolved else None,
                    error=error,
                )

    def run_once(self) -> List[ReconciliationResult]:
        """Run a single tick and return the results in configuration order."""
        self.ticks += 1
        self.state = SchedulerState.RESOLVING
        addresses = resolve_sources(
            self.resolvers, [e.ip_source for e in self.entries], self._stop_event
        )

        self.state = SchedulerState.RECONCILING
        results: List[ReconciliationResult] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reconcile") as pool:
            futures = [
                pool.submit(self._reconcile_entry, entry, addresses.get(entry.ip_source))
                for entry in self.entries
            ]
            for future in futures:
                result = future.result()
                if result is None:
                    continue
                log_result(result)
                results.append(result)

        counts: Dict[str, int] = {}
        for result in results:
            counts[result.outcome.value] = counts.get(result.outcome.value, 0) + 1
        summary = ", ".join(f"{n} {name}" for name, n in sorted(counts.items())) or "nothing done"
        logger.info(f"Tick {self.ticks}: {summary}")
        return results

    def run(self) -> None:
        """Tick every `interval_seconds` until stop() is called."""
        logger.info(
            f"Daemon started. Monitoring {len(self.entries)} DNS entries "
            f"with {self.interval_seconds:g} second interval"
        )
        try:
            while not self._stop_event.is_set():
                self.run_once()
                if self._stop_event.is_set():
                    break
                self.state = SchedulerState.SLEEPING
                if self._stop_event.wait(self.interval_seconds):
                    break
        finally:
            self.state = SchedulerState.STOPPED
            self.close()
            logger.info("Daemon stopped")


# =============================================================================
# One-shot Inspection
# =============================================================================


@dataclass(frozen=True)
class EntryStatus:
    """Resolved address and provider value for one entry, for display."""

    entry: MonitoredEntry
    resolved: Optional[ResolvedAddress]
    stored: Optional[str]
    error: Optional[DNSSyncError] = None

    @property
    def in_sync(self) -> bool:
        return self.resolved is not None and self.stored == str(self.resolved.address)


def inspect(
    entries: Sequence[MonitoredEntry],
    resolvers: Dict[AddressSource, AddressResolver],
    registry: ProviderRegistry,
    credentials: CredentialStore,
    addresses: Optional[Dict[AddressSource, Optional[ResolvedAddress]]] = None,
) -> List[EntryStatus]:
    """Report current addresses and provider values. Never writes or caches.

    Sources already present in `addresses` are not resolved again.
    """
    known = dict(addresses or {})
    missing = [e.ip_source for e in entries if e.ip_source not in known]
    if missing:
        known.update(resolve_sources(resolvers, missing))
    addresses = known
    statuses: List[EntryStatus] = []
    for entry in entries:
        resolved = addresses.get(entry.ip_source)
        try:
            provider = registry.get(entry.provider)
            credential = credentials.get(entry.provider)
            if credential is None:
                raise CredentialMissing(
                    f"No credentials stored for provider '{entry.provider}'",
                    provider=entry.provider,
                )
            record = provider.get_record(
                credential, entry.domain, entry.record_name, entry.record_type
            )
        except DNSSyncError as e:
            level = logging.WARNING if isinstance(e, ProviderTransientFailure) else logging.ERROR
            logger.log(level, f"Could not read {entry}: {e}")
            statuses.append(EntryStatus(entry=entry, resolved=resolved, stored=None, error=e))
            continue
        statuses.append(
            EntryStatus(entry=entry, resolved=resolved, stored=record.value if record else None)
        )
    return statuses
