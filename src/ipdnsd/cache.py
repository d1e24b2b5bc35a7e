"""In-memory record of the last address confirmed for each entry."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from ipdnsd.resolvers import IPAddress

EntryKey = Tuple[str, str, str, str]


@dataclass(frozen=True)
class CacheSlot:
    confirmed_address: Optional[IPAddress] = None
    last_check: Optional[float] = None
    last_update: Optional[float] = None
    last_verified: Optional[float] = None

    @property
    def confirmed(self) -> bool:
        return self.confirmed_address is not None


class StateCache:
    """Slots keyed by (provider, domain, record name, record type).

    Slots are immutable and replaced whole under a lock, so readers never see
    a half-applied update. Nothing is persisted; a restart starts unconfirmed.
    """

    def __init__(self) -> None:
        self._slots: Dict[EntryKey, CacheSlot] = {}
        self._lock = threading.Lock()

    def get(self, key: EntryKey) -> CacheSlot:
        with self._lock:
            return self._slots.get(key, CacheSlot())

    def mark_checked(self, key: EntryKey, now: float) -> CacheSlot:
        with self._lock:
            slot = replace(self._slots.get(key, CacheSlot()), last_check=now)
            self._slots[key] = slot
            return slot

    def confirm(self, key: EntryKey, address: IPAddress, now: float) -> CacheSlot:
        """Record that DNS holds `address`, after a matching read or a successful write."""
        with self._lock:
            slot = replace(
                self._slots.get(key, CacheSlot()),
                confirmed_address=address,
                last_check=now,
                last_update=now,
                last_verified=now,
            )
            self._slots[key] = slot
            return slot

    def snapshot(self) -> Dict[EntryKey, CacheSlot]:
        with self._lock:
            return dict(self._slots)

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
