"""Configuration for ipdnsd.

Settings come from a YAML document (see ``EXAMPLE_CONFIG``). A handful of
runtime knobs are read from the environment:

    IPDNSD_CONFIG       Path to the YAML config (default: /etc/ipdnsd/config.yaml)
    IPDNSD_CREDENTIALS  Path to the credential store (default: /etc/ipdnsd/credentials.yaml)
    LOG_LEVEL           Overrides daemon.log_level when set
    ADGUARD_URL         AdGuard Home base URL for the "adguard" provider (default: http://adguard)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ipdnsd.errors import ConfigInvalid

logger = logging.getLogger(__name__)

# =============================================================================
# Environment
# =============================================================================

CONFIG_PATH = os.getenv("IPDNSD_CONFIG", "/etc/ipdnsd/config.yaml")
CREDENTIALS_PATH = os.getenv("IPDNSD_CREDENTIALS", "/etc/ipdnsd/credentials.yaml")
LOG_LEVEL = os.getenv("LOG_LEVEL", "")
ADGUARD_URL = os.getenv("ADGUARD_URL", "http://adguard")

DEFAULT_INTERVAL_SECONDS = 300
DEFAULT_VERIFY_INTERVAL_SECONDS = 3600
DEFAULT_EXTERNAL_SERVICES = (
    "https://api.ipify.org",
    "https://ifconfig.me/ip",
    "https://icanhazip.com",
    "https://ipinfo.io/ip",
    "https://checkip.amazonaws.com",
)

LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}
RECORD_TYPES = {"A", "AAAA"}

EXAMPLE_CONFIG = """\
daemon:
  interval_seconds: 300
  log_level: info

dns_entries:
  - provider: godaddy
    domain: example.com
    record_name: "@"
    record_type: A
    ip_source: external
"""

# =============================================================================
# Data Classes
# =============================================================================


def fqdn(domain: str, record_name: str) -> str:
    """Fully qualified name for a record; "@" is the zone apex."""
    if record_name in ("@", ""):
        return domain
    return f"{record_name}.{domain}"


class AddressSource(Enum):
    """Where an entry's address comes from."""

    EXTERNAL = "external"
    INTERNAL = "internal"


@dataclass(frozen=True)
class MonitoredEntry:
    """One DNS record kept in sync with an address source."""

    provider: str
    domain: str
    record_name: str
    record_type: str
    ip_source: AddressSource
    ttl: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.provider, self.domain, self.record_name, self.record_type)

    @property
    def fqdn(self) -> str:
        return fqdn(self.domain, self.record_name)

    def __str__(self) -> str:
        return f"{self.fqdn} ({self.record_type} via {self.provider})"


@dataclass(frozen=True)
class DaemonConfig:
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    log_level: str = "info"
    max_workers: int = 4
    provider_concurrency: int = 1
    verify_interval_seconds: Optional[int] = DEFAULT_VERIFY_INTERVAL_SECONDS


@dataclass(frozen=True)
class Settings:
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    dns_entries: Tuple[MonitoredEntry, ...] = ()
    external_services: Tuple[str, ...] = DEFAULT_EXTERNAL_SERVICES
    internal_family: int = 4

    @property
    def effective_log_level(self) -> str:
        return (LOG_LEVEL or self.daemon.log_level).upper()


# =============================================================================
# Parsing
# =============================================================================


def _positive_int(value: Any, name: str, errors: List[str], default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        errors.append(f"{name} must be a positive integer, got {value!r}")
        return default
    return value


def _parse_entry(index: int, item: Any, errors: List[str]) -> Optional[MonitoredEntry]:
    where = f"dns_entries[{index}]"
    if not isinstance(item, dict):
        errors.append(f"{where} must be a mapping")
        return None

    values: Dict[str, str] = {}
    for name in ("provider", "domain", "record_name", "record_type", "ip_source"):
        raw = item.get(name)
        if raw is None or not str(raw).strip():
            errors.append(f"{where}.{name} is required")
            continue
        values[name] = str(raw).strip()
    if len(values) < 5:
        return None

    record_type = values["record_type"].upper()
    if record_type not in RECORD_TYPES:
        errors.append(
            f"{where}.record_type must be one of {', '.join(sorted(RECORD_TYPES))}, "
            f"got {values['record_type']!r}"
        )
        return None

    try:
        source = AddressSource(values["ip_source"].lower())
    except ValueError:
        errors.append(f"{where}.ip_source must be 'external' or 'internal'")
        return None

    ttl = item.get("ttl")
    if ttl is not None and (isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0):
        errors.append(f"{where}.ttl must be a positive integer")
        return None

    return MonitoredEntry(
        provider=values["provider"].lower(),
        domain=values["domain"].lower().rstrip("."),
        record_name=values["record_name"].lower(),
        record_type=record_type,
        ip_source=source,
        ttl=ttl,
    )


def _family_problem(entry: MonitoredEntry, internal_family: int) -> str:
    """Explain why an entry's source can never produce an address for its record type."""
    wanted = 6 if entry.record_type == "AAAA" else 4
    if entry.ip_source == AddressSource.EXTERNAL and wanted != 4:
        return "uses ip_source 'external', which only yields IPv4 addresses; use record_type A"
    if entry.ip_source == AddressSource.INTERNAL and wanted != internal_family:
        return (
            f"is a {entry.record_type} record but internal_family is ipv{internal_family}"
        )
    return ""


def parse_settings(data: Any) -> Settings:
    """Build Settings from an already-decoded YAML document.

    Raises ConfigInvalid listing every problem found.
    """
    if not isinstance(data, dict):
        raise ConfigInvalid("Configuration must be a mapping", ["top level is not a mapping"])

    errors: List[str] = []

    daemon_raw = data.get("daemon") or {}
    if not isinstance(daemon_raw, dict):
        errors.append("daemon must be a mapping")
        daemon_raw = {}

    log_level = str(daemon_raw.get("log_level") or "info").strip().lower()
    if log_level not in LOG_LEVELS:
        errors.append(f"daemon.log_level must be one of {', '.join(sorted(LOG_LEVELS))}")
        log_level = "info"

    verify_interval: Optional[int] = DEFAULT_VERIFY_INTERVAL_SECONDS
    if "verify_interval_seconds" in daemon_raw:
        raw_verify = daemon_raw["verify_interval_seconds"]
        verify_interval = (
            None
            if raw_verify is None
            else _positive_int(
                raw_verify, "daemon.verify_interval_seconds", errors, DEFAULT_VERIFY_INTERVAL_SECONDS
            )
        )

    daemon = DaemonConfig(
        interval_seconds=_positive_int(
            daemon_raw.get("interval_seconds"),
            "daemon.interval_seconds",
            errors,
            DEFAULT_INTERVAL_SECONDS,
        ),
        log_level=log_level,
        max_workers=_positive_int(daemon_raw.get("max_workers"), "daemon.max_workers", errors, 4),
        provider_concurrency=_positive_int(
            daemon_raw.get("provider_concurrency"), "daemon.provider_concurrency", errors, 1
        ),
        verify_interval_seconds=verify_interval,
    )

    services = data.get("external_services")
    if services is None:
        external_services: Tuple[str, ...] = DEFAULT_EXTERNAL_SERVICES
    elif isinstance(services, list) and services and all(
        isinstance(s, str) and s.strip() for s in services
    ):
        external_services = tuple(s.strip() for s in services)
    else:
        errors.append("external_services must be a non-empty list of URLs")
        external_services = DEFAULT_EXTERNAL_SERVICES

    family_raw = str(data.get("internal_family") or "ipv4").strip().lower()
    if family_raw not in ("ipv4", "ipv6"):
        errors.append("internal_family must be 'ipv4' or 'ipv6'")
    internal_family = 6 if family_raw == "ipv6" else 4

    raw_entries = data.get("dns_entries")
    entries: List[MonitoredEntry] = []
    if not isinstance(raw_entries, list) or not raw_entries:
        errors.append("dns_entries must be a non-empty list")
    else:
        seen = set()
        for index, item in enumerate(raw_entries):
            entry = _parse_entry(index, item, errors)
            if entry is None:
                continue
            problem = _family_problem(entry, internal_family)
            if problem:
                errors.append(f"dns_entries[{index}] {problem}")
                continue
            if entry.key in seen:
                errors.append(f"dns_entries[{index}] duplicates an earlier entry for {entry}")
                continue
            seen.add(entry.key)
            entries.append(entry)

    if errors:
        raise ConfigInvalid("Invalid configuration: " + "; ".join(errors), errors)

    return Settings(
        daemon=daemon,
        dns_entries=tuple(entries),
        external_services=external_services,
        internal_family=internal_family,
    )


def load_settings(path: str = "") -> Settings:
    """Read and validate the YAML config file."""
    config_path = Path(path or CONFIG_PATH)
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigInvalid(
            f"Configuration file not found: {config_path}", [f"{config_path} does not exist"]
        )
    except (OSError, yaml.YAMLError) as e:
        raise ConfigInvalid(f"Failed to read config from {config_path}: {e}", [str(e)])

    settings = parse_settings(data)
    logger.debug(f"Loaded {len(settings.dns_entries)} DNS entries from {config_path}")
    return settings
