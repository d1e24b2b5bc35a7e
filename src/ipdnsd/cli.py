#!/usr/bin/env python3
"""ipdnsd - keep DNS records pointed at this host's current addresses

Periodically resolves the host's external (public) and internal (LAN) address
and updates DNS records at a provider when the address changes.

Supported DNS Providers:
    - godaddy: GoDaddy Domains API (credential: API key + secret)
    - adguard: AdGuard Home DNS rewrites (credential: admin username + password)

Commands:
    ipdnsd daemon [--once]     Run the sync loop (or a single tick)
    ipdnsd check               Show current addresses and DNS values, change nothing
    ipdnsd set-key PROVIDER    Store API credentials for a provider
    ipdnsd delete-key PROVIDER Delete stored credentials for a provider
    ipdnsd config              Show config file location and contents

Environment variables:
    IPDNSD_CONFIG       YAML config path (default: /etc/ipdnsd/config.yaml)
    IPDNSD_CREDENTIALS  Credential store path (default: /etc/ipdnsd/credentials.yaml)
    LOG_LEVEL           DEBUG, INFO, WARNING, ERROR (overrides daemon.log_level)
    ADGUARD_URL         AdGuard Home base URL (default: http://adguard)
"""

from __future__ import annotations

import argparse
import getpass
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from ipdnsd import config
from ipdnsd.cache import StateCache
from ipdnsd.config import AddressSource, Settings, load_settings
from ipdnsd.credentials import Credential, CredentialStore
from ipdnsd.daemon import EntryStatus, Scheduler, inspect, resolve_sources
from ipdnsd.errors import ConfigInvalid, CredentialStoreError
from ipdnsd.providers import ProviderRegistry
from ipdnsd.reconciler import Reconciler
from ipdnsd.resolvers import AddressResolver, ExternalAddressResolver, InternalAddressResolver

logger = logging.getLogger("ipdnsd")

MIN_INTERVAL_SECONDS = 5

# =============================================================================
# Logging Setup
# =============================================================================


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# =============================================================================
# Wiring
# =============================================================================


def build_resolvers(settings: Settings) -> Dict[AddressSource, AddressResolver]:
    return {
        AddressSource.EXTERNAL: ExternalAddressResolver(settings.external_services),
        AddressSource.INTERNAL: InternalAddressResolver(family=settings.internal_family),
    }


def build_scheduler(settings: Settings, credentials: CredentialStore) -> Scheduler:
    registry = ProviderRegistry.from_entries(settings.dns_entries)
    for provider in sorted({e.provider for e in settings.dns_entries}):
        if provider in registry and credentials.get(provider) is None:
            logger.warning(
                f"No credentials for provider '{provider}'. "
                f"Use 'ipdnsd set-key {provider}' to store them."
            )
    reconciler = Reconciler(
        cache=StateCache(),
        registry=registry,
        credentials=credentials,
        verify_interval=settings.daemon.verify_interval_seconds,
    )
    return Scheduler(
        entries=settings.dns_entries,
        resolvers=build_resolvers(settings),
        reconciler=reconciler,
        interval_seconds=max(MIN_INTERVAL_SECONDS, settings.daemon.interval_seconds),
        max_workers=settings.daemon.max_workers,
        provider_concurrency=settings.daemon.provider_concurrency,
    )


# =============================================================================
# Commands
# =============================================================================


def cmd_daemon(settings: Settings, credentials: CredentialStore, once: bool = False) -> int:
    scheduler = build_scheduler(settings, credentials)

    if once:
        scheduler.run_once()
        return 0

    def _handle_signal(signum, _frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down gracefully...")
        scheduler.stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)
    scheduler.run()
    return 0


def format_status(status: EntryStatus) -> str:
    entry = status.entry
    resolved = str(status.resolved.address) if status.resolved else "unavailable"
    if status.error is not None:
        stored = f"Error - {status.error.kind}: {status.error}"
    else:
        stored = status.stored or "<absent>"
    marker = "ok" if status.in_sync else "differs"
    if status.error is not None or status.resolved is None:
        marker = "?"
    return (
        f"{entry.fqdn} ({entry.record_type}, {entry.provider}): "
        f"{entry.ip_source.value} {resolved} / dns {stored} [{marker}]"
    )


def cmd_check(settings: Optional[Settings], credentials: CredentialStore) -> int:
    print("Checking IP addresses...\n")
    defaults = settings or Settings()
    resolvers = build_resolvers(defaults)
    addresses = resolve_sources(resolvers, list(resolvers))
    for source, resolved in addresses.items():
        label = source.value.capitalize()
        print(f"{label} IP: {resolved.address if resolved else 'Error - no address found'}")

    if settings is None:
        print("\nNo configuration file found. DNS records not checked.")
        return 0

    print("\nChecking DNS records...\n")
    registry = ProviderRegistry.from_entries(settings.dns_entries)
    for status in inspect(settings.dns_entries, resolvers, registry, credentials, addresses):
        print(format_status(status))
    return 0


def cmd_set_key(provider: str, credentials: CredentialStore) -> int:
    api_key = input("API Key: ").strip()
    api_secret = getpass.getpass("API Secret: ")
    if not api_key or not api_secret:
        print("API key and secret are both required", file=sys.stderr)
        return 1
    try:
        credentials.store(provider.lower(), Credential(api_key=api_key, api_secret=api_secret))
    except CredentialStoreError as e:
        print(f"{e}. Fix or remove the file and try again.", file=sys.stderr)
        return 1
    print(f"Credentials stored for provider: {provider}")
    return 0


def cmd_delete_key(provider: str, credentials: CredentialStore) -> int:
    try:
        deleted = credentials.delete(provider.lower())
    except CredentialStoreError as e:
        print(f"{e}. Fix or remove the file and try again.", file=sys.stderr)
        return 1
    if not deleted:
        print(f"No credentials found for provider: {provider}", file=sys.stderr)
        return 1
    print(f"Credentials deleted for provider: {provider}")
    return 0


def cmd_config(config_path: str, settings: Optional[Settings], error: Optional[ConfigInvalid]) -> int:
    print(f"Configuration file location: {config_path}\n")
    if settings is not None:
        print("Current configuration:\n")
        print(Path(config_path).read_text("utf-8"))
        return 0
    if error is not None and Path(config_path).exists():
        print("Configuration is invalid:")
        for problem in error.problems or [str(error)]:
            print(f"  - {problem}")
        return 1
    print("Configuration file not found.")
    print("\nCreate a configuration file at the location above.")
    print("Example configuration:\n")
    print(config.EXAMPLE_CONFIG)
    return 0


# =============================================================================
# Main
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ipdnsd",
        description="IP to DNS Updater - monitors IP addresses and updates DNS records",
    )
    parser.add_argument("--config", default=config.CONFIG_PATH, help="Path to config.yaml")
    parser.add_argument(
        "--credentials", default=config.CREDENTIALS_PATH, help="Path to credentials.yaml"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    daemon = sub.add_parser("daemon", help="Monitor IP changes and update DNS")
    daemon.add_argument("--once", action="store_true", help="Run a single sync and exit")
    sub.add_parser("check", help="Check current IPs and DNS records")
    set_key = sub.add_parser("set-key", help="Store API credentials for a DNS provider")
    set_key.add_argument("provider", help="DNS provider name (e.g. godaddy)")
    delete_key = sub.add_parser("delete-key", help="Delete stored API credentials")
    delete_key.add_argument("provider", help="DNS provider name (e.g. godaddy)")
    sub.add_parser("config", help="Show configuration file location and contents")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    settings: Optional[Settings] = None
    error: Optional[ConfigInvalid] = None
    try:
        settings = load_settings(args.config)
    except ConfigInvalid as e:
        error = e

    setup_logging(settings.effective_log_level if settings else (config.LOG_LEVEL or "INFO"))
    credentials = CredentialStore(args.credentials)

    try:
        if args.command == "daemon":
            if settings is None:
                logger.error(f"Configuration validation failed: {error}")
                sys.exit(1)
            logger.info("Starting ipdnsd daemon")
            sys.exit(cmd_daemon(settings, credentials, once=args.once))
        if args.command == "check":
            if error is not None and Path(args.config).exists():
                logger.error(f"Configuration validation failed: {error}")
                sys.exit(1)
            sys.exit(cmd_check(settings, credentials))
        if args.command == "set-key":
            sys.exit(cmd_set_key(args.provider, credentials))
        if args.command == "delete-key":
            sys.exit(cmd_delete_key(args.provider, credentials))
        if args.command == "config":
            sys.exit(cmd_config(args.config, settings, error))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
