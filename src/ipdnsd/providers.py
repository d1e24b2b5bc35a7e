"""DNS provider clients.

Each provider exposes the same two operations, ``get_record`` and
``set_record``, and maps its API's failures onto the shared error taxonomy:

    401 / 403                         -> CredentialInvalid
    429, 5xx, timeouts, bad payloads  -> ProviderTransientFailure
    any other 4xx                     -> ProviderPermanentFailure

Supported providers:
    - godaddy: GoDaddy Domains API v1
    - adguard: AdGuard Home DNS rewrites
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

import requests
from requests.auth import HTTPBasicAuth

from ipdnsd import config
from ipdnsd.config import MonitoredEntry, fqdn
from ipdnsd.credentials import Credential
from ipdnsd.errors import (
    ConfigInvalid,
    CredentialInvalid,
    ProviderPermanentFailure,
    ProviderTransientFailure,
)
from ipdnsd.resolvers import parse_address

logger = logging.getLogger(__name__)

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class DNSRecord:
    """A record value as reported by a provider."""

    value: str
    ttl: Optional[int] = None


# =============================================================================
# DNS Provider Interface
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for DNS providers.

    Credentials are passed on every call and never kept on the instance.
    """

    _session: Optional[requests.Session] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def get_record(
        self, credential: Credential, domain: str, record_name: str, record_type: str
    ) -> Optional[DNSRecord]:
        """Return the current record, or None if it does not exist."""
        pass

    @abstractmethod
    def set_record(
        self,
        credential: Credential,
        domain: str,
        record_name: str,
        record_type: str,
        value: str,
        ttl: Optional[int] = None,
    ) -> None:
        """Create or replace the record. Raises a DNSSyncError on failure."""
        pass

    def close(self) -> None:
        """Release pooled HTTP connections."""
        if self._session is not None:
            self._session.close()

    def _check_response(self, response: requests.Response, action: str) -> None:
        status = response.status_code
        if status < 400:
            return
        body = (response.text or "")[:200]
        message = f"{self.name} {action} failed ({status}): {body}"
        if status in (401, 403):
            raise CredentialInvalid(message, provider=self.name)
        if status == 429 or status >= 500:
            raise ProviderTransientFailure(message, provider=self.name, status_code=status)
        raise ProviderPermanentFailure(message, provider=self.name, status_code=status)

    def _send(self, method: str, url: str, action: str, **kwargs) -> requests.Response:
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            raise ProviderTransientFailure(f"{self.name} {action} failed: {e}", provider=self.name)
        self._check_response(response, action)
        return response

    def _json(self, response: requests.Response, action: str):
        try:
            return response.json()
        except (ValueError, json.JSONDecodeError) as e:
            raise ProviderTransientFailure(
                f"{self.name} {action} returned invalid JSON: {e}", provider=self.name
            )


# =============================================================================
# GoDaddy
# =============================================================================


class GoDaddyDNSProvider(DNSProvider):
    """GoDaddy Domains API provider."""

    API_BASE = "https://api.godaddy.com/v1"
    DEFAULT_TTL = 600

    def __init__(self, api_base: str = API_BASE, timeout_seconds: float = 15.0):
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout_seconds
        self._session = requests.Session()

    @property
    def name(self) -> str:
        return "godaddy"

    @staticmethod
    def _auth_header(credential: Credential) -> Dict[str, str]:
        return {"Authorization": f"sso-key {credential.api_key}:{credential.api_secret}"}

    def _record_url(self, domain: str, record_name: str, record_type: str) -> str:
        return f"{self._api_base}/domains/{domain}/records/{record_type}/{record_name}"

    def get_record(
        self, credential: Credential, domain: str, record_name: str, record_type: str
    ) -> Optional[DNSRecord]:
        action = f"lookup of {record_type} {fqdn(domain, record_name)}"
        response = self._send(
            "GET",
            self._record_url(domain, record_name, record_type),
            action,
            headers=self._auth_header(credential),
            timeout=self._timeout,
        )
        data = self._json(response, action)
        if not isinstance(data, list):
            raise ProviderTransientFailure(
                f"{self.name} {action}: expected list, got {type(data).__name__}",
                provider=self.name,
            )
        for item in data:
            if isinstance(item, dict) and isinstance(item.get("data"), str):
                ttl = item.get("ttl")
                return DNSRecord(value=item["data"], ttl=ttl if isinstance(ttl, int) else None)
        return None

    def set_record(
        self,
        credential: Credential,
        domain: str,
        record_name: str,
        record_type: str,
        value: str,
        ttl: Optional[int] = None,
    ) -> None:
        payload = [{"data": value, "ttl": ttl or self.DEFAULT_TTL}]
        headers = self._auth_header(credential)
        headers["Content-Type"] = "application/json"
        self._send(
            "PUT",
            self._record_url(domain, record_name, record_type),
            f"update of {record_type} {fqdn(domain, record_name)}",
            headers=headers,
            json=payload,
            timeout=self._timeout,
        )
        logger.debug(f"{self.name}: set {record_type} {fqdn(domain, record_name)} -> {value}")


# =============================================================================
# AdGuard Home
# =============================================================================


class AdGuardDNSProvider(DNSProvider):
    """AdGuard Home DNS rewrites provider.

    The credential's key/secret are the admin username/password. Rewrites
    have no TTL, so any TTL passed to set_record is ignored.
    """

    def __init__(self, url: str, timeout_seconds: float = 5.0):
        self._url = url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = requests.Session()

    @property
    def name(self) -> str:
        return "adguard"

    @staticmethod
    def _matches_type(answer: str, record_type: str) -> bool:
        address = parse_address(answer)
        if address is None:
            return False
        return address.version == (6 if record_type == "AAAA" else 4)

    def _list_answers(self, credential: Credential, domain: str, record_type: str) -> List[str]:
        action = f"rewrite list for {domain}"
        response = self._send(
            "GET",
            f"{self._url}/control/rewrite/list",
            action,
            auth=HTTPBasicAuth(credential.api_key, credential.api_secret),
            timeout=self._timeout,
        )
        data = self._json(response, action)
        if not isinstance(data, list):
            raise ProviderTransientFailure(
                f"{self.name} {action}: expected list, got {type(data).__name__}",
                provider=self.name,
            )
        answers = []
        for r in data:
            if not isinstance(r, dict):
                logger.warning(f"Skipping malformed rewrite: {r}")
                continue
            if r.get("domain") != domain or not isinstance(r.get("answer"), str):
                continue
            if self._matches_type(r["answer"], record_type):
                answers.append(r["answer"])
        return answers

    def _post(self, credential: Credential, path: str, domain: str, answer: str, action: str) -> None:
        self._send(
            "POST",
            f"{self._url}/control/rewrite/{path}",
            action,
            json={"domain": domain, "answer": answer},
            auth=HTTPBasicAuth(credential.api_key, credential.api_secret),
            timeout=self._timeout,
        )

    def get_record(
        self, credential: Credential, domain: str, record_name: str, record_type: str
    ) -> Optional[DNSRecord]:
        answers = self._list_answers(credential, fqdn(domain, record_name), record_type)
        if len(answers) > 1:
            logger.warning(
                f"Found {len(answers)} {record_type} rewrites for {fqdn(domain, record_name)}, "
                f"reporting '{answers[0]}'"
            )
        return DNSRecord(value=answers[0]) if answers else None

    def set_record(
        self,
        credential: Credential,
        domain: str,
        record_name: str,
        record_type: str,
        value: str,
        ttl: Optional[int] = None,
    ) -> None:
        name = fqdn(domain, record_name)
        existing = self._list_answers(credential, name, record_type)
        if existing == [value]:
            return
        for old_answer in existing:
            if old_answer == value:
                continue
            self._post(credential, "delete", name, old_answer, f"delete of rewrite {name}")
            logger.debug(f"Deleted rewrite: {name} -> {old_answer}")
        if value not in existing:
            self._post(credential, "add", name, value, f"add of rewrite {name}")
        logger.debug(f"{self.name}: set {record_type} {name} -> {value}")


# =============================================================================
# Provider Registry
# =============================================================================

PROVIDER_FACTORIES: Dict[str, Callable[[], DNSProvider]] = {
    "godaddy": GoDaddyDNSProvider,
    "adguard": lambda: AdGuardDNSProvider(config.ADGUARD_URL),
}


def create_dns_provider(name: str) -> DNSProvider:
    """Factory function to create a DNS provider by identifier."""
    factory = PROVIDER_FACTORIES.get(name.lower().strip())
    if factory is None:
        raise ConfigInvalid(
            f"Unsupported DNS provider: '{name}'. "
            f"Supported providers: {', '.join(sorted(PROVIDER_FACTORIES))}"
        )
    return factory()


class ProviderRegistry:
    """Provider clients by identifier, built once at startup."""

    def __init__(self, providers: Optional[Dict[str, DNSProvider]] = None):
        self._providers: Dict[str, DNSProvider] = dict(providers or {})

    @classmethod
    def from_entries(cls, entries: Iterable[MonitoredEntry]) -> "ProviderRegistry":
        providers: Dict[str, DNSProvider] = {}
        for entry in entries:
            if entry.provider in providers:
                continue
            try:
                providers[entry.provider] = create_dns_provider(entry.provider)
            except ConfigInvalid as e:
                logger.error(str(e))
        return cls(providers)

    def get(self, name: str) -> DNSProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise ConfigInvalid(f"No DNS provider available for '{name}'")
        return provider

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def close(self) -> None:
        for provider in self._providers.values():
            provider.close()
