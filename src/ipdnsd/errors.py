"""Error taxonomy shared by resolvers, providers and the reconciler.

Every failure a single entry can hit maps to one of these classes so the
reconciler can apply one policy regardless of which provider raised it.
"""

from __future__ import annotations

from typing import List, Optional


class DNSSyncError(Exception):
    """Base class for all errors raised by ipdnsd."""

    kind = "error"

    def __init__(self, message: str = "", provider: str = ""):
        super().__init__(message)
        self.provider = provider


class ResolutionUnavailable(DNSSyncError):
    """No address source produced a usable address this tick."""

    kind = "resolution-unavailable"


class CredentialMissing(DNSSyncError):
    """No credential is on file for a provider."""

    kind = "credential-missing"


class CredentialInvalid(DNSSyncError):
    """The provider rejected the stored credential."""

    kind = "credential-invalid"


class ProviderError(DNSSyncError):
    """A provider API call failed."""

    kind = "provider-error"

    def __init__(self, message: str = "", provider: str = "", status_code: Optional[int] = None):
        super().__init__(message, provider)
        self.status_code = status_code


class ProviderTransientFailure(ProviderError):
    """Rate limiting, timeouts and 5xx responses. Retried on the next tick."""

    kind = "transient"


class ProviderPermanentFailure(ProviderError):
    """Malformed request, unknown domain/record. Needs a configuration fix."""

    kind = "permanent"


class ConfigInvalid(DNSSyncError):
    """Configuration is malformed or an entry cannot be acted on."""

    kind = "config-invalid"

    def __init__(self, message: str = "", problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = list(problems or [])


class CredentialStoreError(DNSSyncError):
    """The credential file exists but cannot be read or parsed."""

    kind = "credential-store"
