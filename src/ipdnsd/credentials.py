"""File-backed storage for provider API credentials."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ipdnsd.errors import CredentialStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """API key/secret pair for one provider. Never shown in repr or logs."""

    api_key: str = field(repr=False)
    api_secret: str = field(repr=False)


class CredentialStore:
    """Credentials kept in a YAML file readable only by its owner.

    Layout::

        providers:
          godaddy:
            api_key: "..."
            api_secret: "..."
    """

    FILE_MODE = 0o600

    def __init__(self, path: str):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        """Parse the file. Raises CredentialStoreError if it is unreadable or malformed."""
        if not self.path.exists():
            return {"providers": {}}
        try:
            data = yaml.safe_load(self.path.read_text("utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise CredentialStoreError(f"Failed to load credentials file {self.path}: {e}")
        if not isinstance(data, dict) or not isinstance(data.get("providers"), dict):
            raise CredentialStoreError(f"Credentials file {self.path} has no 'providers' mapping")
        return data

    def _load(self) -> Dict[str, Any]:
        try:
            return self._read()
        except CredentialStoreError as e:
            logger.warning(str(e))
            return {"providers": {}}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)
        os.chmod(tmp_path, self.FILE_MODE)
        tmp_path.replace(self.path)

    def get(self, provider: str) -> Optional[Credential]:
        """Return the stored credential for a provider, or None if absent."""
        entry = self._load()["providers"].get(provider)
        if not isinstance(entry, dict):
            return None
        api_key = entry.get("api_key")
        api_secret = entry.get("api_secret")
        if not isinstance(api_key, str) or not isinstance(api_secret, str) or not api_key:
            logger.warning(f"Ignoring malformed credentials for provider '{provider}'")
            return None
        return Credential(api_key=api_key, api_secret=api_secret)

    def store(self, provider: str, credential: Credential) -> None:
        """Save a provider's credentials. Refuses to overwrite a malformed file."""
        data = self._read()
        data["providers"][provider] = {
            "api_key": credential.api_key,
            "api_secret": credential.api_secret,
        }
        self._save(data)
        logger.info(f"Stored credentials for provider '{provider}'")

    def delete(self, provider: str) -> bool:
        """Remove a provider's credentials. Returns False if none were stored."""
        data = self._read()
        if provider not in data["providers"]:
            return False
        del data["providers"][provider]
        self._save(data)
        logger.info(f"Deleted credentials for provider '{provider}'")
        return True
