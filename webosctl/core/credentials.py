"""Persistence of the pairing credential handed out by the device."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

import yaml

from webosctl.core.errors import CredentialStoreError

CLIENT_KEY_NAME = "webos_client_key"
LOGGER = logging.getLogger(__name__)


class CredentialStore(Protocol):
    def get(self, key: str) -> str | None:
        """Return the stored value for ``key`` or None."""

    def set(self, key: str, value: str) -> None:
        """Persist ``value`` under ``key``."""


class MemoryCredentialStore:
    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(values or {})

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value


def default_credentials_path() -> Path:
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_data / "webosctl/credentials.yaml"


class YamlCredentialStore:
    """Key/value strings in a YAML mapping, rewritten atomically on every set."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or default_credentials_path()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            loaded = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise CredentialStoreError(f"Could not read credentials file {self.path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise CredentialStoreError(f"Invalid YAML in credentials file {self.path}: {exc}") from exc
        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise CredentialStoreError(f"Credentials file {self.path} must contain a mapping at root")
        return {str(k): str(v) for k, v in loaded.items() if v is not None}

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        values = self._read()
        values[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".credentials-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    yaml.safe_dump(values, handle, default_flow_style=False)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CredentialStoreError(f"Could not write credentials file {self.path}: {exc}") from exc
        LOGGER.debug("Stored credential '%s' in %s", key, self.path)
