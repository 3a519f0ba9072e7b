"""Configuration loading and validation for webosctl."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from webosctl.core.errors import ConfigLoadError, ConfigValidationError
from webosctl.core.model import DEFAULT_PORT

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULT_PORT
    scheme: str = "wss"
    first_host: int = 1
    last_host: int = 20
    probe_timeout_s: float = 0.2
    max_concurrent_probes: int = 50
    heartbeat_enabled: bool = True
    heartbeat_interval_s: float = 10.0
    open_timeout_s: float = 5.0
    request_timeout_s: float | None = 10.0
    credentials_file: Path | None = None

    @property
    def host_range(self) -> range:
        return range(self.first_host, self.last_host + 1)

    def device_url(self, address: str) -> str:
        return f"{self.scheme}://{address}:{self.port}"


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "webosctl/config.yaml"


def _load_schema_validator() -> Any:
    schema_text = resources.files("webosctl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _build_settings(doc: dict[str, Any], source: Path) -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    defaults = Settings()
    scan = doc.get("scan", {})
    heartbeat = doc.get("heartbeat", {})
    first_host = int(scan.get("first_host", defaults.first_host))
    last_host = int(scan.get("last_host", defaults.last_host))
    if first_host > last_host:
        raise ConfigValidationError(
            f"scan.first_host ({first_host}) must not exceed scan.last_host ({last_host}) in {source}"
        )

    credentials_file = doc.get("credentials_file")
    return Settings(
        port=int(doc.get("port", defaults.port)),
        scheme=doc.get("scheme", defaults.scheme),
        first_host=first_host,
        last_host=last_host,
        probe_timeout_s=float(scan.get("probe_timeout_s", defaults.probe_timeout_s)),
        max_concurrent_probes=int(scan.get("max_concurrent_probes", defaults.max_concurrent_probes)),
        heartbeat_enabled=bool(heartbeat.get("enabled", defaults.heartbeat_enabled)),
        heartbeat_interval_s=float(heartbeat.get("interval_s", defaults.heartbeat_interval_s)),
        open_timeout_s=float(doc.get("open_timeout_s", defaults.open_timeout_s)),
        request_timeout_s=(
            float(doc["request_timeout_s"])
            if doc.get("request_timeout_s") is not None
            else (None if "request_timeout_s" in doc else defaults.request_timeout_s)
        ),
        credentials_file=Path(credentials_file).expanduser() if credentials_file else None,
    )


def load_settings(path: Path | None = None) -> Settings:
    config_path = path or default_config_path()
    if not config_path.exists():
        LOGGER.debug("No config file at %s, using defaults", config_path)
        return Settings()

    doc = _read_yaml(config_path)
    settings = _build_settings(doc, config_path)
    LOGGER.info("Loaded configuration from %s", config_path)
    return settings
