"""
Configuration for schedule sync.

Settings live in config.yaml under the base directory. Resolution order for
the base directory: explicit argument > SCHEDSYNC_BASE_PATH env var >
~/.schedsync. Values present in the file are merged over the defaults below;
unknown keys are ignored with a warning.

sync.reference_timezone decides which calendar day a stored timestamp belongs
to (nearest midnight). With UTC, days written at device-local midnight resolve
correctly from UTC-11 to UTC+12; deployments whose devices sit at UTC+13 or
UTC+14 (Pacific/Auckland in summer, Pacific/Tongatapu, Pacific/Kiritimati)
must set it to their own zone.

    store:
      backend: sqlite          # memory | sqlite | http
      path: store.sqlite       # relative to the base directory
      endpoint: null           # http backend base URL
      api_token: null          # or SCHEDSYNC_API_TOKEN
      page_size: 100
      timeout: 30
    partition:
      name: user_schedule
    sync:
      reference_timezone: UTC
      save_protection_seconds: 5
      delete_protection_seconds: 8
    migration:
      batch_size: 50
      batch_delay_seconds: 0.5
      entity_marker: true
    schedule:
      field_count: 3
      max_length: 16
    notes:
      field_count: 3
      max_length: 100
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from datetime import tzinfo
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .models import UTC, FieldSpec, RecordKind

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = Path.home() / ".schedsync"
CONFIG_FILENAME = "config.yaml"
STORE_BACKENDS = ("memory", "sqlite", "http")


class ConfigError(ValueError):
    """Configuration file holds an invalid value"""
    pass


@dataclass
class StoreConfig:
    backend: str = "sqlite"
    path: str = "store.sqlite"
    endpoint: Optional[str] = None
    api_token: Optional[str] = None
    page_size: int = 100
    timeout: float = 30.0


@dataclass
class PartitionConfig:
    name: str = "user_schedule"


@dataclass
class SyncSettings:
    reference_timezone: str = "UTC"
    save_protection_seconds: float = 5.0
    delete_protection_seconds: float = 8.0


@dataclass
class MigrationConfig:
    batch_size: int = 50
    batch_delay_seconds: float = 0.5
    entity_marker: bool = True


@dataclass
class FieldConfig:
    field_count: int = 3
    max_length: int = 16

    def to_spec(self) -> FieldSpec:
        return FieldSpec(field_count=self.field_count, max_length=self.max_length)


@dataclass
class SyncConfig:
    """Complete configuration tree"""
    store: StoreConfig = field(default_factory=StoreConfig)
    partition: PartitionConfig = field(default_factory=PartitionConfig)
    sync: SyncSettings = field(default_factory=SyncSettings)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    schedule: FieldConfig = field(default_factory=FieldConfig)
    notes: FieldConfig = field(default_factory=lambda: FieldConfig(field_count=3, max_length=100))
    base_path: Path = field(default=DEFAULT_BASE_PATH, repr=False)

    @property
    def timezone(self) -> tzinfo:
        """Reference timezone for day keys."""
        return resolve_timezone(self.sync.reference_timezone)

    @property
    def field_specs(self) -> Dict[RecordKind, FieldSpec]:
        return {
            RecordKind.SCHEDULE: self.schedule.to_spec(),
            RecordKind.NOTES: self.notes.to_spec(),
        }

    @property
    def store_path(self) -> Path:
        """SQLite store location; relative paths resolve against base_path."""
        path = Path(self.store.path).expanduser()
        return path if path.is_absolute() else self.base_path / path

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("base_path")
        return data

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigError: On the first invalid value
        """
        if self.store.backend not in STORE_BACKENDS:
            raise ConfigError(
                f"Invalid store.backend '{self.store.backend}'. Must be one of: {', '.join(STORE_BACKENDS)}"
            )
        if self.store.backend == "http" and not self.store.endpoint:
            raise ConfigError("store.endpoint is required for the http backend")
        if self.store.page_size < 1:
            raise ConfigError("store.page_size must be at least 1")
        if not self.partition.name:
            raise ConfigError("partition.name must not be empty")
        if self.migration.batch_size < 1:
            raise ConfigError("migration.batch_size must be at least 1")
        if self.migration.batch_delay_seconds < 0:
            raise ConfigError("migration.batch_delay_seconds must not be negative")
        for name in ("schedule", "notes"):
            section: FieldConfig = getattr(self, name)
            if section.field_count < 1 or section.max_length < 1:
                raise ConfigError(f"{name}.field_count and {name}.max_length must be positive")
        resolve_timezone(self.sync.reference_timezone)


def resolve_timezone(name: str) -> tzinfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ConfigError: If the name is unknown
    """
    if name.upper() in ("UTC", "Z"):
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"Unknown timezone '{name}'")


def get_base_path(override: Optional[Path] = None) -> Path:
    """
    Base directory for configuration and the local store.

    Priority: explicit override > SCHEDSYNC_BASE_PATH env var > default path.
    """
    if override:
        return Path(override).expanduser()
    env_path = os.getenv("SCHEDSYNC_BASE_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_BASE_PATH


_SECTIONS = frozenset(f.name for f in fields(SyncConfig)) - {"base_path"}


def _merge_section(section: Any, values: Dict[str, Any], prefix: str) -> None:
    known = {f.name: f for f in fields(section)}
    for key, value in values.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key '{prefix}.{key}'")
            continue
        current = getattr(section, key)
        if value is not None and isinstance(current, (int, float)) and not isinstance(current, bool):
            try:
                value = type(current)(value)
            except (TypeError, ValueError):
                raise ConfigError(f"Invalid value for {prefix}.{key}: {value!r}")
        elif isinstance(current, bool) and isinstance(value, str):
            value = value.strip().lower() in ("1", "true", "yes", "on")
        elif isinstance(current, str) and value is not None:
            value = str(value)
        setattr(section, key, value)


def config_from_dict(data: Dict[str, Any], base_path: Optional[Path] = None) -> SyncConfig:
    """
    Build a SyncConfig from a (possibly partial) nested dictionary.

    Raises:
        ConfigError: If a value has the wrong type or range
    """
    config = SyncConfig(base_path=get_base_path(base_path))
    for section_name, values in (data or {}).items():
        if section_name not in _SECTIONS:
            logger.warning(f"Ignoring unknown config section '{section_name}'")
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"Config section '{section_name}' must be a mapping")
        _merge_section(getattr(config, section_name), values, section_name)

    if not config.store.api_token:
        config.store.api_token = os.getenv("SCHEDSYNC_API_TOKEN")

    config.validate()
    return config


def load_config(base_path: Optional[Path] = None) -> SyncConfig:
    """
    Load config.yaml from the base directory, falling back to defaults.

    Args:
        base_path: Base directory override

    Returns:
        Validated SyncConfig

    Raises:
        ConfigError: If the file exists but holds invalid YAML or values
    """
    base = get_base_path(base_path)
    config_path = base / CONFIG_FILENAME

    if not config_path.exists():
        logger.debug(f"Config file not found at {config_path}, using defaults")
        return config_from_dict({}, base)

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")
    return config_from_dict(data or {}, base)


def write_default_config(base_path: Optional[Path] = None) -> Path:
    """Write config.yaml with default values; returns its path."""
    base = get_base_path(base_path)
    base.mkdir(parents=True, exist_ok=True)
    config_path = base / CONFIG_FILENAME
    defaults = SyncConfig(base_path=base).to_dict()
    config_path.write_text(
        "# schedsync configuration\n" + yaml.safe_dump(defaults, default_flow_style=False, sort_keys=False)
    )
    return config_path
