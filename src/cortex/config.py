"""Configuration loading from environment variables and config.yaml."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cortex.errors import ConfigError, StorageError, ValidationError
from cortex.memory.paths import is_valid_slug
from cortex.policy import (
    CATEGORY_MODES,
    CategoryDefinition,
    CategoryRules,
    category_tree_to_dict,
    parse_category_tree,
    validate_description,
)
from cortex.storage.indexes import atomic_write_text

logger = logging.getLogger(__name__)

_CONFIG_FILENAME = "config.yaml"
_OUTPUT_FORMATS = ("yaml", "json")
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def default_config_dir() -> Path:
    """``$CORTEX_CONFIG_DIR`` or ``~/.config/cortex``."""
    override = os.getenv("CORTEX_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "cortex"


def default_config_path() -> Path:
    return default_config_dir() / _CONFIG_FILENAME


@dataclass
class Settings:
    """Global settings."""

    output_format: str = "yaml"
    default_store: str = "default"
    strict_local: bool = False
    log_level: str = "INFO"


@dataclass
class StoreDefinition:
    """A named store: absolute root plus its category declarations."""

    name: str
    path: Path
    description: str | None = None
    category_mode: str = "free"
    categories: dict[str, CategoryDefinition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not is_valid_slug(self.name):
            raise ValidationError(
                f"Store name {self.name!r} is invalid; use lowercase letters, digits "
                "and single hyphens (e.g. 'my-project').",
                code="INVALID_STORE_NAME",
            )
        self.path = Path(self.path).expanduser()
        if not self.path.is_absolute():
            raise ValidationError(
                f"Store path for '{self.name}' must be absolute, got '{self.path}'.",
                code="INVALID_STORE_PATH",
                path=str(self.path),
            )
        if self.category_mode not in CATEGORY_MODES:
            raise ValidationError(
                f"Store '{self.name}' has unknown category_mode {self.category_mode!r}; "
                f"expected one of {', '.join(CATEGORY_MODES)}.",
                code="INVALID_POLICY",
            )

    @property
    def rules(self) -> CategoryRules:
        return CategoryRules(mode=self.category_mode, categories=self.categories)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> StoreDefinition:
        if not isinstance(data, dict):
            raise ConfigError(
                f"Store '{name}' must be a mapping with at least a 'path'.",
                code="CONFIG_VALIDATION_FAILED",
            )
        if not data.get("path"):
            raise ValidationError(
                f"Store '{name}' has no path; set an absolute directory.",
                code="INVALID_STORE_PATH",
            )
        return cls(
            name=name,
            path=Path(str(data["path"])),
            description=validate_description(data.get("description"), name),
            category_mode=data.get("category_mode") or "free",
            categories=parse_category_tree(data.get("categories")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": str(self.path)}
        if self.description:
            data["description"] = self.description
        if self.category_mode != "free":
            data["category_mode"] = self.category_mode
        if self.categories:
            data["categories"] = category_tree_to_dict(self.categories)
        return data


@dataclass
class CortexConfig:
    """Top-level configuration."""

    settings: Settings = field(default_factory=Settings)
    stores: dict[str, StoreDefinition] = field(default_factory=dict)
    path: Path | None = None


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(
        f"Environment variable {name}={value!r} is not a boolean; use true or false.",
        code="CONFIG_VALIDATION_FAILED",
    )


def parse_config(data: dict[str, Any] | None, path: Path | None = None) -> CortexConfig:
    """Build a config from parsed YAML, without environment overrides."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(
            "Configuration must be a mapping with 'settings' and 'stores'.",
            code="CONFIG_VALIDATION_FAILED",
            path=str(path) if path else None,
        )
    settings_data = data.get("settings") or {}
    stores_data = data.get("stores") or {}
    if not isinstance(settings_data, dict) or not isinstance(stores_data, dict):
        raise ConfigError(
            "'settings' and 'stores' must both be mappings.",
            code="CONFIG_VALIDATION_FAILED",
            path=str(path) if path else None,
        )

    strict_local = settings_data.get("strict_local", False)
    if not isinstance(strict_local, bool):
        raise ConfigError(
            f"settings.strict_local must be true or false, got {strict_local!r}.",
            code="CONFIG_VALIDATION_FAILED",
        )
    settings = Settings(
        output_format=str(settings_data.get("output_format", "yaml")),
        default_store=str(settings_data.get("default_store", "default")),
        strict_local=strict_local,
        log_level=str(settings_data.get("log_level", "INFO")).upper(),
    )
    stores = {
        str(name): StoreDefinition.from_dict(str(name), raw) for name, raw in stores_data.items()
    }
    config = CortexConfig(settings=settings, stores=stores, path=path)
    _validate_settings(config.settings)
    return config


def _validate_settings(settings: Settings) -> None:
    if settings.output_format not in _OUTPUT_FORMATS:
        raise ConfigError(
            f"output_format must be one of {', '.join(_OUTPUT_FORMATS)}, "
            f"got {settings.output_format!r}.",
            code="CONFIG_VALIDATION_FAILED",
        )


def load_config(config_path: Path | None = None) -> CortexConfig:
    """Load configuration from environment variables and optional config.yaml.

    Priority: environment variables > config.yaml > defaults.
    """
    path = Path(config_path) if config_path else default_config_path()
    data: dict = {}
    if path.exists():
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(
                f"Failed to read configuration at {path}: {e.strerror or e}.",
                code="CONFIG_READ_FAILED",
                path=str(path),
                cause=e,
            ) from e
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Configuration at {path} is not valid YAML: {e}",
                code="CONFIG_PARSE_FAILED",
                path=str(path),
                cause=e,
            ) from e
    else:
        logger.debug("No configuration at %s, using defaults", path)

    config = parse_config(data, path)
    settings = config.settings
    settings.output_format = os.getenv("CORTEX_OUTPUT_FORMAT", settings.output_format)
    settings.default_store = os.getenv("CORTEX_DEFAULT_STORE", settings.default_store)
    settings.strict_local = _env_flag("CORTEX_STRICT_LOCAL", settings.strict_local)
    settings.log_level = os.getenv("CORTEX_LOG_LEVEL", settings.log_level).upper()
    _validate_settings(settings)
    return config


def config_to_dict(config: CortexConfig) -> dict[str, Any]:
    settings = config.settings
    return {
        "settings": {
            "output_format": settings.output_format,
            "default_store": settings.default_store,
            "strict_local": settings.strict_local,
            "log_level": settings.log_level,
        },
        "stores": {name: store.to_dict() for name, store in sorted(config.stores.items())},
    }


def save_config(config: CortexConfig, config_path: Path | None = None) -> Path:
    """Write the configuration as YAML and return the path written."""
    path = Path(config_path or config.path or default_config_path())
    content = yaml.safe_dump(config_to_dict(config), sort_keys=False, allow_unicode=True)
    try:
        atomic_write_text(path, content)
    except StorageError as e:
        raise ConfigError(
            f"Failed to write configuration to {path}.",
            code="CONFIG_WRITE_FAILED",
            path=str(path),
            cause=e.cause or e,
        ) from e
    config.path = path
    logger.info("Saved configuration to %s", path)
    return path
