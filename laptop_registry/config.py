"""
Registry Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (LAPREG_*)
    2. Runtime overrides
    3. User config file (~/.lapreg/config.yaml)
    4. Project config file (./lapreg.yaml)
    5. Default values
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value!r}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        """Drop any runtime override."""
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class LimitsConfig:
    """Field bounds enforced by the validation gate.

    The defaults are the registry contract. Overrides are local tuning: a
    snapshot is only portable between processes that agree on these values.
    """
    max_serial_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=50,
        env_var="LAPREG_MAX_SERIAL_LEN",
        description="Maximum serial number length",
        validator=lambda x: x > 0,
    ))
    max_description_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=256,
        env_var="LAPREG_MAX_DESCRIPTION_LEN",
        description="Maximum laptop description length",
        validator=lambda x: x >= 0,
    ))
    max_log_description_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=512,
        env_var="LAPREG_MAX_LOG_DESCRIPTION_LEN",
        description="Maximum repair log description length",
        validator=lambda x: x >= 0,
    ))
    max_repair_logs: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=100,
        env_var="LAPREG_MAX_REPAIR_LOGS",
        description="Maximum repair logs attached to one token",
        validator=lambda x: x > 0,
    ))


@dataclass
class IdentityConfig:
    """Identities the registry treats specially."""
    system_identity: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="contract",
        env_var="LAPREG_SYSTEM_IDENTITY",
        description="The registry's own identity; never valid as owner, recipient, shop or admin",
        validator=lambda x: isinstance(x, str) and bool(x),
    ))
    initial_admin: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="deployer",
        env_var="LAPREG_INITIAL_ADMIN",
        description="Admin assigned when a new registry is created",
        validator=lambda x: isinstance(x, str) and bool(x),
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="LAPREG_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="LAPREG_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class StorageConfig:
    """Configuration for file-backed registries."""
    registry_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="registry.json",
        env_var="LAPREG_REGISTRY_PATH",
        description="Registry snapshot file used by the CLI",
        validator=lambda x: isinstance(x, str) and bool(x),
    ))
    pretty: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="LAPREG_PRETTY_SNAPSHOTS",
        description="Write indented snapshots instead of canonical JSON",
    ))


@dataclass
class RegistryConfig:
    """
    Root configuration for the registry.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = RegistryConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> RegistryConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {path}")
            self._apply_dict(data)
            self._config_paths.append(path)

    def load_defaults(self) -> List[Path]:
        """Load default configuration files if they exist.

        Returns the paths that were loaded. Malformed files raise ConfigError.
        """
        default_paths = [
            Path.home() / ".lapreg" / "config.yaml",
            Path("config/lapreg.yaml"),
            Path("lapreg.yaml"),
        ]

        loaded: List[Path] = []
        for path in default_paths:
            if path.exists():
                try:
                    self.load_from_file(path)
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {path}: {e}") from e
                loaded.append(path)
        return loaded

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("limits.max_repair_logs", 50)
        """
        parts = path.split(".")
        obj: Any = self._config

        try:
            for part in parts[:-1]:
                obj = getattr(obj, part)
            attr = getattr(obj, parts[-1])
        except AttributeError as e:
            raise ConfigError(f"Invalid config path: {path}") from e

        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("identity.system_identity")
        """
        parts = path.split(".")
        obj: Any = self._config

        try:
            for part in parts:
                obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigError(f"Invalid config path: {path}") from e

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def reset(self) -> None:
        """Restore every value to its default and forget loaded files."""
        self._config = RegistryConfig()
        self._config_paths = []

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except ValueError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> RegistryConfig:
    """Get the current registry configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
