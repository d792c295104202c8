"""
Cluster Observer - Configuration.

============================================================
CONFIGURATION SOURCES
============================================================

1. YAML settings file, organized in sections:

```yaml
ClusterObserverConfiguration:
  RunInterval: "00:05:00"          # or seconds, empty = no minimum
  ClusterOperationTimeoutSeconds: 60
  EnableTelemetry: true
  ClusterEndpoint: http://localhost:19080
  EmitHealthWarningEvaluationDetails: true
  EmitOkHealthStateTelemetry: true
LogAnalytics:
  WorkspaceId: 00000000-0000-0000-0000-000000000000
  SharedKey: <base64 key>
  LogType: ClusterObserver
```

2. Environment variables (a .env file is loaded first) override
   the file:
- CLUSTER_OBSERVER_RUN_INTERVAL_SECONDS
- CLUSTER_OBSERVER_TIMEOUT_SECONDS
- CLUSTER_OBSERVER_TELEMETRY_ENABLED
- CLUSTER_OBSERVER_ENDPOINT
- CLUSTER_OBSERVER_LOOP_SLEEP_SECONDS
- LOG_ANALYTICS_WORKSPACE_ID
- LOG_ANALYTICS_SHARED_KEY
- LOG_ANALYTICS_LOG_TYPE

Invalid values are logged and the default is kept.

============================================================
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv

from .constants import (
    CLUSTER_ENDPOINT_SETTING,
    CLUSTER_OBSERVER_CONFIGURATION_SECTION,
    CLUSTER_OBSERVER_NAME,
    CLUSTER_OPERATION_TIMEOUT_SETTING,
    DEFAULT_CLUSTER_ENDPOINT,
    DEFAULT_CLUSTER_OPERATION_TIMEOUT_SECONDS,
    DEFAULT_LOOP_SLEEP_SECONDS,
    ENABLE_TELEMETRY_SETTING,
    LOG_ANALYTICS_API_VERSION,
    LOG_ANALYTICS_API_VERSION_SETTING,
    LOG_ANALYTICS_LOG_TYPE_SETTING,
    LOG_ANALYTICS_SECTION,
    LOG_ANALYTICS_SHARED_KEY_SETTING,
    LOG_ANALYTICS_WORKSPACE_ID_SETTING,
    LOOP_SLEEP_SETTING,
    RUN_INTERVAL_SETTING,
)
from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


# =============================================================
# VALUE PARSING
# =============================================================


_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


def parse_bool(value: Any, key: str = "") -> bool:
    """
    Parse a boolean setting.

    Raises:
        ConfigurationError: If the value is not a boolean
    """
    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False

    raise ConfigurationError(f"Invalid boolean value for {key}", config_key=key, actual_value=str(value))


def parse_seconds(value: Any, key: str = "") -> float:
    """
    Parse a non-negative number of seconds.

    Raises:
        ConfigurationError: If the value is not a non-negative number
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid number for {key}", config_key=key, actual_value=str(value))

    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number for {key}", config_key=key, actual_value=str(value)) from exc

    if seconds < 0:
        raise ConfigurationError(f"{key} must be >= 0", config_key=key, actual_value=str(value))

    return seconds


def parse_interval(value: Any, key: str = RUN_INTERVAL_SETTING) -> Optional[timedelta]:
    """
    Parse a run interval.

    Accepts seconds (number or numeric string) or a "[d.]HH:MM:SS"
    time span. Empty or missing means no minimum interval.

    Raises:
        ConfigurationError: If the value cannot be parsed
    """
    if value is None:
        return None

    if isinstance(value, timedelta):
        return value

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if ":" in text:
            return _parse_timespan(text, key)

    return timedelta(seconds=parse_seconds(value, key))


def _parse_timespan(text: str, key: str) -> timedelta:
    days = 0
    clock = text
    if "." in text.split(":", 1)[0]:
        day_part, clock = text.split(".", 1)
        try:
            days = int(day_part)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid time span for {key}", config_key=key, actual_value=text) from exc

    parts = clock.split(":")
    if len(parts) != 3:
        raise ConfigurationError(f"Invalid time span for {key}", config_key=key, actual_value=text)

    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = float(parts[2])
    except ValueError as exc:
        raise ConfigurationError(f"Invalid time span for {key}", config_key=key, actual_value=text) from exc

    if days < 0 or hours < 0 or minutes < 0 or seconds < 0:
        raise ConfigurationError(f"{key} must be >= 0", config_key=key, actual_value=text)

    return timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)


# =============================================================
# SETTINGS SOURCES
# =============================================================


class SettingsSource(ABC):
    """Section/key settings lookup."""

    @abstractmethod
    def get_setting(self, section: str, key: str) -> Optional[Any]:
        """Get a raw setting value, None when absent."""
        pass

    def get_boolean_setting(self, section: str, key: str) -> bool:
        """
        Get a boolean setting.

        Absent or unparseable values are False.
        """
        value = self.get_setting(section, key)
        if value is None or (isinstance(value, str) and not value.strip()):
            return False

        try:
            return parse_bool(value, f"{section}.{key}")
        except ConfigurationError as e:
            logger.warning(f"{e.message}, using False: {value!r}")
            return False

    def reload(self) -> None:
        """Refresh settings from the backing store."""
        return None


class DictSettingsSource(SettingsSource):
    """In-memory settings, keyed by section then key."""

    def __init__(self, sections: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self._sections: Dict[str, Dict[str, Any]] = {
            name: dict(values or {}) for name, values in (sections or {}).items()
        }

    def get_setting(self, section: str, key: str) -> Optional[Any]:
        return self._sections.get(section, {}).get(key)

    def set_setting(self, section: str, key: str, value: Any) -> None:
        """Set a setting value."""
        self._sections.setdefault(section, {})[key] = value


class YamlSettingsSource(DictSettingsSource):
    """
    Settings loaded from a YAML file.

    A missing or invalid file yields empty settings (defaults).
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        super().__init__(self._load())

    @property
    def path(self) -> Path:
        return self._path

    def reload(self) -> None:
        """Re-read the YAML file."""
        self._sections = {name: dict(values) for name, values in self._load().items()}

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self._path.exists():
            logger.warning(f"Settings file not found: {self._path}, using defaults")
            return {}

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load settings from {self._path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Settings file {self._path} must contain a mapping of sections")
            return {}

        sections = {}
        for name, values in data.items():
            if isinstance(values, dict):
                sections[str(name)] = values
            else:
                logger.warning(f"Ignoring settings section {name!r}: not a mapping")
        return sections


# =============================================================
# OBSERVER CONFIG
# =============================================================


@dataclass
class LogAnalyticsConfig:
    """Log Analytics workspace credentials and log type."""

    workspace_id: str = ""
    shared_key: str = field(default="", repr=False)
    log_type: str = CLUSTER_OBSERVER_NAME
    api_version: str = LOG_ANALYTICS_API_VERSION

    @property
    def is_configured(self) -> bool:
        """Check if workspace id and shared key are both set."""
        return bool(self.workspace_id and self.shared_key)


@dataclass
class ObserverConfig:
    """Top-level configuration for the cluster observer."""

    observer_name: str = CLUSTER_OBSERVER_NAME
    run_interval: Optional[timedelta] = None
    cluster_operation_timeout_seconds: float = DEFAULT_CLUSTER_OPERATION_TIMEOUT_SECONDS
    telemetry_enabled: bool = True
    cluster_endpoint: str = DEFAULT_CLUSTER_ENDPOINT
    loop_sleep_seconds: float = DEFAULT_LOOP_SLEEP_SECONDS
    log_analytics: LogAnalyticsConfig = field(default_factory=LogAnalyticsConfig)

    @classmethod
    def from_settings(cls, settings: SettingsSource) -> "ObserverConfig":
        """
        Build configuration from a settings source.

        Args:
            settings: Section/key settings

        Returns:
            ObserverConfig with defaults for missing or invalid values
        """
        config = cls()
        section = CLUSTER_OBSERVER_CONFIGURATION_SECTION

        config.run_interval = _recover(
            lambda: parse_interval(settings.get_setting(section, RUN_INTERVAL_SETTING)),
            config.run_interval,
        )

        timeout = settings.get_setting(section, CLUSTER_OPERATION_TIMEOUT_SETTING)
        if timeout is not None:
            config.cluster_operation_timeout_seconds = _recover(
                lambda: parse_seconds(timeout, CLUSTER_OPERATION_TIMEOUT_SETTING),
                config.cluster_operation_timeout_seconds,
            )

        sleep = settings.get_setting(section, LOOP_SLEEP_SETTING)
        if sleep is not None:
            config.loop_sleep_seconds = _recover(
                lambda: parse_seconds(sleep, LOOP_SLEEP_SETTING),
                config.loop_sleep_seconds,
            )

        telemetry = settings.get_setting(section, ENABLE_TELEMETRY_SETTING)
        if telemetry is not None:
            config.telemetry_enabled = _recover(
                lambda: parse_bool(telemetry, ENABLE_TELEMETRY_SETTING),
                config.telemetry_enabled,
            )

        endpoint = settings.get_setting(section, CLUSTER_ENDPOINT_SETTING)
        if endpoint:
            config.cluster_endpoint = str(endpoint).rstrip("/")

        la = LOG_ANALYTICS_SECTION
        config.log_analytics = LogAnalyticsConfig(
            workspace_id=str(settings.get_setting(la, LOG_ANALYTICS_WORKSPACE_ID_SETTING) or ""),
            shared_key=str(settings.get_setting(la, LOG_ANALYTICS_SHARED_KEY_SETTING) or ""),
            log_type=str(settings.get_setting(la, LOG_ANALYTICS_LOG_TYPE_SETTING) or CLUSTER_OBSERVER_NAME),
            api_version=str(settings.get_setting(la, LOG_ANALYTICS_API_VERSION_SETTING) or LOG_ANALYTICS_API_VERSION),
        )

        return config

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> "ObserverConfig":
        """
        Override values from environment variables.

        Args:
            environ: Environment mapping (defaults to os.environ)

        Returns:
            self
        """
        env = os.environ if environ is None else environ

        if env.get("CLUSTER_OBSERVER_RUN_INTERVAL_SECONDS") is not None:
            self.run_interval = _recover(
                lambda: parse_interval(env["CLUSTER_OBSERVER_RUN_INTERVAL_SECONDS"],
                                       "CLUSTER_OBSERVER_RUN_INTERVAL_SECONDS"),
                self.run_interval,
            )
        if env.get("CLUSTER_OBSERVER_TIMEOUT_SECONDS"):
            self.cluster_operation_timeout_seconds = _recover(
                lambda: parse_seconds(env["CLUSTER_OBSERVER_TIMEOUT_SECONDS"], "CLUSTER_OBSERVER_TIMEOUT_SECONDS"),
                self.cluster_operation_timeout_seconds,
            )
        if env.get("CLUSTER_OBSERVER_LOOP_SLEEP_SECONDS"):
            self.loop_sleep_seconds = _recover(
                lambda: parse_seconds(env["CLUSTER_OBSERVER_LOOP_SLEEP_SECONDS"], "CLUSTER_OBSERVER_LOOP_SLEEP_SECONDS"),
                self.loop_sleep_seconds,
            )
        if env.get("CLUSTER_OBSERVER_TELEMETRY_ENABLED"):
            self.telemetry_enabled = _recover(
                lambda: parse_bool(env["CLUSTER_OBSERVER_TELEMETRY_ENABLED"], "CLUSTER_OBSERVER_TELEMETRY_ENABLED"),
                self.telemetry_enabled,
            )
        if env.get("CLUSTER_OBSERVER_ENDPOINT"):
            self.cluster_endpoint = env["CLUSTER_OBSERVER_ENDPOINT"].rstrip("/")

        if env.get("LOG_ANALYTICS_WORKSPACE_ID"):
            self.log_analytics.workspace_id = env["LOG_ANALYTICS_WORKSPACE_ID"]
        if env.get("LOG_ANALYTICS_SHARED_KEY"):
            self.log_analytics.shared_key = env["LOG_ANALYTICS_SHARED_KEY"]
        if env.get("LOG_ANALYTICS_LOG_TYPE"):
            self.log_analytics.log_type = env["LOG_ANALYTICS_LOG_TYPE"]

        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (secrets omitted)."""
        return {
            "observer_name": self.observer_name,
            "run_interval_seconds": self.run_interval.total_seconds() if self.run_interval is not None else None,
            "cluster_operation_timeout_seconds": self.cluster_operation_timeout_seconds,
            "telemetry_enabled": self.telemetry_enabled,
            "cluster_endpoint": self.cluster_endpoint,
            "loop_sleep_seconds": self.loop_sleep_seconds,
            "log_analytics_workspace_id": self.log_analytics.workspace_id,
            "log_analytics_log_type": self.log_analytics.log_type,
            "log_analytics_configured": self.log_analytics.is_configured,
        }


def _recover(parse, default):
    """Run a parser, logging ConfigurationError and keeping the default."""
    try:
        return parse()
    except ConfigurationError as e:
        logger.warning(f"{e.message} ({e.details.get('actual')!r}), keeping default {default!r}")
        return default


# =============================================================
# LOADING
# =============================================================


def load_settings(path: Optional[Union[str, Path]] = None) -> SettingsSource:
    """Load settings from a YAML file, or empty settings when no path is given."""
    if path is None:
        return DictSettingsSource()
    return YamlSettingsSource(path)


def load_config(settings: Optional[SettingsSource] = None, use_env: bool = True) -> ObserverConfig:
    """
    Load observer configuration.

    Args:
        settings: Settings source (empty settings when None)
        use_env: Whether to load .env and apply environment overrides

    Returns:
        ObserverConfig
    """
    config = ObserverConfig.from_settings(settings or DictSettingsSource())
    if use_env:
        load_dotenv()
        config.apply_env()
    return config


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[ObserverConfig] = None


def get_config() -> ObserverConfig:
    """Get the global observer configuration."""
    global _default_config
    if _default_config is None:
        _default_config = load_config()
    return _default_config


def set_config(config: ObserverConfig) -> None:
    """Set the global observer configuration."""
    global _default_config
    _default_config = config
