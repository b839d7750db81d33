"""
Monitoring settings: pydantic models loaded from YAML.

Settings are read from ``base.yaml`` in the config directory and overlaid with
an optional ``local.yaml`` (deep merge, local wins). Everything is validated
before the monitoring loop starts; any problem surfaces as a
ConfigurationError.
"""
import logging
import os
from datetime import timedelta
from enum import Enum
from typing import List, Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from config.config import Config
from contracts.errors import ConfigurationError
from contracts.observation import Target

logger = logging.getLogger(__name__)


class OutputMode(str, Enum):
    JSON = "json"
    JSONL = "jsonl"
    NONE = "none"

    @property
    def enabled(self) -> bool:
        return self is not OutputMode.NONE


class Visibility(str, Enum):
    PUBLIC = "public"
    HOME = "home"
    FOLLOWERS = "followers"
    SPECIFIED = "specified"


class TargetSettings(BaseModel):
    url: str
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    user_agent: Optional[str] = None


class StateSettings(BaseModel):
    warm_start: bool = False


class ReportingSettings(BaseModel):
    enabled: bool = False
    interval: timedelta = timedelta(hours=1)
    output_to_console: bool = True
    output_to_misskey: bool = False
    misskey_visibility: Visibility = Visibility.HOME
    rtt_threshold_ms: float = Field(default=300, ge=0)
    p95_rtt_threshold_ms: float = Field(default=500, ge=0)
    uptime_threshold_percent: float = Field(default=99.9, ge=0, le=100)
    critical_uptime_threshold_percent: float = Field(default=99.0, ge=0, le=100)

    @field_validator("interval")
    @classmethod
    def _positive_interval(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("reporting interval must be greater than 0")
        return value

    @model_validator(mode="after")
    def _ordered_thresholds(self):
        if self.p95_rtt_threshold_ms < self.rtt_threshold_ms:
            raise ValueError(
                "p95_rtt_threshold_ms must be greater than or equal to rtt_threshold_ms"
            )
        if self.critical_uptime_threshold_percent > self.uptime_threshold_percent:
            raise ValueError(
                "critical_uptime_threshold_percent must be less than or equal to "
                "uptime_threshold_percent"
            )
        return self


class Settings(BaseModel):
    misskey_url: str = "https://misskey.io"
    misskey_token: Optional[str] = None
    target_urls: List[Union[str, TargetSettings]] = Field(min_length=1)
    check_interval_seconds: float = Field(default=60, gt=0)
    user_agent: str = "tracekey"
    request_timeout_seconds: float = Field(default=10, gt=0)
    probe_path: str = "/cdn-cgi/trace"
    colo_header: str = "cf-ray"
    colo_body_fallback: bool = True
    output_format: OutputMode = OutputMode.JSONL
    output_path: str = "data/results.jsonl"
    max_concurrent_checks: int = Field(default=10, gt=0)
    colo_change_notify_misskey: bool = False
    misskey_concurrent_notifications: int = Field(default=1, gt=0)
    colo_change_cooldown_seconds: float = Field(default=300, ge=0)
    shutdown_grace_seconds: float = Field(default=Config.SHUTDOWN_GRACE_SECONDS, ge=0)
    state: StateSettings = StateSettings()
    reporting: ReportingSettings = ReportingSettings()

    @field_validator("target_urls")
    @classmethod
    def _check_target_urls(cls, values):
        for value in values:
            url = value if isinstance(value, str) else value.url
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https"):
                raise ValueError(f"Unsupported URL scheme '{parsed.scheme}' for {url}")
            if not parsed.netloc:
                raise ValueError(f"Invalid URL {url}: missing host")
        return values

    @model_validator(mode="after")
    def _reporting_requires_output(self):
        if self.reporting.enabled and not self.output_format.enabled:
            raise ValueError(
                "reporting is enabled but output_format is 'none'; "
                "set output_format to 'json' or 'jsonl' to use reports"
            )
        return self

    @property
    def targets(self) -> List[Target]:
        targets = []
        for value in self.target_urls:
            if isinstance(value, str):
                targets.append(Target(url=value))
            else:
                targets.append(Target(**value.model_dump()))
        return targets

    @property
    def misskey_enabled(self) -> bool:
        return bool(self.misskey_token)


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Could not read {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def load_settings(config_dir: Optional[str] = None) -> Settings:
    """
    Load, merge and validate the settings files.

    Args:
        config_dir (Optional[str]): Directory holding base.yaml and local.yaml.
            Defaults to Config.CONFIG_DIR.

    Returns:
        Settings: The validated settings.

    Raises:
        ConfigurationError: If base.yaml is missing, a file cannot be parsed,
            or the merged settings fail validation.
    """
    config_dir = config_dir or Config.CONFIG_DIR
    base_path = os.path.join(config_dir, Config.BASE_SETTINGS_FILE)
    local_path = os.path.join(config_dir, Config.LOCAL_SETTINGS_FILE)

    if not os.path.exists(base_path):
        raise ConfigurationError(f"Settings file not found: {base_path}")

    raw = _read_yaml(base_path)
    if os.path.exists(local_path):
        raw = _deep_merge(raw, _read_yaml(local_path))
        logger.info(f"Loaded settings from {base_path} with overrides from {local_path}")
    else:
        logger.info(f"Loaded settings from {base_path}")

    return parse_settings(raw)


def parse_settings(raw: dict) -> Settings:
    try:
        return Settings.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid settings: {problems}") from e
