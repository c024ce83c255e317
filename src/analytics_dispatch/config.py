"""
Configuration management with explicit cache invalidation.

Uses Pydantic Settings for environment variable handling and validation.
Values from an optional YAML config file act as defaults that environment
variables override.
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog
import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

MAINTENANCE_WINDOW_FORMAT = "%d-%m-%Y %H:%M"

# YAML sections that map onto nested settings classes
_NESTED_SECTIONS = ("bigquery", "federated", "scheduler")


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get("ANALYTICS_CONFIG_FILE")

    if config_path is None:
        possible_paths = [
            "config.yaml",
            "../../config.yaml",
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class AuthMode(str, Enum):
    """Authentication strategy used against the analytics backend."""

    LEGACY = "legacy"
    FEDERATED = "federated"


class BigQuerySettings(BaseSettings):
    """Analytics backend table and legacy credentials."""

    api_url: str = Field(
        default="https://bigquery.googleapis.com/bigquery/v2",
        description="BigQuery REST API base URL",
    )
    project_id: str = Field(default="", description="Project holding the events table")
    dataset: str = Field(default="", description="Dataset holding the events table")
    table_name: str = Field(default="events", description="Events table name")
    access_token: str = Field(default="", description="Static bearer token for legacy auth")
    timeout_seconds: int = Field(default=30, description="Insert request timeout")

    @property
    def insert_url(self) -> str:
        """Full tabledata.insertAll URL."""
        return (
            f"{self.api_url.rstrip('/')}/projects/{self.project_id}"
            f"/datasets/{self.dataset}/tables/{self.table_name}/insertAll"
        )

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_BIGQUERY_")


class FederatedAuthSettings(BaseSettings):
    """Workload identity federation configuration."""

    token_file_path: Path = Field(
        default=Path("/var/run/secrets/azure/tokens/azure-identity-token"),
        description="File containing the federated identity token",
    )
    token_exchange_url: str = Field(
        default="https://sts.googleapis.com/v1/token",
        description="Security token service exchange endpoint",
    )
    audience: str = Field(default="", description="Workload identity provider audience")
    scope: str = Field(
        default="https://www.googleapis.com/auth/cloud-platform",
        description="OAuth scope requested for the access token",
    )
    expiry_margin_seconds: int = Field(
        default=60,
        description="Refresh the access token this long before it expires",
    )

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_FEDERATED_")


class SchedulerSettings(BaseSettings):
    """Background delivery retry policy."""

    max_retries: int = Field(default=5, description="Retry attempts for failed deliveries")
    backoff_seconds: List[int] = Field(default=[3, 18, 83, 258, 627], description="Backoff intervals")
    shutdown_timeout_seconds: float = Field(
        default=10.0,
        description="How long shutdown waits for in-flight deliveries before dropping them",
    )

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_SCHEDULER_")


@dataclass(frozen=True)
class ConfigurationSnapshot:
    """Read-only view of the dispatch configuration at one point in time."""

    enabled: bool
    log_only: bool
    async_enabled: bool
    debug_enabled: bool
    maintenance_window_active: bool
    next_slot_after_window: Optional[datetime]
    auth_mode: AuthMode


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")
    environment: str = Field(default="development", description="Deployment environment name")

    # Dispatch configuration
    enabled: bool = Field(default=False, description="Send analytics events at all")
    log_only: bool = Field(default=False, description="Log redacted events instead of sending")
    async_enabled: bool = Field(default=True, description="Deliver in the background")
    event_debug: bool = Field(default=False, description="Log events matching the debug filters")
    event_debug_filters: Dict[str, Any] = Field(
        default_factory=dict,
        description="Filters selecting which events are echoed in debug mode",
    )
    maintenance_window: Optional[str] = Field(
        default=None,
        description="Backend maintenance window, 'DD-MM-YYYY HH:MM..DD-MM-YYYY HH:MM'",
    )
    azure_federated_auth: bool = Field(
        default=False,
        description="Authenticate with workload identity federation instead of a static token",
    )

    # Component settings
    bigquery: BigQuerySettings = Field(default_factory=BigQuerySettings)
    federated: FederatedAuthSettings = Field(default_factory=FederatedAuthSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @field_validator("maintenance_window", mode="before")
    def blank_window_is_none(cls, v: Any) -> Any:
        """Treat an empty string as no maintenance window."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def auth_mode(self) -> AuthMode:
        return AuthMode.FEDERATED if self.azure_federated_auth else AuthMode.LEGACY

    def maintenance_window_bounds(self) -> Optional[Tuple[datetime, datetime]]:
        """
        Parse the maintenance window into UTC start and end times.

        Returns None when no window is configured or the value is malformed.
        """
        if not self.maintenance_window:
            return None

        try:
            start_text, end_text = self.maintenance_window.split("..")
            start = datetime.strptime(start_text.strip(), MAINTENANCE_WINDOW_FORMAT)
            end = datetime.strptime(end_text.strip(), MAINTENANCE_WINDOW_FORMAT)
        except ValueError:
            logger.error(
                "Maintenance window format invalid, expected 'DD-MM-YYYY HH:MM..DD-MM-YYYY HH:MM'",
                maintenance_window=self.maintenance_window,
            )
            return None

        if start > end:
            logger.error(
                "Maintenance window start is after its end",
                maintenance_window=self.maintenance_window,
            )
            return None

        return start.replace(tzinfo=timezone.utc), end.replace(tzinfo=timezone.utc)

    def within_maintenance_window(self, now: datetime) -> bool:
        bounds = self.maintenance_window_bounds()
        if bounds is None:
            return False
        start, end = bounds
        return start <= now <= end

    def next_scheduled_time_after_maintenance_window(self, now: datetime) -> Optional[datetime]:
        """Now plus the window length, so deferred work lands after the window closes."""
        bounds = self.maintenance_window_bounds()
        if bounds is None:
            return None
        start, end = bounds
        return now + (end - start)

    def snapshot(self, now: datetime) -> ConfigurationSnapshot:
        """Freeze the dispatch-relevant settings as seen at ``now``."""
        bounds = self.maintenance_window_bounds()
        window_active = bounds is not None and bounds[0] <= now <= bounds[1]
        next_slot = now + (bounds[1] - bounds[0]) if bounds is not None and window_active else None
        return ConfigurationSnapshot(
            enabled=self.enabled,
            log_only=self.log_only,
            async_enabled=self.async_enabled,
            debug_enabled=self.event_debug,
            maintenance_window_active=window_active,
            next_slot_after_window=next_slot,
            auth_mode=self.auth_mode,
        )

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_", case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    for key, value in config_data.items():
        if key in _NESTED_SECTIONS and isinstance(value, dict):
            for nested_key, nested_value in value.items():
                _set_env_default(f"ANALYTICS_{key}_{nested_key}".upper(), nested_value)
        else:
            _set_env_default(f"ANALYTICS_{key}".upper(), value)


def _set_env_default(env_var: str, value: Any) -> None:
    if env_var in os.environ or value is None:
        return
    if isinstance(value, (dict, list)):
        os.environ[env_var] = json.dumps(value)
    else:
        os.environ[env_var] = str(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
