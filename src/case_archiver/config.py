"""Configuration management using YAML and Pydantic."""

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from case_archiver.exceptions import ConfigurationError


def _substitute_env_vars(value: str) -> str:
    """Substitute environment variables in string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with environment variables substituted
    """
    pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_value = os.getenv(var_name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        raise ValueError(f"Environment variable {var_name} not set and no default provided")

    return re.sub(pattern, replacer, value)


def _substitute_env_in_dict(data: Any) -> Any:
    """Recursively substitute environment variables in a nested structure."""
    if isinstance(data, dict):
        return {key: _substitute_env_in_dict(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_in_dict(item) for item in data]
    elif isinstance(data, str):
        return _substitute_env_vars(data)
    return data


class RetrySettings(BaseModel):
    """Retry settings for an HTTP collaborator."""

    max_attempts: int = Field(default=3, description="Maximum attempts per request", ge=1, le=10)
    initial_delay: float = Field(default=1.0, description="Initial backoff delay in seconds", ge=0)
    max_delay: float = Field(default=30.0, description="Maximum backoff delay in seconds", gt=0)
    circuit_failure_threshold: int = Field(
        default=5,
        description="Consecutive failures before the circuit breaker opens",
        ge=1,
    )
    circuit_recovery_timeout: float = Field(
        default=60.0,
        description="Seconds before an open circuit is probed again",
        gt=0,
    )


class DatabaseConfig(BaseModel):
    """History database configuration."""

    name: str = Field(description="Database name")
    host: str = Field(description="Database host")
    port: int = Field(default=5432, description="Database port", gt=0, lt=65536)
    user: str = Field(description="Database user")
    password_env: Optional[str] = Field(
        default=None,
        description="Environment variable name containing database password (preferred)",
    )
    password: Optional[str] = Field(
        default=None,
        description="Database password (development only - use password_env in production)",
    )
    pool_size: int = Field(default=5, description="Connection pool size", gt=0, le=50)

    @model_validator(mode="after")
    def validate_password_source(self) -> "DatabaseConfig":
        """Validate that exactly one password source is provided."""
        if not self.password_env and not self.password:
            raise ValueError(
                "Either 'password_env' or 'password' must be provided. "
                "Use 'password_env' for production (recommended) or 'password' for development only."
            )
        if self.password_env and self.password:
            raise ValueError("Cannot specify both 'password_env' and 'password'.")
        return self

    def get_password(self) -> str:
        """Get password from environment variable or config file.

        Raises:
            ValueError: If password cannot be retrieved
        """
        if self.password_env:
            password = os.getenv(self.password_env)
            if not password:
                raise ValueError(f"Environment variable {self.password_env} not set")
            return password
        if self.password:
            import warnings

            warnings.warn(
                f"Using password from config file for database '{self.name}'. "
                f"This is not recommended for production. Use 'password_env' instead.",
                UserWarning,
                stacklevel=2,
            )
            return self.password
        raise ValueError("No password source configured")


class HistoryConfig(BaseModel):
    """Batch run / archive attempt history storage."""

    storage_type: str = Field(
        default="database",
        description="History storage backend ('database' or 'memory')",
    )

    @field_validator("storage_type")
    @classmethod
    def validate_storage_type(cls, v: str) -> str:
        """Validate storage type."""
        if v not in ("database", "memory"):
            raise ValueError("storage_type must be 'database' or 'memory'")
        return v


class CaseSourceConfig(BaseModel):
    """Case export source configuration."""

    base_url: str = Field(description="Base URL of the case export service")
    timeout_seconds: float = Field(default=60.0, description="Request timeout", gt=0)
    closed_status: str = Field(
        default="Avslutat",
        description="Case status value that marks a case as closed",
    )
    closing_event_type: str = Field(
        default="ARKIV",
        description="Event type whose attached documents are archivable",
    )
    page_increment_hours: float = Field(
        default=1.0,
        description="Lower bound advance when the source makes no forward progress",
        gt=0,
    )
    retry: RetrySettings = Field(default_factory=RetrySettings)


class ArchiveConfig(BaseModel):
    """Long-term archive sink configuration."""

    base_url: str = Field(description="Base URL of the archive service")
    archive_url_template: str = Field(
        description="Template for links to archived documents ({archive_id} placeholder)",
    )
    archive_creator: str = Field(
        default="Sundsvalls kommun",
        description="Organisation recorded as archive creator in document metadata",
    )
    timeout_seconds: float = Field(default=120.0, description="Request timeout", gt=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @field_validator("archive_url_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        """Validate that the template references the archive ID."""
        if "{archive_id}" not in v:
            raise ValueError("archive_url_template must contain the '{archive_id}' placeholder")
        return v


class PropertyLookupConfig(BaseModel):
    """Property register lookup configuration."""

    base_url: str = Field(description="Base URL of the property lookup service")
    timeout_seconds: float = Field(default=30.0, description="Request timeout", gt=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class EmailConfig(BaseModel):
    """SMTP channel configuration."""

    smtp_host: str = Field(default="localhost", description="SMTP server hostname")
    smtp_port: int = Field(default=587, description="SMTP server port", gt=0, lt=65536)
    smtp_user: Optional[str] = Field(default=None, description="SMTP username")
    smtp_password_env: Optional[str] = Field(
        default=None,
        description="Environment variable name for SMTP password",
    )
    use_tls: bool = Field(default=True, description="Use TLS encryption")


class MessagingConfig(BaseModel):
    """Messaging service (HTTP API) channel configuration."""

    base_url: str = Field(description="Base URL of the messaging service")
    timeout_seconds: float = Field(default=10.0, description="Request timeout", gt=0)


class NotificationConfig(BaseModel):
    """Notification configuration."""

    enabled: bool = Field(default=False, description="Enable notifications")
    channel: str = Field(default="email", description="Delivery channel ('email' or 'messaging')")
    sender_name: str = Field(default="CaseArchiver", description="Sender display name")
    sender_email: str = Field(
        default="archiver@example.com",
        description="Sender email address",
    )
    geotechnical_recipient: Optional[str] = Field(
        default=None,
        description="Recipient informed when a geotechnical document is archived",
    )
    manual_handling_recipient: Optional[str] = Field(
        default=None,
        description="Recipient informed when a document needs manual archiving",
    )
    email: EmailConfig = Field(default_factory=EmailConfig)
    messaging: Optional[MessagingConfig] = Field(default=None)

    @model_validator(mode="after")
    def validate_channel(self) -> "NotificationConfig":
        """Validate the selected channel has its settings."""
        if self.channel not in ("email", "messaging"):
            raise ValueError("channel must be 'email' or 'messaging'")
        if self.enabled and self.channel == "messaging" and self.messaging is None:
            raise ValueError("'messaging' settings are required when channel is 'messaging'")
        return self


class SchedulerConfig(BaseModel):
    """Scheduled run and single-flight lock configuration."""

    lookback_days: int = Field(
        default=7,
        description="Scheduled window starts this many days before today and ends yesterday",
        ge=1,
    )
    lock_type: str = Field(default="postgresql", description="Run lock type ('postgresql' or 'file')")
    lock_key: str = Field(default="case-archiver", description="Run lock key")
    lock_file_dir: Optional[str] = Field(
        default=None,
        description="Directory for the lock file (required for lock_type 'file')",
    )
    lock_ttl_seconds: int = Field(default=3600, description="Lock time-to-live", gt=0)
    heartbeat_interval_seconds: int = Field(default=30, description="Lock heartbeat interval", gt=0)

    @model_validator(mode="after")
    def validate_lock(self) -> "SchedulerConfig":
        """Validate lock settings."""
        if self.lock_type not in ("postgresql", "file"):
            raise ValueError("lock_type must be 'postgresql' or 'file'")
        if self.lock_type == "file" and not self.lock_file_dir:
            raise ValueError("lock_file_dir is required when lock_type is 'file'")
        return self


class MonitoringConfig(BaseModel):
    """Monitoring and metrics configuration."""

    metrics_enabled: bool = Field(default=True, description="Enable Prometheus metrics")
    metrics_port: int = Field(
        default=8000,
        description="Port for Prometheus metrics endpoint",
        gt=0,
        lt=65536,
    )


class ArchiverConfig(BaseModel):
    """Root configuration model."""

    version: str = Field(description="Configuration version")
    database: Optional[DatabaseConfig] = Field(default=None, description="History database")
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    case_source: CaseSourceConfig = Field(description="Case export source")
    archive: ArchiveConfig = Field(description="Long-term archive")
    property_lookup: Optional[PropertyLookupConfig] = Field(default=None)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate configuration version."""
        if v != "1.0":
            raise ValueError(f"Unsupported configuration version: {v}")
        return v

    @model_validator(mode="after")
    def validate_database_required(self) -> "ArchiverConfig":
        """A database is needed for database history or PostgreSQL locks."""
        needs_db = self.history.storage_type == "database" or self.scheduler.lock_type == "postgresql"
        if needs_db and self.database is None:
            raise ValueError(
                "'database' section is required for database history storage or postgresql locks"
            )
        return self


def load_config(config_path: Path) -> ArchiverConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

    if not raw_config:
        raise ConfigurationError("Configuration file is empty")

    try:
        config_data = _substitute_env_in_dict(raw_config)
        return ArchiverConfig.model_validate(config_data)
    except Exception as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e
