"""Unit tests for configuration module."""

import os
from pathlib import Path
from typing import Any

import pytest
import yaml

from case_archiver.config import (
    ArchiveConfig,
    ArchiverConfig,
    CaseSourceConfig,
    DatabaseConfig,
    NotificationConfig,
    SchedulerConfig,
    load_config,
)
from case_archiver.exceptions import ConfigurationError


def test_case_source_defaults() -> None:
    """Test case source configuration defaults."""
    config = CaseSourceConfig(base_url="http://cases.local")
    assert config.closed_status == "Avslutat"
    assert config.closing_event_type == "ARKIV"
    assert config.page_increment_hours == 1.0
    assert config.retry.max_attempts == 3


def test_archive_config_requires_placeholder() -> None:
    """Test archive URL template must reference the archive ID."""
    with pytest.raises(ValueError, match="archive_id"):
        ArchiveConfig(base_url="http://archive.local", archive_url_template="https://x/search")


def test_archive_config_defaults() -> None:
    """Test archive configuration defaults."""
    config = ArchiveConfig(
        base_url="http://archive.local", archive_url_template="https://x/?id={archive_id}"
    )
    assert config.archive_creator == "Sundsvalls kommun"


def test_database_config_password_env() -> None:
    """Test database password from environment variable."""
    os.environ["TEST_HISTORY_DB_PASSWORD"] = "secret"
    config = DatabaseConfig(
        name="history",
        host="localhost",
        user="archiver",
        password_env="TEST_HISTORY_DB_PASSWORD",
    )
    assert config.get_password() == "secret"
    assert config.pool_size == 5


def test_database_config_requires_one_password_source() -> None:
    """Test exactly one password source is required."""
    with pytest.raises(ValueError, match="password"):
        DatabaseConfig(name="history", host="localhost", user="archiver")
    with pytest.raises(ValueError, match="both"):
        DatabaseConfig(
            name="history", host="localhost", user="archiver", password="x", password_env="Y"
        )


def test_scheduler_file_lock_requires_directory() -> None:
    """Test file locks need a directory."""
    with pytest.raises(ValueError, match="lock_file_dir"):
        SchedulerConfig(lock_type="file")


def test_scheduler_rejects_unknown_lock_type() -> None:
    """Test unknown lock types are rejected."""
    with pytest.raises(ValueError, match="lock_type"):
        SchedulerConfig(lock_type="redis")


def test_notification_messaging_requires_settings() -> None:
    """Test the messaging channel needs its settings."""
    with pytest.raises(ValueError, match="messaging"):
        NotificationConfig(enabled=True, channel="messaging")


def test_archiver_config_requires_database_for_postgres(config_data: dict[str, Any]) -> None:
    """Test database section is required for database history."""
    config_data["history"] = {"storage_type": "database"}
    with pytest.raises(ValueError, match="database"):
        ArchiverConfig.model_validate(config_data)


def test_archiver_config_rejects_unknown_version(config_data: dict[str, Any]) -> None:
    """Test unsupported configuration version."""
    config_data["version"] = "2.0"
    with pytest.raises(ValueError, match="Unsupported configuration version"):
        ArchiverConfig.model_validate(config_data)


def test_load_config(tmp_path: Path, config_data: dict[str, Any]) -> None:
    """Test loading a YAML configuration file."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump(config_data))

    config = load_config(config_file)

    assert config.version == "1.0"
    assert config.history.storage_type == "memory"
    assert config.scheduler.lookback_days == 7
    assert config.notifications.geotechnical_recipient == "geo@example.com"


def test_load_config_env_substitution(tmp_path: Path, config_data: dict[str, Any]) -> None:
    """Test ${VAR} and ${VAR:-default} substitution."""
    os.environ["TEST_CASE_SOURCE_URL"] = "http://from-env.local"
    config_data["case_source"]["base_url"] = "${TEST_CASE_SOURCE_URL}"
    config_data["archive"]["base_url"] = "${TEST_UNSET_ARCHIVE_URL:-http://default.local}"
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump(config_data))

    config = load_config(config_file)

    assert config.case_source.base_url == "http://from-env.local"
    assert config.archive.base_url == "http://default.local"
    assert config.archive.archive_url_template.endswith("{archive_id}")


def test_load_config_missing_file(tmp_path: Path) -> None:
    """Test missing configuration file."""
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "missing.yaml")


def test_load_config_empty_file(tmp_path: Path) -> None:
    """Test empty configuration file."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("")
    with pytest.raises(ConfigurationError, match="empty"):
        load_config(config_file)


def test_load_config_invalid_yaml(tmp_path: Path) -> None:
    """Test malformed YAML."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("version: [1.0\n")
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_config(config_file)


def test_load_config_validation_error(tmp_path: Path, config_data: dict[str, Any]) -> None:
    """Test validation failures are reported as configuration errors."""
    del config_data["case_source"]
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump(config_data))
    with pytest.raises(ConfigurationError, match="validation failed"):
        load_config(config_file)
