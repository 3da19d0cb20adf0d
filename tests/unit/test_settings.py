"""Unit tests for settings."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from bitbucket_pool.config import Settings


def test_defaults():
    """Test default settings."""
    settings = Settings(_env_file=None)

    assert settings.prefix == "bbpool"
    assert settings.max_pool_size == 6
    assert settings.initial_pool_size == 2
    assert settings.app_version == "latest"
    assert settings.lease_duration == timedelta(hours=1)
    assert settings.reclaim_interval_s == 20.0
    assert settings.addon_key == "io.reconquest.snake"


def test_env_prefix(monkeypatch):
    """Test settings are read from POOL_ environment variables."""
    monkeypatch.setenv("POOL_PREFIX", "ci-pool")
    monkeypatch.setenv("POOL_MAX_POOL_SIZE", "10")
    monkeypatch.setenv("POOL_APP_VERSION", "8.9.1")

    settings = Settings(_env_file=None)

    assert settings.prefix == "ci-pool"
    assert settings.max_pool_size == 10
    assert settings.app_version == "8.9.1"


def test_network_name_falls_back_to_prefix():
    """Test the network name is derived from the prefix when unset."""
    assert Settings(_env_file=None, prefix="ci").resolved_network_name == "ci-network"
    assert (
        Settings(_env_file=None, network_name="shared").resolved_network_name == "shared"
    )


@pytest.mark.parametrize(
    "base_path,expected",
    [("", ""), ("/", ""), ("api", "/api"), ("/api/", "/api"), (" /v1/pool ", "/v1/pool")],
)
def test_normalized_base_path(base_path, expected):
    """Test base path normalization."""
    assert Settings(_env_file=None, base_path=base_path).normalized_base_path == expected


def test_rejects_invalid_pool_size():
    """Test a zero ceiling is rejected."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, max_pool_size=0)


def test_rejects_unknown_log_format():
    """Test only json and text log formats are accepted."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_format="xml")


def test_settings_are_frozen():
    """Test settings cannot be mutated after load."""
    settings = Settings(_env_file=None)

    with pytest.raises(ValidationError):
        settings.prefix = "other"
