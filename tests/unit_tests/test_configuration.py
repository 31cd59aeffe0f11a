"""Unit tests for configuration loading, validation and environment overrides."""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

from unittest.mock import patch

import pytest

from fipe_gateway.core.config import (
    DEFAULT_CONFIG,
    ConfigurationManager,
    ConfigurationValidator,
    deep_merge,
    env_overrides,
)


def test_defaults_are_valid():
    valid, errors = ConfigurationValidator.validate_config(DEFAULT_CONFIG)
    assert valid, errors


def test_default_quota_and_upstream():
    assert DEFAULT_CONFIG["quota"]["daily_limit"] == 500
    assert DEFAULT_CONFIG["upstream"]["base_url"] == "https://fipe.parallelum.com.br/api/v2"
    assert DEFAULT_CONFIG["cache"]["default_ttl_seconds"] == 86400


def test_deep_merge_keeps_untouched_keys():
    merged = deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})
    assert merged == {"a": {"x": 1, "y": 3}, "b": 1}


def test_deep_merge_does_not_mutate_inputs():
    base = {"a": {"x": 1}}
    deep_merge(base, {"a": {"x": 2}})
    assert base == {"a": {"x": 1}}


def test_merge_with_defaults_fills_missing_sections():
    merged = ConfigurationValidator.merge_with_defaults({"quota": {"daily_limit": 10}})
    assert merged["quota"]["daily_limit"] == 10
    assert merged["quota"]["timezone"] == "America/Sao_Paulo"
    assert merged["cache"]["ttl_classes"]["vehicle"] == 3600


@pytest.mark.parametrize(
    "override,message",
    [
        ({"server": {"port": "8080"}}, "server.port must be an integer."),
        ({"upstream": {"base_url": "ftp://example"}}, "upstream.base_url must be an http(s) URL."),
        ({"upstream": {"timeout": 0}}, "upstream.timeout must be a positive number."),
        ({"quota": {"daily_limit": -1}}, "quota.daily_limit must be a non-negative integer."),
        ({"quota": {"timezone": "Mars/Olympus_Mons"}}, "quota.timezone must be a known timezone name."),
        ({"cache": {"ttl_classes": {"vehicle": "1h"}}}, "cache.ttl_classes.vehicle must be a non-negative integer."),
        ({"gateway": {"coalesce_misses": "yes"}}, "gateway.coalesce_misses must be a boolean."),
    ],
)
def test_validation_errors(override, message):
    valid, errors = ConfigurationValidator.validate_config(deep_merge(DEFAULT_CONFIG, override))
    assert not valid
    assert message in errors


def test_manager_rejects_invalid_config():
    with pytest.raises(ValueError):
        ConfigurationManager({"quota": {"daily_limit": "many"}})


def test_manager_get_dotted_path():
    manager = ConfigurationManager({"server": {"port": 9090}})
    assert manager.get("server.port") == 9090
    assert manager.get("server.missing", "fallback") == "fallback"


def test_manager_update_validates_before_applying():
    manager = ConfigurationManager()
    manager.update("quota.daily_limit", 42)
    assert manager.config["quota"]["daily_limit"] == 42

    with pytest.raises(ValueError):
        manager.update("quota.daily_limit", "lots")
    assert manager.config["quota"]["daily_limit"] == 42


def test_manager_reload():
    manager = ConfigurationManager({"server": {"port": 9090}})
    manager.reload({"server": {"port": 9191}})
    assert manager.get("server.port") == 9191


def test_env_overrides_from_mapping():
    environ = {
        "FIPE_API_TOKEN": "secret",
        "FIPE_RATE_LIMIT_PER_DAY": "250",
        "FIPE_CACHE_TTL": "600",
        "FIPE_BASE_URL": "",
    }
    overrides = env_overrides(environ)
    assert overrides == {
        "upstream": {"token": "secret"},
        "quota": {"daily_limit": 250},
        "cache": {"default_ttl_seconds": 600},
    }


def test_env_overrides_rejects_non_numeric_limit():
    with pytest.raises(ValueError, match="FIPE_RATE_LIMIT_PER_DAY"):
        env_overrides({"FIPE_RATE_LIMIT_PER_DAY": "unlimited"})


def test_env_overrides_win_over_user_config():
    with patch.dict("os.environ", {"FIPE_RATE_LIMIT_PER_DAY": "7"}):
        manager = ConfigurationManager({"quota": {"daily_limit": 100}}, use_env=True)
    assert manager.get("quota.daily_limit") == 7


def test_env_ignored_without_use_env():
    with patch.dict("os.environ", {"FIPE_RATE_LIMIT_PER_DAY": "7"}):
        manager = ConfigurationManager({"quota": {"daily_limit": 100}})
    assert manager.get("quota.daily_limit") == 100
