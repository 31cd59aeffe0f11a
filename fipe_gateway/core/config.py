"""Configuration management for FIPE Gateway."""

import copy
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytz

from fipe_gateway.utils.logger import DEFAULT_LOGGING_CONFIG

# Default configuration schema
DEFAULT_CONFIG = {
    "server": {"host": "127.0.0.1", "port": 8080},
    "upstream": {
        "base_url": "https://fipe.parallelum.com.br/api/v2",
        "token": None,
        "timeout": 5,
    },
    "quota": {"daily_limit": 500, "timezone": "America/Sao_Paulo"},
    "cache": {
        "database_path": ":memory:",
        "default_ttl_seconds": 86400,  # 1 day
        "ttl_classes": {
            "references": 43200,  # 12 hours
            "catalog": 43200,
            "vehicle": 3600,
        },
        "max_cache_response_size": 10485760,  # 10MB
        "compression_threshold": 1024,
        "max_cache_entries": 10000,
    },
    "gateway": {"coalesce_misses": True, "coalesce_grace_seconds": 2},
    "admin": {"enabled": True, "log_access": True},
    "logging": copy.deepcopy(DEFAULT_LOGGING_CONFIG),
}

# Environment variable -> (dotted config path, type)
ENV_OVERRIDES = {
    "FIPE_API_TOKEN": ("upstream.token", str),
    "FIPE_BASE_URL": ("upstream.base_url", str),
    "FIPE_RATE_LIMIT_PER_DAY": ("quota.daily_limit", int),
    "FIPE_CACHE_TTL": ("cache.default_ttl_seconds", int),
    "FIPE_DB_PATH": ("cache.database_path", str),
    "FIPE_LOG_LEVEL": ("logging.level", str),
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge two dictionaries."""
    result = copy.deepcopy(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = deep_merge(result[k], v)
        else:
            result[k] = copy.deepcopy(v)
    return result


def set_dotted(config: dict, key_path: str, value: Any) -> None:
    keys = key_path.split(".")
    d = config
    for k in keys[:-1]:
        if k not in d or not isinstance(d[k], dict):
            d[k] = {}
        d = d[k]
    d[keys[-1]] = value


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> dict:
    """Build a partial config from FIPE_* environment variables.

    Raises:
        ValueError: If a numeric variable cannot be parsed
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for var, (key_path, cast) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError:
            raise ValueError(f"{var} must be of type {cast.__name__}, got {raw!r}")
        set_dotted(overrides, key_path, value)
    return overrides


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ConfigurationValidator:
    """Validates configuration and provides error reporting."""

    @staticmethod
    def validate_config(config: dict) -> Tuple[bool, List[str]]:
        errors = []
        if not isinstance(config, dict):
            errors.append("Config must be a dictionary.")
            return False, errors
        # Validate server
        server = config.get("server", {})
        if not isinstance(server.get("host", None), str):
            errors.append("server.host must be a string.")
        if not _is_int(server.get("port", None)):
            errors.append("server.port must be an integer.")
        # Validate upstream
        upstream = config.get("upstream", {})
        base_url = upstream.get("base_url", None)
        if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
            errors.append("upstream.base_url must be an http(s) URL.")
        if upstream.get("token") is not None and not isinstance(upstream.get("token"), str):
            errors.append("upstream.token must be a string or None.")
        timeout = upstream.get("timeout", None)
        if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
            errors.append("upstream.timeout must be a positive number.")
        # Validate quota
        quota = config.get("quota", {})
        if not _is_int(quota.get("daily_limit", None)) or quota.get("daily_limit") < 0:
            errors.append("quota.daily_limit must be a non-negative integer.")
        if quota.get("timezone", None) not in pytz.all_timezones_set:
            errors.append("quota.timezone must be a known timezone name.")
        # Validate cache
        cache = config.get("cache", {})
        if not isinstance(cache.get("database_path", None), str):
            errors.append("cache.database_path must be a string.")
        for field in ("default_ttl_seconds", "max_cache_response_size", "compression_threshold", "max_cache_entries"):
            if not _is_int(cache.get(field, None)) or cache.get(field) < 0:
                errors.append(f"cache.{field} must be a non-negative integer.")
        ttl_classes = cache.get("ttl_classes", {})
        if not isinstance(ttl_classes, dict):
            errors.append("cache.ttl_classes must be a dictionary.")
        else:
            for name, ttl in ttl_classes.items():
                if not _is_int(ttl) or ttl < 0:
                    errors.append(f"cache.ttl_classes.{name} must be a non-negative integer.")
        # Validate gateway
        gateway = config.get("gateway", {})
        if not isinstance(gateway.get("coalesce_misses", None), bool):
            errors.append("gateway.coalesce_misses must be a boolean.")
        # Validate logging
        logging_cfg = config.get("logging", {})
        if not isinstance(logging_cfg.get("level", None), str):
            errors.append("logging.level must be a string.")
        if logging_cfg.get("parent_logger") is not None and not isinstance(logging_cfg.get("parent_logger"), str):
            errors.append("logging.parent_logger must be a string or None.")
        for field in ("enable_console", "enable_file"):
            if not isinstance(logging_cfg.get(field, None), bool):
                errors.append(f"logging.{field} must be a boolean.")
        if logging_cfg.get("file_path") is not None and not isinstance(logging_cfg.get("file_path"), str):
            errors.append("logging.file_path must be a string or None.")
        return len(errors) == 0, errors

    @staticmethod
    def merge_with_defaults(user_config: dict) -> dict:
        return deep_merge(DEFAULT_CONFIG, user_config)


class ConfigurationManager:
    """Manages configuration, validation, merging, and runtime updates.

    Precedence, lowest first: ``DEFAULT_CONFIG``, the user config, then
    ``FIPE_*`` environment variables when ``use_env`` is set.
    """

    def __init__(self, user_config: dict = None, use_env: bool = False):
        self.use_env = use_env
        self._config = self.load_config(user_config or {})

    def load_config(self, user_config: dict) -> dict:
        merged = ConfigurationValidator.merge_with_defaults(user_config)
        if self.use_env:
            merged = deep_merge(merged, env_overrides())
        valid, errors = ConfigurationValidator.validate_config(merged)
        if not valid:
            raise ValueError(f"Invalid configuration: {errors}")
        return merged

    @property
    def config(self) -> dict:
        return self._config

    def get(self, key_path: str, default: Any = None) -> Any:
        """Read a value at a dotted key path (e.g., 'quota.daily_limit')."""
        d: Any = self._config
        for k in key_path.split("."):
            if not isinstance(d, dict) or k not in d:
                return default
            d = d[k]
        return d

    def update(self, key_path: str, value: Any) -> None:
        """Update a config value at a dotted key path (e.g., 'server.host')."""
        candidate = copy.deepcopy(self._config)
        set_dotted(candidate, key_path, value)
        valid, errors = ConfigurationValidator.validate_config(candidate)
        if not valid:
            raise ValueError(f"Invalid configuration after update: {errors}")
        self._config = candidate

    def reload(self, new_config: dict) -> None:
        self._config = self.load_config(new_config)
