"""Configuration loading for the upload coordinator.

Supports two configuration sources:
1. Environment variables (for containers and CI) - take priority
2. config.json file (for local development)

Environment Variables:
    S3_BUCKET              Bucket that receives uploads
    AWS_REGION             Region name
    S3_ENDPOINT_URL        Custom S3 endpoint (LOCALSTACK_ENDPOINT also accepted)
    AWS_ACCESS_KEY_ID      Credentials (optional, boto3 chain otherwise)
    AWS_SECRET_ACCESS_KEY
    S3_ADDRESSING_STYLE    auto | path | virtual
    SESSION_BACKEND        memory | redis
    REDIS_URL              Redis connection URL
    PRESIGNED_EXPIRES      Presigned URL lifetime in seconds
    SESSION_TTL            Session lifetime in seconds
    LOCK_TIMEOUT           Seconds to wait for a per-session lock
    HOST, PORT             HTTP bind address

Example config.json:
    {
        "bucket_name": "uploads",
        "endpoint_url": "http://localhost:4566",
        "session_backend": "redis",
        "redis_url": "redis://localhost:6379/0"
    }
"""

import json
import os
from dataclasses import fields
from pathlib import Path
from typing import Any

from upload_coordinator.models import ServiceConfig


class ConfigError(Exception):
    """Raised when configuration loading fails."""

    pass


# Environment variable -> ServiceConfig field
ENV_FIELDS = {
    "S3_BUCKET": "bucket_name",
    "AWS_REGION": "region_name",
    "S3_ENDPOINT_URL": "endpoint_url",
    "LOCALSTACK_ENDPOINT": "endpoint_url",
    "AWS_ACCESS_KEY_ID": "aws_access_key_id",
    "AWS_SECRET_ACCESS_KEY": "aws_secret_access_key",
    "S3_ADDRESSING_STYLE": "addressing_style",
    "SESSION_BACKEND": "session_backend",
    "REDIS_URL": "redis_url",
    "PRESIGNED_EXPIRES": "presign_ttl_seconds",
    "SESSION_TTL": "session_ttl_seconds",
    "LOCK_TIMEOUT": "lock_timeout_seconds",
    "HOST": "host",
    "PORT": "port",
}

INT_FIELDS = {"presign_ttl_seconds", "session_ttl_seconds", "port"}
FLOAT_FIELDS = {"lock_timeout_seconds"}

SESSION_BACKENDS = ("memory", "redis")
ADDRESSING_STYLES = ("auto", "path", "virtual")


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw config value to the type of field ``name``."""
    try:
        if name in INT_FIELDS:
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        if name in FLOAT_FIELDS:
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for '{name}': {value!r}") from e
    return value


def load_from_json(config_path: str) -> dict[str, Any]:
    """Load configuration values from a JSON file.

    Args:
        config_path: Path to the config.json file.

    Returns:
        Dictionary of ServiceConfig field values found in the file.

    Raises:
        ConfigError: If the file doesn't exist, contains invalid JSON,
                    or names unknown fields.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")

    known = {f.name for f in fields(ServiceConfig)}
    values: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            raise ConfigError(f"Unknown config field '{key}'")
        values[key] = _coerce(key, value)

    return values


def load_from_env() -> dict[str, Any]:
    """Load configuration values from environment variables.

    Returns:
        Dictionary of ServiceConfig field values set in the environment.

    Raises:
        ConfigError: If a numeric variable cannot be parsed.
    """
    values: dict[str, Any] = {}

    for env_key, field_name in ENV_FIELDS.items():
        env_value = os.environ.get(env_key)
        if not env_value:
            continue
        # S3_ENDPOINT_URL wins over LOCALSTACK_ENDPOINT
        if field_name in values:
            continue
        values[field_name] = _coerce(field_name, env_value)

    return values


def validate_config(config: ServiceConfig) -> ServiceConfig:
    """Check cross-field constraints.

    Raises:
        ConfigError: If the configuration is inconsistent.
    """
    if not config.bucket_name:
        raise ConfigError("bucket_name must not be empty")

    if config.session_backend not in SESSION_BACKENDS:
        raise ConfigError(
            f"session_backend must be one of {', '.join(SESSION_BACKENDS)}, "
            f"got '{config.session_backend}'"
        )

    if config.session_backend == "redis" and not config.redis_url:
        raise ConfigError("session_backend 'redis' requires redis_url")

    if config.addressing_style not in ADDRESSING_STYLES:
        raise ConfigError(
            f"addressing_style must be one of {', '.join(ADDRESSING_STYLES)}, "
            f"got '{config.addressing_style}'"
        )

    for name in ("presign_ttl_seconds", "session_ttl_seconds", "lock_timeout_seconds"):
        if getattr(config, name) <= 0:
            raise ConfigError(f"{name} must be positive")

    return config


def load_config(config_path: str = "config.json") -> ServiceConfig:
    """Load service configuration with environment priority.

    Priority order:
    1. Environment variables
    2. config.json file (if present)
    3. ServiceConfig defaults

    A Redis URL without an explicit backend selects the Redis backend, and
    a custom endpoint without an explicit addressing style selects path
    style (as LocalStack and most S3-compatible servers expect).

    Args:
        config_path: Path to config.json (optional).

    Returns:
        The validated ServiceConfig.

    Raises:
        ConfigError: If any source is malformed or the result is inconsistent.
    """
    values: dict[str, Any] = {}

    if Path(config_path).exists():
        values.update(load_from_json(config_path))

    values.update(load_from_env())

    if values.get("redis_url") and "session_backend" not in values:
        values["session_backend"] = "redis"

    if values.get("endpoint_url") and "addressing_style" not in values:
        values["addressing_style"] = "path"

    return validate_config(ServiceConfig(**values))
