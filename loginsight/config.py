"""Configuration: frozen dataclass loaded from environment variables and optional YAML."""

import logging
import os
from dataclasses import dataclass, fields

import yaml

logger = logging.getLogger(__name__)

EVENT_LEVELS = ("error", "warn", "info", "debug")
ERROR_STREAM_PREFIX = "error"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    log_dir: str = "./logs"
    service_name: str = "loginsight"
    environment: str = "development"
    min_level: str = "debug"
    console_output: bool = True
    max_file_size_bytes: int = 20 * 1024 * 1024  # 20 MB
    general_retention_days: int = 7
    error_retention_days: int = 14
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 60
    rate_limit_retention_seconds: int = 300
    rate_limit_sweep_seconds: int = 60
    slow_response_ms: int = 1000
    slow_request_ms: int = 2000
    analysis_deadline_seconds: float = 0.0
    deprecated_endpoints: tuple = (
        "/api/v1/recipes/old-format",
        "/api/auth/legacy-login",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_yaml_config(path: str | None) -> dict:
    """Load overrides from a YAML file. Returns empty dict if no path or no file."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError:
        logger.warning("Invalid YAML in %s, using defaults", path)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, using defaults", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def _env_overrides() -> dict:
    env = os.environ
    overrides = {}

    # MAX_FILE_SIZE_BYTES takes precedence over MAX_FILE_SIZE_MB
    if "MAX_FILE_SIZE_BYTES" in env:
        overrides["max_file_size_bytes"] = int(env["MAX_FILE_SIZE_BYTES"])
    elif "MAX_FILE_SIZE_MB" in env:
        overrides["max_file_size_bytes"] = int(float(env["MAX_FILE_SIZE_MB"]) * 1024 * 1024)

    simple = {
        "LOG_DIR": ("log_dir", str),
        "SERVICE_NAME": ("service_name", str),
        "ENVIRONMENT": ("environment", str),
        "MIN_LEVEL": ("min_level", lambda v: v.strip().lower()),
        "CONSOLE_OUTPUT": ("console_output", _parse_bool),
        "GENERAL_RETENTION_DAYS": ("general_retention_days", int),
        "ERROR_RETENTION_DAYS": ("error_retention_days", int),
        "RATE_LIMIT_MAX_REQUESTS": ("rate_limit_max_requests", int),
        "RATE_LIMIT_WINDOW_SECONDS": ("rate_limit_window_seconds", int),
        "RATE_LIMIT_RETENTION_SECONDS": ("rate_limit_retention_seconds", int),
        "RATE_LIMIT_SWEEP_SECONDS": ("rate_limit_sweep_seconds", int),
        "SLOW_RESPONSE_MS": ("slow_response_ms", int),
        "SLOW_REQUEST_MS": ("slow_request_ms", int),
        "ANALYSIS_DEADLINE_SECONDS": ("analysis_deadline_seconds", float),
    }
    for var, (name, convert) in simple.items():
        if var in env:
            overrides[name] = convert(env[var])
    return overrides


def load_config(config_path: str | None = None) -> Config:
    """Build Config from defaults, then the YAML file, then environment variables."""
    known = {f.name for f in fields(Config)}
    values = {}

    yaml_data = load_yaml_config(config_path or os.environ.get("CONFIG_PATH"))
    for key, value in yaml_data.items():
        if key not in known:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        values[key] = value

    values.update(_env_overrides())

    if "deprecated_endpoints" in values:
        values["deprecated_endpoints"] = tuple(values["deprecated_endpoints"])
    if "min_level" in values:
        values["min_level"] = str(values["min_level"]).lower()
        if values["min_level"] not in EVENT_LEVELS:
            raise ValueError(f"Unknown min_level: {values['min_level']}")

    service_name = values.get("service_name", Config.service_name)
    if str(service_name).lower() == ERROR_STREAM_PREFIX:
        raise ValueError(f"service_name {service_name!r} collides with the error stream file prefix")

    return Config(**values)
