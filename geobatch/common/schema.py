"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from geobatch.common.constants import CLIENT_ID_PREFIX
from geobatch.common.errors import ConfigError

KNOWN_KEYS = {
    "qps",
    "key",
    "client_id",
    "delimiter",
    "max_workers",
    "queue_size",
    "grace_period_seconds",
    "poll_interval_seconds",
    "timeout",
    "summary_path",
    "log_dir",
    "log_level",
}
TIMEOUT_KEYS = {"connect", "read"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "WARN", "ERROR"}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive(obj: dict, key: str, ctx: str, *, integer: bool = False) -> None:
    if key not in obj:
        return
    value = obj[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx}.{key} must be a number, got {value!r}")
    if integer and not isinstance(value, int):
        raise ConfigError(f"{ctx}.{key} must be an integer, got {value!r}")
    if value <= 0:
        raise ConfigError(f"{ctx}.{key} must be > 0, got {value!r}")


def validate_geocode_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    if not isinstance(cfg, dict):
        raise ConfigError("geocode config must be a mapping")
    _assert_required_keys(cfg, {"qps"}, "geocode config")
    _assert_no_unknown_keys(cfg, KNOWN_KEYS, "geocode config", allow_unknown)

    _assert_positive(cfg, "qps", "geocode config", integer=True)
    _assert_positive(cfg, "max_workers", "geocode config", integer=True)
    _assert_positive(cfg, "queue_size", "geocode config", integer=True)
    _assert_positive(cfg, "grace_period_seconds", "geocode config")
    _assert_positive(cfg, "poll_interval_seconds", "geocode config")

    delimiter = cfg.get("delimiter", ",")
    if not isinstance(delimiter, str) or len(delimiter) != 1:
        raise ConfigError(f"geocode config.delimiter must be a single character, got {delimiter!r}")

    client_id = cfg.get("client_id") or ""
    if client_id and not str(client_id).startswith(CLIENT_ID_PREFIX):
        raise ConfigError(f"geocode config.client_id must start with {CLIENT_ID_PREFIX!r}")

    level = cfg.get("log_level", "INFO")
    if str(level).upper() not in LOG_LEVELS:
        raise ConfigError(f"geocode config.log_level must be one of {', '.join(sorted(LOG_LEVELS))}")

    timeout = cfg.get("timeout")
    if timeout is not None:
        if not isinstance(timeout, dict):
            raise ConfigError("geocode config.timeout must be a mapping")
        _assert_no_unknown_keys(timeout, TIMEOUT_KEYS, "timeout", allow_unknown)
        _assert_positive(timeout, "connect", "timeout")
        _assert_positive(timeout, "read", "timeout")

    return cfg
