"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from geobatch.common.constants import ENV_PREFIX
from geobatch.common.errors import ConfigError
from geobatch.common.fs import read_yaml
from geobatch.common.http import TimeoutConfig
from geobatch.common.schema import validate_geocode_config
from geobatch.request.signer import decode_key

ENV_OVERRIDES = {
    "QPS": "qps",
    "KEY": "key",
    "CLIENT_ID": "client_id",
}


@dataclass(frozen=True)
class GeocodeConfig:
    qps: int
    key: str = ""
    client_id: str = ""
    delimiter: str = ","
    max_workers: int = 16
    queue_size: int = 64
    grace_period_seconds: float = 5.0
    poll_interval_seconds: float = 0.05
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    summary_path: Path | None = None
    log_dir: Path | None = None
    log_level: str = "INFO"


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    base = read_yaml(path) or {}
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path) or {}
    return _deep_merge(base, overlay)


def _apply_env_overrides(cfg: dict, env: Mapping[str, str]) -> dict:
    out = dict(cfg)
    for suffix, key in ENV_OVERRIDES.items():
        value = env.get(f"{ENV_PREFIX}{suffix}")
        if value is None:
            continue
        if key == "qps":
            try:
                out[key] = int(value)
            except ValueError as exc:
                raise ConfigError(f"{ENV_PREFIX}{suffix} must be an integer, got {value!r}") from exc
        else:
            out[key] = value
    return out


def config_from_dict(cfg: dict, *, allow_unknown: bool = False) -> GeocodeConfig:
    validate_geocode_config(cfg, allow_unknown=allow_unknown)
    key = str(cfg.get("key") or "")
    if key:
        # A bad key would invalidate every signature, so fail before dispatch.
        decode_key(key)

    timeout_cfg = cfg.get("timeout") or {}
    defaults = TimeoutConfig()
    summary_path = cfg.get("summary_path")
    log_dir = cfg.get("log_dir")
    return GeocodeConfig(
        qps=cfg["qps"],
        key=key,
        client_id=str(cfg.get("client_id") or ""),
        delimiter=cfg.get("delimiter", ","),
        max_workers=cfg.get("max_workers", 16),
        queue_size=cfg.get("queue_size", 64),
        grace_period_seconds=float(cfg.get("grace_period_seconds", 5.0)),
        poll_interval_seconds=float(cfg.get("poll_interval_seconds", 0.05)),
        timeout=TimeoutConfig(
            connect=float(timeout_cfg.get("connect", defaults.connect)),
            read=float(timeout_cfg.get("read", defaults.read)),
        ),
        summary_path=Path(summary_path) if summary_path else None,
        log_dir=Path(log_dir) if log_dir else None,
        log_level=str(cfg.get("log_level", "INFO")).upper(),
    )


def load_config(
    path: Path | None = None,
    *,
    overlay_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    allow_unknown: bool = False,
) -> GeocodeConfig:
    cfg: dict = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        cfg = _load_yaml_with_overlay(path, overlay_path)
    cfg = _apply_env_overrides(cfg, os.environ if env is None else env)
    return config_from_dict(cfg, allow_unknown=allow_unknown)
