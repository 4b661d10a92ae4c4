# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Configuration loading.

A sweep configuration is assembled from four layers, later layers winning:

1. Built-in defaults (DEFAULTS)
2. The ``defaults:`` mapping of the site settings file (sortctl.yaml)
3. The sweep YAML file
4. Environment overrides (SORTCTL_*), passed in explicitly by the caller

Nothing in this module reads the process environment or working directory on
its own; the CLI hands both in.
"""

import copy
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from sortctl.core.schema import SWEEP_AXES, SweepConfig

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "sortctl.yaml"

DEFAULTS: dict[str, Any] = {
    "dataset": {
        "format": "gensort",
        "table": "bench_data",
        "load_threads": 14,
    },
    "run": {
        "memory_limit": "2GB",
        "threads": 4,
        "timeout_seconds": 7200,
        "cooldown_seconds": 30,
    },
    "sweep_mode": "single",
}

# Environment variable -> dotted config key
ENV_OVERRIDES: dict[str, str] = {
    "SORTCTL_INPUT_FILE": "dataset.input_file",
    "SORTCTL_FORMAT": "dataset.format",
    "SORTCTL_TABLE": "dataset.table",
    "SORTCTL_LOAD_TIMEOUT_SECONDS": "dataset.load_timeout_seconds",
    "SORTCTL_MEMORY_LIMIT": "run.memory_limit",
    "SORTCTL_THREADS": "run.threads",
    "SORTCTL_OUTPUT": "run.output",
    "SORTCTL_TEMP_DIR": "run.temp_dir",
    "SORTCTL_TIMEOUT_SECONDS": "run.timeout_seconds",
    "SORTCTL_COOLDOWN_SECONDS": "run.cooldown_seconds",
    "SORTCTL_LOG_DIR": "log_dir",
}
SWEEP_ENV_PREFIX = "SORTCTL_SWEEP_"

# Keys where an empty value or "none" means "unset"
_NULLABLE_KEYS = {"run.output", "run.temp_dir", "run.timeout_seconds", "dataset.load_timeout_seconds"}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge two mappings; values from ``override`` win.

    Nested mappings are merged, everything else (lists included) is replaced.
    Neither input is modified.
    """
    result = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _set_dotted(target: dict[str, Any], dotted_key: str, value: Any) -> None:
    *parents, leaf = dotted_key.split(".")
    node = target
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[leaf] = value


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a YAML mapping, got {type(data).__name__}")
    return data


def load_site_settings(path: Path | None) -> dict[str, Any]:
    """Load the site settings file if it exists.

    Args:
        path: Settings file, or a directory to look for sortctl.yaml in

    Returns:
        Settings mapping (empty if no file was found)
    """
    if path is None:
        return {}
    path = Path(path)
    if path.is_dir():
        path = path / SETTINGS_FILENAME
    if not path.is_file():
        return {}

    settings = _read_yaml_mapping(path)
    logger.debug("Loaded site settings from %s", path)
    return settings


def get_sortctl_setting(key: str, default: Any = None, settings: Mapping[str, Any] | None = None) -> Any:
    """Look up one top-level site setting (e.g. ``log_root``)."""
    if not settings:
        return default
    value = settings.get(key)
    return default if value is None else value


def environment_overrides(environ: Mapping[str, str] | None) -> dict[str, Any]:
    """Translate SORTCTL_* variables into a nested override mapping.

    ``SORTCTL_SWEEP_<AXIS>`` takes a whitespace separated list of values,
    e.g. ``SORTCTL_SWEEP_THREADS="4 8 16"``.
    """
    overrides: dict[str, Any] = {}
    if not environ:
        return overrides

    for var, dotted_key in ENV_OVERRIDES.items():
        if var not in environ:
            continue
        value: Any = environ[var]
        if dotted_key in _NULLABLE_KEYS and value.strip().lower() in ("", "none", "null"):
            value = None
        _set_dotted(overrides, dotted_key, value)
        logger.info("Override from environment: %s=%s", dotted_key, value)

    sweep: dict[str, list[str]] = {}
    for var, raw in environ.items():
        if not var.startswith(SWEEP_ENV_PREFIX):
            continue
        axis = var[len(SWEEP_ENV_PREFIX) :].lower()
        if axis not in SWEEP_AXES:
            logger.warning("Ignoring %s: unknown sweep axis '%s'", var, axis)
            continue
        sweep[axis] = raw.split()
        logger.info("Sweep axis from environment: %s=%s", axis, sweep[axis])

    if sweep:
        overrides["sweep"] = sweep
    return overrides


def resolve_config_dict(
    raw: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
    settings: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Merge defaults, site defaults, the sweep file and environment overrides."""
    defaults = copy.deepcopy(DEFAULTS)
    log_root = get_sortctl_setting("log_root", "./logs", settings)
    defaults["log_dir"] = f"{log_root}/{{name}}_{{timestamp}}"

    merged = deep_merge(defaults, (settings or {}).get("defaults") or {})
    merged = deep_merge(merged, raw)

    overrides = environment_overrides(environ)
    # Environment axes replace the file's sweep section as a whole
    env_sweep = overrides.pop("sweep", None)
    merged = deep_merge(merged, overrides)
    if env_sweep:
        merged["sweep"] = env_sweep
    return merged


def load_config(
    path: Path,
    environ: Mapping[str, str] | None = None,
    settings_path: Path | None = None,
) -> SweepConfig:
    """Load and validate a sweep configuration.

    Args:
        path: Sweep YAML file
        environ: Environment mapping to take SORTCTL_* overrides from
        settings_path: Site settings file or directory (optional)

    Returns:
        Validated, immutable SweepConfig

    Raises:
        FileNotFoundError: If the sweep file does not exist
        ValueError: If the file is not a YAML mapping
        marshmallow.ValidationError: If the merged configuration is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = _read_yaml_mapping(path)
    settings = load_site_settings(settings_path)
    merged = resolve_config_dict(raw, environ=environ, settings=settings)

    config = SweepConfig.Schema().load(merged)
    logger.info("Loaded sweep '%s' (%s backend) from %s", config.name, config.backend_type, path)
    return config
