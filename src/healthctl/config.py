"""Configuration loader for healthctl.

Values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/healthctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``HEALTHCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export HEALTHCTL_MAX_CONCURRENCY=4
    export HEALTHCTL_STATUS_CODES__DEGRADED=503

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. Health checks themselves are declared in the YAML file::

    checks:
      - name: disk
        kind: disk
        tags: [readiness]
        path: /var/lib/app
        warn_percent: 10
"""
from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

import yaml

from .checks.models import HealthStatus

ENV_PREFIX = "HEALTHCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"

ALLOWED_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}

class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""

@dataclass(frozen=True)
class CheckConfig:
    """Declaration of one health check."""

    name: str
    kind: str
    tags: frozenset[str] = frozenset()
    options: Mapping[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "kind": self.kind,
            "tags": sorted(self.tags),
            **dict(self.options),
        }

@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for healthctl."""

    config_file: Path
    logs_dir: Path
    log_level: str
    max_concurrency: int
    status_codes: Mapping[HealthStatus, int]
    checks: tuple[CheckConfig, ...]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "log_level": self.log_level,
            "max_concurrency": self.max_concurrency,
            "status_codes": {
                status.value: code for status, code in self.status_codes.items()
            },
            "checks": [check.to_dict() for check in self.checks],
        }

DEFAULTS: dict[str, object] = {
    "config_file": "/etc/healthctl/config.yml",
    "logs_dir": "/var/log/healthctl",
    "log_level": "warning",
    "max_concurrency": 1,
    "status_codes": {
        "healthy": 200,
        "degraded": 200,
        "unhealthy": 503,
        "failed": 500,
    },
    "checks": [],
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())

def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    resolved_env = os.environ if env is None else env
    config_path = Path(
        config_file or resolved_env.get(CONFIG_ENV_VAR) or str(DEFAULTS["config_file"])
    )

    merged: dict[str, object] = dict(DEFAULTS)
    for layer in (_read_config_file(config_path), _env_layer(resolved_env), overrides):
        if layer:
            merged = _merged(merged, layer)
    merged["config_file"] = str(config_path)

    _validate_structure(merged)
    return _build_app_config(merged)

def _read_config_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")

def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    log_level = str(raw.get("log_level", "warning")).lower()
    if log_level not in ALLOWED_LOG_LEVELS:
        allowed = ", ".join(sorted(ALLOWED_LOG_LEVELS))
        raise ConfigError(f"Unsupported log_level '{log_level}'. Allowed: {allowed}.")

    status_codes = _as_dict(raw.get("status_codes"), "status_codes")
    for key in status_codes:
        try:
            status = HealthStatus.parse(key)
        except ValueError as exc:
            raise ConfigError(f"Unknown status in status_codes: {key!r}.") from exc
        if status is HealthStatus.UNKNOWN:
            raise ConfigError("status_codes cannot map the 'unknown' status.")

    checks = raw.get("checks")
    if checks is not None:
        for index, entry in enumerate(_as_sequence(checks, "checks")):
            mapping = _as_dict(entry, f"checks[{index}]")
            for required in ("name", "kind"):
                value = mapping.get(required)
                if not isinstance(value, str) or not value.strip():
                    raise ConfigError(f"checks[{index}].{required} must be a non-empty string.")

def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    max_concurrency = _expect_int(raw.get("max_concurrency"), "max_concurrency", default=1)
    if max_concurrency < 1:
        raise ConfigError("max_concurrency must be at least 1.")

    status_codes: dict[HealthStatus, int] = {}
    for key, value in _as_dict(raw.get("status_codes"), "status_codes").items():
        code = _expect_int(value, f"status_codes.{key}", default=200)
        if not 100 <= code <= 599:
            raise ConfigError(f"status_codes.{key} must be between 100 and 599. Got {code}.")
        status_codes[HealthStatus.parse(key)] = code

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        log_level=str(raw.get("log_level", "warning")).lower(),
        max_concurrency=max_concurrency,
        status_codes=MappingProxyType(status_codes),
        checks=_build_checks(raw.get("checks")),
    )

def _build_checks(raw: object) -> tuple[CheckConfig, ...]:
    if raw is None:
        return ()
    checks: list[CheckConfig] = []
    for index, entry in enumerate(_as_sequence(raw, "checks")):
        mapping = _as_dict(entry, f"checks[{index}]")
        options = {
            key: value
            for key, value in mapping.items()
            if key not in {"name", "kind", "tags"}
        }
        checks.append(
            CheckConfig(
                name=str(mapping["name"]).strip(),
                kind=str(mapping["kind"]).strip().lower(),
                tags=_parse_tags(mapping.get("tags"), f"checks[{index}].tags"),
                options=MappingProxyType(options),
            )
        )
    return tuple(checks)

def _parse_tags(value: object, label: str) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = [str(item) for item in _as_sequence(value, label)]
    return frozenset(part.strip().lower() for part in parts if part.strip())

def _env_layer(env: Mapping[str, str]) -> dict[str, object]:
    """Translate ``HEALTHCTL_A__B=value`` variables into ``{"a": {"b": value}}``."""
    layer: dict[str, object] = {}
    for key, raw in env.items():
        if key == CONFIG_ENV_VAR or not key.startswith(ENV_PREFIX):
            continue
        segments = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not segments:
            continue
        node = layer
        for segment in segments[:-1]:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(
                    f"Environment variable {key} conflicts with the scalar value "
                    f"already set for {segment!r}."
                )
            node = child
        try:
            node[segments[-1]] = yaml.safe_load(raw.strip())
        except yaml.YAMLError:
            node[segments[-1]] = raw.strip()
    return layer

def _merged(base: Mapping[str, object], layer: Mapping[str, object]) -> dict[str, object]:
    """Return a copy of *base* with *layer* applied; nested mappings merge key by key."""
    result = dict(base)
    for key, value in layer.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = _merged(current, _as_dict(value, key))
        else:
            result[key] = value
    return result

def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value

def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    if not all(isinstance(key, str) for key in value):
        raise ConfigError(f"Mapping {label} must use string keys.")
    return dict(value)

def _to_path(value: object) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Expected a filesystem path. Got {value!r}.")
    return Path(value).expanduser()

def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if not isinstance(value, (int, str)):
        raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc

__all__ = [
    "AppConfig",
    "CheckConfig",
    "ConfigError",
    "load_config",
]
