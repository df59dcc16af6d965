"""Built-in health check kinds and construction from configuration."""

from __future__ import annotations

import importlib
import os
import shutil
import socket
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import HealthCheckConfigurationError
from .models import CheckContext, HealthCheckDefinition, HealthCheckResult

if TYPE_CHECKING:
    from ..config import CheckConfig

Handler = Callable[[CheckContext], HealthCheckResult]


def build_checks(entries: Iterable[CheckConfig]) -> tuple[HealthCheckDefinition, ...]:
    """Return check definitions for the declared *entries*, in order."""
    return tuple(build_check(entry) for entry in entries)


def build_check(entry: CheckConfig) -> HealthCheckDefinition:
    """Return the check definition for a single declaration."""
    factory = CHECK_KINDS.get(entry.kind)
    if factory is None:
        known = ", ".join(sorted(CHECK_KINDS))
        raise HealthCheckConfigurationError(
            f"Health check '{entry.name}' has unknown kind '{entry.kind}'. Known kinds: {known}."
        )
    handler = factory(entry.name, entry.options)
    return HealthCheckDefinition(name=entry.name, run=handler, tags=entry.tags, kind=entry.kind)


# ---------------------------------------------------------------------------
# Option helpers
# ---------------------------------------------------------------------------


def _option_str(name: str, options: Mapping[str, object], key: str) -> str:
    value = options.get(key)
    if not isinstance(value, str) or not value.strip():
        raise HealthCheckConfigurationError(
            f"Health check '{name}' requires a non-empty '{key}' option."
        )
    return value.strip()


def _option_float(
    name: str,
    options: Mapping[str, object],
    key: str,
    *,
    default: float,
) -> float:
    value = options.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise HealthCheckConfigurationError(
            f"Health check '{name}' option '{key}' must be a number."
        )
    try:
        number = float(value)
    except ValueError as exc:
        raise HealthCheckConfigurationError(
            f"Health check '{name}' option '{key}' must be a number. Got {value!r}."
        ) from exc
    if number < 0:
        raise HealthCheckConfigurationError(
            f"Health check '{name}' option '{key}' must be non-negative."
        )
    return number


def _option_bool(options: Mapping[str, object], key: str, *, default: bool) -> bool:
    value = options.get(key, default)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _reject_unknown(name: str, options: Mapping[str, object], allowed: Sequence[str]) -> None:
    unknown = set(options) - set(allowed)
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise HealthCheckConfigurationError(
            f"Health check '{name}' has unknown option(s): {joined}."
        )


def _command_exists(command: str) -> str | None:
    path = Path(command)
    if path.is_absolute() or (path.parent and str(path.parent) not in {"", "."}):
        return str(path) if path.exists() and os.access(path, os.X_OK) else None
    resolved = shutil.which(command)
    if resolved is not None and os.access(resolved, os.X_OK):
        return resolved
    return None


# ---------------------------------------------------------------------------
# Check kinds
# ---------------------------------------------------------------------------


def command_check(name: str, options: Mapping[str, object]) -> Handler:
    """Report whether a binary is available on ``PATH``."""
    _reject_unknown(name, options, ("command", "required"))
    command = _option_str(name, options, "command")
    required = _option_bool(options, "required", default=True)

    def _run(_context: CheckContext) -> HealthCheckResult:
        resolved = _command_exists(command)
        if resolved is not None:
            return HealthCheckResult.healthy(
                f"Binary '{command}' available.",
                data={"command": command, "path": resolved},
            )
        if required:
            return HealthCheckResult.unhealthy(
                f"Required binary '{command}' not found on PATH.",
                data={"command": command},
            )
        return HealthCheckResult.degraded(
            f"Optional binary '{command}' not found on PATH.",
            data={"command": command},
        )

    return _run


def disk_check(name: str, options: Mapping[str, object]) -> Handler:
    """Report free disk space at a path against warning/critical thresholds."""
    _reject_unknown(name, options, ("path", "warn_percent", "critical_percent"))
    path = Path(_option_str(name, options, "path")).expanduser()
    warn_percent = _option_float(name, options, "warn_percent", default=10.0)
    critical_percent = _option_float(name, options, "critical_percent", default=5.0)
    if critical_percent > warn_percent:
        raise HealthCheckConfigurationError(
            f"Health check '{name}': critical_percent cannot exceed warn_percent."
        )

    def _run(_context: CheckContext) -> HealthCheckResult:
        try:
            usage = shutil.disk_usage(path)
        except FileNotFoundError:
            return HealthCheckResult.unhealthy(
                f"Path {path} does not exist; cannot determine disk usage.",
                data={"path": str(path)},
            )

        total = usage.total or 1
        percent_free = (usage.free / total) * 100
        data = {
            "path": str(path),
            "total_bytes": usage.total,
            "free_bytes": usage.free,
            "percent_free": round(percent_free, 2),
        }
        if percent_free < critical_percent:
            return HealthCheckResult.unhealthy(
                f"Disk free space below {critical_percent:g}%.", data=data
            )
        if percent_free < warn_percent:
            return HealthCheckResult.degraded(
                f"Disk free space below {warn_percent:g}%.", data=data
            )
        return HealthCheckResult.healthy(
            "Disk free space within acceptable limits.", data=data
        )

    return _run


def path_check(name: str, options: Mapping[str, object]) -> Handler:
    """Report whether a filesystem path exists (and optionally is a writable directory)."""
    _reject_unknown(name, options, ("path", "directory", "writable"))
    path = Path(_option_str(name, options, "path")).expanduser()
    directory = _option_bool(options, "directory", default=False)
    writable = _option_bool(options, "writable", default=False)

    def _run(_context: CheckContext) -> HealthCheckResult:
        data = {"path": str(path)}
        if not path.exists():
            return HealthCheckResult.unhealthy(f"Path {path} does not exist.", data=data)
        if directory and not path.is_dir():
            return HealthCheckResult.unhealthy(f"Path {path} is not a directory.", data=data)
        if writable and not os.access(path, os.W_OK):
            return HealthCheckResult.unhealthy(f"Path {path} is not writable.", data=data)
        return HealthCheckResult.healthy(f"Path {path} present.", data=data)

    return _run


def tcp_check(name: str, options: Mapping[str, object]) -> Handler:
    """Report whether a TCP connection to ``host:port`` can be opened."""
    _reject_unknown(name, options, ("host", "port", "timeout"))
    host = _option_str(name, options, "host")
    port_raw = options.get("port")
    if isinstance(port_raw, bool) or not isinstance(port_raw, int) or not 0 < port_raw < 65536:
        raise HealthCheckConfigurationError(
            f"Health check '{name}' requires an integer 'port' option between 1 and 65535."
        )
    port = port_raw
    timeout = _option_float(name, options, "timeout", default=1.0)

    def _run(context: CheckContext) -> HealthCheckResult:
        context.cancellation.raise_if_cancelled()
        data = {"host": host, "port": port, "timeout": timeout}
        try:
            with socket.create_connection((host, port), timeout=timeout):
                pass
        except TimeoutError as exc:
            return HealthCheckResult.unhealthy(
                f"Timed out connecting to {host}:{port}.", error=exc, data=data
            )
        except OSError as exc:
            return HealthCheckResult.unhealthy(
                f"Cannot connect to {host}:{port}: {exc}", error=exc, data=data
            )
        return HealthCheckResult.healthy(f"Connected to {host}:{port}.", data=data)

    return _run


def callable_check(name: str, options: Mapping[str, object]) -> Handler:
    """Import ``target`` (``package.module:attribute``) and use it as the check."""
    _reject_unknown(name, options, ("target",))
    target = _option_str(name, options, "target")
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise HealthCheckConfigurationError(
            f"Health check '{name}' target must look like 'package.module:attribute'."
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise HealthCheckConfigurationError(
            f"Health check '{name}' cannot import module '{module_name}': {exc}"
        ) from exc
    handler: object = module
    for part in attribute.split("."):
        try:
            handler = getattr(handler, part)
        except AttributeError as exc:
            raise HealthCheckConfigurationError(
                f"Health check '{name}' target '{target}' does not exist."
            ) from exc
    if not callable(handler):
        raise HealthCheckConfigurationError(
            f"Health check '{name}' target '{target}' is not callable."
        )
    return handler  # type: ignore[return-value]


CHECK_KINDS: Mapping[str, Callable[[str, Mapping[str, object]], Handler]] = {
    "callable": callable_check,
    "command": command_check,
    "disk": disk_check,
    "path": path_check,
    "tcp": tcp_check,
}


__all__ = [
    "CHECK_KINDS",
    "build_check",
    "build_checks",
    "callable_check",
    "command_check",
    "disk_check",
    "path_check",
    "tcp_check",
]
