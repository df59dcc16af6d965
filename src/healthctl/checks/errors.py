"""Exception hierarchy raised by the health check engine."""
from __future__ import annotations

from collections.abc import Sequence


class HealthCheckError(RuntimeError):
    """Base class for health check engine failures."""


class HealthCheckConfigurationError(HealthCheckError, ValueError):
    """Raised when the registered health checks cannot be used as configured."""


class DuplicateHealthCheckError(HealthCheckConfigurationError):
    """Raised when two or more health checks share a name (ignoring case)."""

    def __init__(self, names: Sequence[str]) -> None:
        self.names = tuple(names)
        joined = ", ".join(self.names)
        super().__init__(
            f"Duplicate health checks were registered with the name(s): {joined}"
        )


class HealthCheckContractError(HealthCheckError):
    """Raised when a health check breaks its result contract."""

    def __init__(self, check_name: str, message: str) -> None:
        self.check_name = check_name
        super().__init__(message)


class HealthCheckCancelledError(HealthCheckError):
    """Raised when a health check run is cancelled before it completes."""


__all__ = [
    "DuplicateHealthCheckError",
    "HealthCheckCancelledError",
    "HealthCheckConfigurationError",
    "HealthCheckContractError",
    "HealthCheckError",
]
