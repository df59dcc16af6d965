"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum

from .checks.models import HealthStatus


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI."""

    OK = 0
    VALIDATION = 2
    UNHEALTHY = 3
    FAILED = 4
    CANCELLED = 130

    @classmethod
    def for_status(cls, status: HealthStatus) -> ExitCode:
        """Return the exit code reported for an overall health status."""
        if status is HealthStatus.UNHEALTHY:
            return cls.UNHEALTHY
        if status is HealthStatus.FAILED:
            return cls.FAILED
        return cls.OK
