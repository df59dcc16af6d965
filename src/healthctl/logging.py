"""Logging helpers for healthctl.

Two facilities live here:

* ``probe_log_scope`` / ``ProbeContextFilter`` attach the name of the running
  health check to every standard-library log record emitted while it runs,
  so output from database drivers, HTTP clients and the like can be
  attributed to the check that triggered it.
* ``StructuredLogger`` appends one JSON document per CLI operation to
  ``operations.jsonl`` in the configured logs directory. It never raises: if
  the directory is unusable the logger disables itself.
"""
from __future__ import annotations

import contextvars
import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from .serialization import sanitize_payload

LOGGER = logging.getLogger(__name__)

_CURRENT_PROBE: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "healthctl_probe_name",
    default=None,
)

_HANDLER_NAME = "healthctl"
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(probe_name)s] %(name)s: %(message)s"


def current_probe_name() -> str | None:
    """Return the name of the health check running in this context, if any."""
    return _CURRENT_PROBE.get()


@contextmanager
def probe_log_scope(name: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``probe_name``."""
    token = _CURRENT_PROBE.set(name)
    try:
        yield
    finally:
        _CURRENT_PROBE.reset(token)


class ProbeContextFilter(logging.Filter):
    """Stamp ``record.probe_name`` from the active probe scope."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Attach the probe name (``"-"`` outside a scope) and keep the record."""
        record.probe_name = _CURRENT_PROBE.get() or "-"
        return True


def configure_logging(level: int | str = logging.WARNING) -> logging.Handler:
    """Install a stderr handler carrying the probe name on the root logger.

    Calling this again replaces the handler installed by the previous call.
    """
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.addFilter(ProbeContextFilter())
    handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return handler


class OperationScope:
    """Collects steps and the final outcome of one logged operation."""

    def __init__(
        self,
        command: str,
        args: Mapping[str, object] | None,
        target: Mapping[str, object] | None,
    ) -> None:
        self.op_id = uuid.uuid4().hex
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.perf_counter()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def _finish(
        self,
        status: str,
        message: str,
        *,
        rc: int,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message, "rc": rc}
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if context:
            result["context"] = sanitize_payload(context)
        self.result = result

    def success(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        """Mark the operation successful."""
        self._finish("success", message, rc=0, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful with warnings."""
        self._finish(
            "warning",
            message,
            rc=0,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        rc: int = 1,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed."""
        self._finish(
            "error",
            message,
            rc=rc,
            warnings=warnings,
            errors=list(errors) if errors else [message],
            context=context,
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON-ready record for this operation."""
        return {
            "ts": datetime.now(UTC).isoformat(),
            "op_id": self.op_id,
            "command": self.command,
            "args": sanitize_payload(self.args),
            "target": sanitize_payload(self.target),
            "steps": self.steps,
            "result": self.result,
            "duration_ms": int((time.perf_counter() - self._started) * 1000),
        }


class StructuredLogger:
    """Append-only JSON-lines log of CLI operations."""

    def __init__(self, logs_dir: Path) -> None:
        self._logs_dir = Path(logs_dir)
        self._operations_log_path = self._logs_dir / "operations.jsonl"
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("Operations log disabled; cannot create %s: %s", self._logs_dir, exc)
            self._enabled = False

    @property
    def path(self) -> Path:
        """Return the operations log path."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it when the block exits."""
        scope = OperationScope(command, args, target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}", rc=1)
            raise
        finally:
            if scope.result is None:
                scope.error("Operation ended without recording a result.", rc=1)
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            LOGGER.warning("Operations log disabled after write failure: %s", exc)
            self._enabled = False


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "OperationScope",
    "ProbeContextFilter",
    "StructuredLogger",
    "configure_logging",
    "current_probe_name",
    "probe_log_scope",
]
