"""Typer-powered command line interface for ``healthctl``.

``healthctl check`` runs the configured health checks once and exits with a
code derived from the composite status, which makes it usable as a container
``HEALTHCHECK``, a systemd ``ExecCondition`` or a cron probe.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .checks import (
    CancellationToken,
    CheckExecutorOptions,
    CompositeHealthCheckResult,
    HealthCheckCancelledError,
    HealthCheckConfigurationError,
    HealthCheckContractError,
    HealthCheckDefinition,
    HealthCheckService,
    HealthStatus,
    build_checks,
)
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger, configure_logging
from .presentation import DEFAULT_STATUS_CODES, ResponseOptions, build_response, serialize_composite

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to healthctl's YAML config file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the result as JSON.",
)
ONLY_OPTION = typer.Option(
    None,
    "--only",
    metavar="TAG[,TAG...]",
    help="Comma-separated tags; run only checks carrying at least one of them.",
)
EXCLUDE_OPTION = typer.Option(
    None,
    "--exclude",
    metavar="TAG[,TAG...]",
    help="Comma-separated tags; skip checks carrying any of them.",
)
MAX_CONCURRENCY_OPTION = typer.Option(
    None,
    "--max-concurrency",
    min=1,
    help="Limit the number of checks executed concurrently (1 runs them in order).",
)

_STATUS_STYLE = {
    HealthStatus.HEALTHY: "[green]HEALTHY[/green]",
    HealthStatus.DEGRADED: "[yellow]DEGRADED[/yellow]",
    HealthStatus.UNHEALTHY: "[red]UNHEALTHY[/red]",
    HealthStatus.FAILED: "[bold red]FAILED[/bold red]",
}
_STATUS_MESSAGES = {
    HealthStatus.HEALTHY: "All health checks passed.",
    HealthStatus.DEGRADED: "Health checks completed with degraded results.",
    HealthStatus.UNHEALTHY: "One or more health checks reported unhealthy.",
    HealthStatus.FAILED: "One or more health checks failed to run.",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Run registered health checks and report a composite verdict.

        Checks are declared in the YAML config file (see --config-file) and can
        be narrowed per invocation by tag.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger


def _parse_tags(raw: str | None) -> set[str]:
    """Parse comma-separated tags into a normalised set."""
    if raw is None:
        return set()
    return {part.strip().lower() for part in raw.split(",") if part.strip()}


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    configure_logging(config.log_level)
    runtime = RuntimeContext(config=config, logger=StructuredLogger(config.logs_dir))
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _build_definitions(op: OperationScope, config: AppConfig) -> tuple[HealthCheckDefinition, ...]:
    try:
        definitions = build_checks(config.checks)
    except HealthCheckConfigurationError as exc:
        _command_error(op, str(exc))
    op.add_step("checks.build", detail=f"{len(definitions)} checks")
    return definitions


def _render_result(result: CompositeHealthCheckResult) -> None:
    """Render a composite result in a human-friendly format."""
    totals = result.totals
    totals_line = " ".join(
        f"{status.value}={totals.get(status, 0)}"
        for status in HealthStatus
        if status is not HealthStatus.UNKNOWN
    )
    console.print(f"Health: {_STATUS_STYLE[result.status]}")
    console.print(f"Totals: {totals_line}")
    if not result.entries:
        console.print("No health checks were executed.")
        return

    console.print()
    for name, entry in result.entries.items():
        console.print(f"{_STATUS_STYLE[entry.status]} {name}: {entry.description or ''}".rstrip())
        if entry.error is not None:
            console.print(f"  error: {type(entry.error).__name__}: {entry.error}")
        if entry.duration_ms is not None:
            console.print(f"  duration: {entry.duration_ms} ms")


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the healthctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"healthctl {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


@app.command()
def check(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    only: str | None = ONLY_OPTION,
    exclude: str | None = EXCLUDE_OPTION,
    max_concurrency: int | None = MAX_CONCURRENCY_OPTION,
) -> None:
    """Run the configured health checks and report the composite status."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check",
        args={
            "json": json_output,
            "only": only,
            "exclude": exclude,
            "max_concurrency": max_concurrency,
        },
        target={"kind": "system", "scope": "health"},
    ) as op:
        if only is not None and exclude is not None:
            _command_error(op, "Cannot combine --only and --exclude.")
        include_tags = _parse_tags(only)
        exclude_tags = _parse_tags(exclude)

        definitions = _build_definitions(op, runtime.config)
        options = CheckExecutorOptions(
            max_concurrency=(
                max_concurrency
                if max_concurrency is not None
                else runtime.config.max_concurrency
            ),
        )
        try:
            service = HealthCheckService(lambda: definitions, options=options)
        except HealthCheckConfigurationError as exc:
            _command_error(op, str(exc))

        def _predicate(candidate: object) -> bool:
            tags = getattr(candidate, "tags", frozenset())
            if include_tags:
                return bool(tags & include_tags)
            return not (tags & exclude_tags)

        filtered = bool(include_tags or exclude_tags)
        token = CancellationToken()
        try:
            result = service.check_health(
                _predicate if filtered else None,
                token,
                metadata={
                    "filters": {
                        "only": sorted(include_tags) if only is not None else None,
                        "exclude": sorted(exclude_tags) if exclude is not None else None,
                    },
                },
            )
        except HealthCheckContractError as exc:
            _command_error(op, str(exc), rc=ExitCode.FAILED)
        except (HealthCheckCancelledError, KeyboardInterrupt) as exc:
            token.cancel()
            _command_error(op, f"Health check run cancelled: {exc}", rc=ExitCode.CANCELLED)

        response = build_response(
            result,
            ResponseOptions(status_codes=DEFAULT_STATUS_CODES).with_status_codes(
                runtime.config.status_codes
            ),
        )
        payload = serialize_composite(result)
        payload["status_code"] = response.status_code

        if json_output:
            console.print_json(json.dumps(payload))
        else:
            _render_result(result)
            if not result.entries and definitions and filtered:
                console.print("[yellow]No health checks matched the provided filters.[/yellow]")

        exit_code = ExitCode.for_status(result.status)
        message = _STATUS_MESSAGES[result.status]
        degraded = [
            name for name, entry in result.entries.items()
            if entry.status is HealthStatus.DEGRADED
        ]
        broken = [
            name for name, entry in result.entries.items()
            if entry.status in (HealthStatus.UNHEALTHY, HealthStatus.FAILED)
        ]
        log_context = {"result": payload}

        if exit_code is ExitCode.OK:
            if result.status is HealthStatus.DEGRADED:
                op.warning(message, warnings=degraded, context=log_context)
            else:
                op.success(message, context=log_context)
            return

        if not json_output:
            console.print(f"[red]{message}[/red]")
        op.error(
            message,
            rc=int(exit_code),
            errors=broken,
            warnings=degraded or None,
            context=log_context,
        )
        raise typer.Exit(code=int(exit_code))


@app.command("list")
def list_checks(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List the configured health checks."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"json": json_output},
        target={"kind": "system", "scope": "checks"},
    ) as op:
        definitions = _build_definitions(op, runtime.config)
        rows = [
            {"name": item.name, "kind": item.kind, "tags": sorted(item.tags)}
            for item in definitions
        ]
        if json_output:
            console.print_json(json.dumps({"checks": rows}))
        elif not rows:
            console.print("No health checks configured.")
        else:
            table = Table(title="Health checks")
            table.add_column("Name")
            table.add_column("Kind")
            table.add_column("Tags")
            for row in rows:
                table.add_row(row["name"], row["kind"], ", ".join(row["tags"]))
            console.print(table)
        op.success(f"Listed {len(rows)} health checks.")


def main() -> None:
    """Console script entry point."""
    app()
