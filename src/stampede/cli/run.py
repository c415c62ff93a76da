"""``stampede run``: execute a load test with live terminal output."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from stampede._internal.config import load_config
from stampede._internal.errors import ConfigError, StampedeError
from stampede.engine.runner import (
    EXIT_CONFIG_ERROR,
    EXIT_ENGINE_ERROR,
    EXIT_OK,
    exit_code_for,
    run_load_test,
)
from stampede.options.loader import load_options, read_options_file
from stampede.options.target import resolve_target

if TYPE_CHECKING:
    from stampede.metrics.models import IntervalSnapshot, RunSummary
    from stampede.options.loader import RunOptions

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Option assembly
# ---------------------------------------------------------------------------


def _build_options(
    *,
    target: str | None,
    options_file: Path | None,
    vus: int | None,
    iterations: int | None,
    stages: list[str] | None,
    sleep: str | None,
    checks: list[str] | None,
    run_timeout: str | None,
    fail_on_error_rate: float | None,
) -> RunOptions:
    """Merge an optional options file with command-line flags.

    Flags win over the file. Giving fixed-mode flags drops the file's
    stages and vice versa. With no profile at all the run is a single
    user performing a single iteration.

    Raises:
        ConfigError: If the merged options are invalid.
    """
    if stages and (vus is not None or iterations is not None):
        msg = "--stage cannot be combined with --vus/--iterations"
        raise ConfigError(msg)

    raw: dict[str, object] = read_options_file(options_file) if options_file else {}

    if vus is not None or iterations is not None:
        raw.pop("stages", None)
        if vus is not None:
            raw.pop("vus", None)
            raw["concurrency"] = vus
        if iterations is not None:
            raw["iterations"] = iterations
    if stages:
        for key in ("concurrency", "vus", "iterations"):
            raw.pop(key, None)
        raw["stages"] = list(stages)

    if "stages" not in raw:
        raw.setdefault("iterations", 1)
        if "vus" not in raw:
            raw.setdefault("concurrency", 1)

    if target is not None:
        raw["target"] = target
    if sleep is not None:
        raw["sleep"] = sleep
    if checks:
        raw["checks"] = list(checks)
    if run_timeout is not None:
        raw["run_timeout"] = run_timeout
    if fail_on_error_rate is not None:
        raw["fail_on_error_rate"] = fail_on_error_rate

    return load_options(raw)


# ---------------------------------------------------------------------------
# Rich display
# ---------------------------------------------------------------------------


def _make_live_table(snapshot: IntervalSnapshot | None) -> Table:
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if snapshot is None:
        table.add_row("Status", "Starting...")
        return table

    table.add_row("Elapsed", f"{snapshot.elapsed_seconds:.1f}s")
    table.add_row("Active Users", str(snapshot.active_users))
    table.add_row("Requests/sec", f"{snapshot.requests_per_second:.1f}")
    table.add_row("p50 Latency", f"{snapshot.latency_p50:.1f}ms")
    table.add_row("p90 Latency", f"{snapshot.latency_p90:.1f}ms")
    table.add_row("p99 Latency", f"{snapshot.latency_p99:.1f}ms")
    table.add_row("Failures (interval)", str(snapshot.failures))
    return table


def _print_summary(summary: RunSummary) -> None:
    """Print the end-of-run summary and the per-check breakdown."""
    table = Table(
        title="Run Complete",
        show_header=True,
        header_style="bold green",
        expand=True,
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Target", summary.target)
    table.add_row("Profile", summary.profile_description)
    table.add_row("Duration", f"{summary.duration_seconds:.1f}s")
    table.add_row("Total Requests", str(summary.total_iterations))
    table.add_row("Requests/sec", f"{summary.requests_per_second:.1f}")
    table.add_row("Failures", str(summary.failures))
    table.add_row("Failure Rate", f"{summary.failure_rate * 100:.2f}%")
    table.add_row("p50 Latency", f"{summary.latency_p50:.1f}ms")
    table.add_row("p90 Latency", f"{summary.latency_p90:.1f}ms")
    table.add_row("p99 Latency", f"{summary.latency_p99:.1f}ms")
    table.add_row("Peak Concurrency", str(summary.peak_concurrency))
    if summary.spawn_failures:
        table.add_row("Spawn Failures", str(summary.spawn_failures))
    if summary.timed_out:
        table.add_row("Stopped By", "run timeout")

    if summary.checks:
        check_table = Table(
            title="Checks",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        check_table.add_column("Check")
        check_table.add_column("Pass", justify="right")
        check_table.add_column("Fail", justify="right")
        check_table.add_column("Error", justify="right")
        check_table.add_column("Pass %", justify="right")
        for check in summary.checks.values():
            check_table.add_row(
                check.name,
                str(check.passes),
                str(check.fails),
                str(check.errors),
                f"{check.pass_rate * 100:.2f}%",
            )
        console.print(check_table)

    if summary.errors_by_type:
        errors = ", ".join(
            f"{name}={count}" for name, count in sorted(summary.errors_by_type.items())
        )
        console.print(f"[yellow]Transport errors:[/yellow] {errors}")

    console.print(table)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    target: str | None = typer.Argument(
        None,
        help="Target URL. Defaults to $STAMPEDE_TARGET, then $TARGET.",
    ),
    vus: int | None = typer.Option(
        None,
        "--vus",
        "-u",
        help="Fixed mode: number of concurrent virtual users.",
        min=1,
    ),
    iterations: int | None = typer.Option(
        None,
        "--iterations",
        "-i",
        help="Fixed mode: total iterations shared by all users.",
        min=1,
    ),
    stages: list[str] | None = typer.Option(
        None,
        "--stage",
        "-s",
        help="Staged mode: DURATION:TARGET, e.g. 10s:50. Repeat for each stage.",
    ),
    sleep: str | None = typer.Option(
        None,
        "--sleep",
        help="Pause between a user's iterations, e.g. 0.1 or 100ms.",
    ),
    checks: list[str] | None = typer.Option(
        None,
        "--check",
        "-c",
        help="Check expression such as 'status == 200'. Repeatable.",
    ),
    options_file: Path | None = typer.Option(
        None,
        "--options",
        "-o",
        help="JSON options file; command-line flags override it.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    run_timeout: str | None = typer.Option(
        None,
        "--run-timeout",
        help="Cancel all users after this long, e.g. 5m.",
    ),
    fail_on_error_rate: float | None = typer.Option(
        None,
        "--fail-on-error-rate",
        help="Exit non-zero if the failure rate exceeds this threshold (e.g., 0.05).",
    ),
    tick_interval: float | None = typer.Option(
        None,
        "--tick-interval",
        help="Seconds between scheduler ticks (default: $STAMPEDE_TICK_INTERVAL or 1.0).",
    ),
    live: bool = typer.Option(
        True,
        "--live/--no-live",
        help="Show a live metrics table while running.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit logs as JSON lines.",
    ),
) -> None:
    """Run a load test against a single target URL."""
    try:
        options = _build_options(
            target=target,
            options_file=options_file,
            vus=vus,
            iterations=iterations,
            stages=stages,
            sleep=sleep,
            checks=checks,
            run_timeout=run_timeout,
            fail_on_error_rate=fail_on_error_rate,
        )
        config = load_config()
        if tick_interval is not None:
            if tick_interval <= 0:
                msg = f"--tick-interval must be positive, got {tick_interval}"
                raise ConfigError(msg)
            config = dataclasses.replace(config, tick_interval=tick_interval)
        endpoint = resolve_target(options.target, config.default_target)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from exc

    console.print(
        Panel(
            f"[bold]Target:[/bold]  {endpoint}\n"
            f"[bold]Profile:[/bold] {options.profile.describe()}\n"
            f"[bold]Sleep:[/bold]   {options.sleep:g}s\n"
            f"[bold]Checks:[/bold]  {', '.join(c.name for c in options.checks) or 'none'}",
            title="Stampede",
            border_style="cyan",
        )
    )

    log_level = logging.DEBUG if verbose else logging.INFO

    try:
        if live:
            with Live(
                _make_live_table(None),
                console=console,
                refresh_per_second=2,
                transient=True,
            ) as display:

                def _on_snapshot(snapshot: IntervalSnapshot) -> None:
                    display.update(_make_live_table(snapshot))

                summary = run_load_test(
                    options,
                    config=config,
                    on_snapshot=_on_snapshot,
                    log_level=log_level,
                    json_logs=json_logs,
                )
        else:
            summary = run_load_test(
                options,
                config=config,
                log_level=log_level,
                json_logs=json_logs,
            )
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from exc
    except StampedeError as exc:
        console.print(f"[red]Load test failed:[/red] {exc}")
        raise typer.Exit(code=EXIT_ENGINE_ERROR) from exc

    _print_summary(summary)

    code = exit_code_for(summary, options.fail_on_error_rate)
    if code != EXIT_OK:
        console.print(
            f"[red]FAIL:[/red] Failure rate {summary.failure_rate * 100:.2f}% "
            f"exceeds threshold {(options.fail_on_error_rate or 0.0) * 100:.2f}%"
        )
        raise typer.Exit(code=code)

    console.print("[green]Load test completed successfully.[/green]")
