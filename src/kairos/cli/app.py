"""Typer CLI for recording and estimating service durations."""

from __future__ import annotations

from typing import Annotated, Optional

import typer
from rich.console import Console

from kairos.config import KairosConfig
from kairos.core.estimator import DurationEstimator, compute_options_hash
from kairos.core.store import MetricsStore
from kairos.errors import KairosError
from kairos.logging_setup import setup_logging
from kairos.mcp.formatters import format_duration, format_quality

app = typer.Typer(
    name="kairos",
    help="Learn how long maintenance services take on this machine, and predict it.",
    no_args_is_help=True,
)
console = Console(stderr=True)


@app.callback()
def _main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    setup_logging("DEBUG" if verbose else None)


def _config() -> KairosConfig:
    return KairosConfig.load()


def _open_store(config: KairosConfig) -> MetricsStore:
    store = MetricsStore.from_config(config)
    try:
        store.open()
    except KairosError as exc:
        console.print(f"[red]Cannot load metrics:[/red] {exc}")
        raise typer.Exit(1)
    if store.load_error is not None:
        console.print(f"[yellow]Warning:[/yellow] {store.load_error}")
    return store


def _parse_options(option: list[str] | None) -> str | None:
    """Hash ``KEY=VALUE`` pairs into an options hash."""
    if not option:
        return None
    options = {}
    for pair in option:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            console.print(f"[red]Invalid option (expected KEY=VALUE):[/red] {pair}")
            raise typer.Exit(1)
        options[key] = value
    return compute_options_hash(options)


@app.command()
def record(
    service: str,
    duration_ms: Annotated[float, typer.Argument(help="Elapsed time in milliseconds")],
    preset: Annotated[Optional[str], typer.Option("--preset", "-p", help="Preset ID")] = None,
    option: Annotated[Optional[list[str]], typer.Option("--option", "-o", help="Service option KEY=VALUE")] = None,
) -> None:
    """Record a completed service run."""
    config = _config()
    options_hash = _parse_options(option)

    with _open_store(config) as store:
        engine = DurationEstimator.from_config(store, config)
        try:
            result = engine.record(service, duration_ms, preset_id=preset, options_hash=options_hash)
        except KairosError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)

    console.print(f"[green]Recorded:[/green] {service} {format_duration(duration_ms)}")
    if result.model is not None:
        console.print(
            f"  Model retrained on {result.model.sample_count} samples "
            f"(R² {format_quality(result.model.r_squared)})"
        )


@app.command()
def stats(
    service: Annotated[Optional[str], typer.Argument(help="Service ID (omit for all)")] = None,
) -> None:
    """Show duration statistics per service."""
    config = _config()

    with _open_store(config) as store:
        engine = DurationEstimator.from_config(store, config)
        fp = engine.current_fingerprint()
        if service:
            one = engine.compute_stats(service, fp)
            rows = [one] if one else []
        else:
            rows = engine.compute_all_stats(fp)

    if not rows:
        console.print("[dim]No timing data recorded.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Service Durations")
    table.add_column("Service", style="bold")
    table.add_column("Average", justify="right")
    table.add_column("Median", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Runs", justify="right")
    table.add_column("Confidence")
    table.add_column("Estimate", justify="right")
    table.add_column("R²", justify="right")

    for s in rows:
        table.add_row(
            s.service_id,
            format_duration(s.average_ms),
            format_duration(s.median_ms),
            format_duration(s.min_ms),
            format_duration(s.max_ms),
            str(s.sample_count),
            s.confidence.value,
            format_duration(s.estimated_ms),
            format_quality(s.model_quality),
        )
    console.print(table)


@app.command()
def estimate(
    service: str,
    option: Annotated[Optional[list[str]], typer.Option("--option", "-o", help="Service option KEY=VALUE")] = None,
    default_secs: Annotated[Optional[float], typer.Option("--default-secs", help="Fallback when no history exists")] = None,
) -> None:
    """Estimate how long a service will take on this machine."""
    config = _config()
    options_hash = _parse_options(option)
    default_ms = default_secs * 1000 if default_secs is not None else None

    with _open_store(config) as store:
        engine = DurationEstimator.from_config(store, config)
        result = engine.estimate(service, options_hash=options_hash, default_ms=default_ms)

    if result.estimated_ms is None:
        console.print(f"[yellow]No timing data for {service}[/yellow]")
        raise typer.Exit(1)

    console.print(f"[bold]{service}[/bold]: {format_duration(result.estimated_ms)}")
    console.print(f"  Source: {result.source.value}")
    if result.confidence is not None:
        console.print(f"  Confidence: {result.confidence.value}")
    if result.model_quality is not None:
        console.print(f"  Model R²: {format_quality(result.model_quality)}")


@app.command()
def presets() -> None:
    """Show total duration statistics per preset."""
    config = _config()

    with _open_store(config) as store:
        rows = DurationEstimator.from_config(store, config).preset_stats()

    if not rows:
        console.print("[dim]No preset runs recorded.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Preset Durations")
    table.add_column("Preset", style="bold")
    table.add_column("Average", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Runs", justify="right")
    table.add_column("Confidence")

    for p in rows:
        table.add_row(
            p.preset_id,
            format_duration(p.average_ms),
            format_duration(p.min_ms),
            format_duration(p.max_ms),
            str(p.run_count),
            p.confidence.value,
        )
    console.print(table)


@app.command()
def retrain(
    service: Annotated[Optional[str], typer.Argument(help="Service ID (omit for all)")] = None,
) -> None:
    """Retrain duration models now."""
    config = _config()

    with _open_store(config) as store:
        try:
            count = DurationEstimator.from_config(store, config).retrain(service)
        except KairosError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)

    console.print(f"[green]Retrained {count} model(s)[/green]")


@app.command()
def clear(
    service: Annotated[Optional[str], typer.Argument(help="Service ID")] = None,
    all_services: Annotated[bool, typer.Option("--all", help="Clear every service")] = False,
) -> None:
    """Delete recorded runs and trained models."""
    if not service and not all_services:
        console.print("[red]Give a service ID or --all[/red]")
        raise typer.Exit(1)

    config = _config()

    with _open_store(config) as store:
        engine = DurationEstimator.from_config(store, config)
        try:
            removed = engine.clear_service(service) if service else engine.clear_all()
        except KairosError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)

    console.print(f"[green]Removed {removed} sample(s)[/green]")


@app.command()
def fingerprint() -> None:
    """Show this machine's fingerprint and feature vector."""
    from rich.table import Table

    from kairos.core.fingerprint import FEATURE_NAMES, to_feature_vector
    from kairos.core.probe import capture_fingerprint

    config = _config()
    fp = capture_fingerprint(cpu_interval=config.probe.cpu_sample_interval)

    table = Table(title="Machine Fingerprint")
    table.add_column("Feature", style="bold")
    table.add_column("Value", justify="right")
    for name, value in zip(FEATURE_NAMES, to_feature_vector(fp)):
        table.add_row(name, f"{value:g}")
    console.print(table)
    console.print(f"  Network: {fp.network_type.value}")


def main() -> None:
    """Entry point for the kairos CLI."""
    app()


if __name__ == "__main__":
    main()
